"""Detected transaction and cash flow repository."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Any

from sqlalchemy import and_, delete, select

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import CashFlow, DetectedTransaction


logger = get_logger("repositories.transactions_orm")


async def replace_detected(
    account_id: int,
    to_date: date,
    transactions: Sequence[dict[str, Any]],
    cash_flows: Sequence[dict[str, Any]],
) -> int:
    """Replace everything previously detected for (account, to_date).

    Deletes prior detected transactions and auto-detected cash flows for the
    date, then inserts the new ones, all in one transaction.

    Args:
        account_id: Account the snapshots belong to
        to_date: Later snapshot date of the interval
        transactions: DetectedTransaction column values
        cash_flows: CashFlow column values

    Returns:
        Number of auto-detected cash flows removed
    """
    async with get_session() as session:
        await session.execute(
            delete(DetectedTransaction).where(
                and_(
                    DetectedTransaction.account_id == account_id,
                    DetectedTransaction.to_snapshot_date == to_date,
                )
            )
        )
        removed = await session.execute(
            delete(CashFlow).where(
                and_(
                    CashFlow.account_id == account_id,
                    CashFlow.flow_date == to_date,
                    CashFlow.is_auto_detected.is_(True),
                )
            )
        )
        session.add_all(
            DetectedTransaction(account_id=account_id, to_snapshot_date=to_date, **values)
            for values in transactions
        )
        session.add_all(
            CashFlow(account_id=account_id, flow_date=to_date, is_auto_detected=True, **values)
            for values in cash_flows
        )
        await session.commit()

    logger.debug(
        f"Stored {len(transactions)} transactions and {len(cash_flows)} cash flows "
        f"for account {account_id} on {to_date}"
    )
    return removed.rowcount or 0


async def list_detected(account_id: int, to_date: date) -> Sequence[DetectedTransaction]:
    async with get_session() as session:
        result = await session.execute(
            select(DetectedTransaction)
            .where(
                and_(
                    DetectedTransaction.account_id == account_id,
                    DetectedTransaction.to_snapshot_date == to_date,
                )
            )
            .order_by(DetectedTransaction.ticker, DetectedTransaction.transaction_type)
        )
        return result.scalars().all()
