"""Portfolio, account and holdings snapshot repository.

Holdings snapshots are written by the CSV importer; this module only reads
them, plus it refreshes the per-account totals after cash flows are detected.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, func, select, update

from analytics_engine.core.logging import get_logger
from analytics_engine.database.connection import get_session
from analytics_engine.database.orm import Account, CashFlow, HoldingSnapshot, Portfolio


logger = get_logger("repositories.holdings_orm")


async def list_portfolio_ids() -> list[int]:
    """Portfolios that have at least one account, by name."""
    async with get_session() as session:
        result = await session.execute(
            select(Portfolio.id)
            .join(Account, Account.portfolio_id == Portfolio.id)
            .group_by(Portfolio.id, Portfolio.name)
            .order_by(Portfolio.name)
        )
        return [row[0] for row in result.all()]


async def get_account_ids(portfolio_id: int) -> list[int]:
    async with get_session() as session:
        result = await session.execute(
            select(Account.id).where(Account.portfolio_id == portfolio_id).order_by(Account.id)
        )
        return [row[0] for row in result.all()]


async def get_latest_holdings(portfolio_id: int) -> Sequence[HoldingSnapshot]:
    """Rows from the most recent snapshot of every account in the portfolio."""
    latest = (
        select(
            HoldingSnapshot.account_id,
            func.max(HoldingSnapshot.snapshot_date).label("snapshot_date"),
        )
        .join(Account, Account.id == HoldingSnapshot.account_id)
        .where(Account.portfolio_id == portfolio_id)
        .group_by(HoldingSnapshot.account_id)
        .subquery()
    )
    async with get_session() as session:
        result = await session.execute(
            select(HoldingSnapshot).join(
                latest,
                and_(
                    HoldingSnapshot.account_id == latest.c.account_id,
                    HoldingSnapshot.snapshot_date == latest.c.snapshot_date,
                ),
            )
        )
        return result.scalars().all()


async def get_snapshot(account_id: int, snapshot_date: date) -> Sequence[HoldingSnapshot]:
    """All rows of one account snapshot, cash row included."""
    async with get_session() as session:
        result = await session.execute(
            select(HoldingSnapshot)
            .where(
                and_(
                    HoldingSnapshot.account_id == account_id,
                    HoldingSnapshot.snapshot_date == snapshot_date,
                )
            )
            .order_by(HoldingSnapshot.ticker)
        )
        return result.scalars().all()


async def get_previous_snapshot_date(account_id: int, before: date) -> date | None:
    """The latest snapshot date strictly before ``before``."""
    async with get_session() as session:
        result = await session.execute(
            select(func.max(HoldingSnapshot.snapshot_date)).where(
                and_(
                    HoldingSnapshot.account_id == account_id,
                    HoldingSnapshot.snapshot_date < before,
                )
            )
        )
        return result.scalar_one_or_none()


async def refresh_account_totals(account_id: int, snapshot_date: date) -> None:
    """Recompute value/cost from the snapshot and deposits/withdrawals from
    recorded cash flows."""
    async with get_session() as session:
        totals = (
            await session.execute(
                select(
                    func.coalesce(func.sum(HoldingSnapshot.market_value), 0),
                    func.coalesce(func.sum(HoldingSnapshot.book_value), 0),
                ).where(
                    and_(
                        HoldingSnapshot.account_id == account_id,
                        HoldingSnapshot.snapshot_date == snapshot_date,
                    )
                )
            )
        ).one()
        flows = (
            await session.execute(
                select(CashFlow.flow_type, func.coalesce(func.sum(CashFlow.amount), 0))
                .where(CashFlow.account_id == account_id)
                .group_by(CashFlow.flow_type)
            )
        ).all()
        by_type = {flow_type: Decimal(amount) for flow_type, amount in flows}

        await session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(
                total_value=totals[0],
                total_cost=totals[1],
                total_deposits=by_type.get("DEPOSIT", Decimal("0")),
                total_withdrawals=by_type.get("WITHDRAWAL", Decimal("0")),
            )
        )
        await session.commit()
    logger.debug(f"Refreshed totals for account {account_id}")
