"""
Transaction detection from consecutive holdings snapshots.

Diffs two snapshots of an account by ticker and records the buys, sells and
cash flows that explain the difference. Re-running for the same interval
replaces the earlier result.

Usage:
    from analytics_engine.services.transaction_detection import TransactionDetectionService

    service = TransactionDetectionService()
    count = await service.detect_for_new_snapshot(account_id, date(2024, 1, 31))
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from analytics_engine.core.logging import get_logger
from analytics_engine.database.orm import HoldingSnapshot
from analytics_engine.repositories import holdings_orm, transactions_orm


logger = get_logger("services.transaction_detection")

MIN_QUANTITY_CHANGE = Decimal("0.01")
MIN_CASH_CHANGE = Decimal("1")


@dataclass
class SnapshotDiff:
    transactions: list[dict[str, Any]] = field(default_factory=list)
    cash_flows: list[dict[str, Any]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.transactions) + len(self.cash_flows)


def _cash_row(rows: Sequence[HoldingSnapshot]) -> HoldingSnapshot | None:
    return next((r for r in rows if not r.ticker), None)


def _transaction(
    kind: str,
    ticker: str,
    quantity: Decimal,
    price: Decimal,
    from_date: date,
    to_date: date,
    description: str,
) -> dict[str, Any]:
    return {
        "transaction_type": kind,
        "ticker": ticker,
        "quantity": quantity,
        "price": price,
        "amount": quantity * price,
        "transaction_date": to_date,
        "from_snapshot_date": from_date,
        "description": description,
    }


def diff_snapshots(
    from_rows: Sequence[HoldingSnapshot],
    to_rows: Sequence[HoldingSnapshot],
    from_date: date,
    to_date: date,
) -> SnapshotDiff:
    """
    Infer transactions between two snapshots of one account.

    - Ticker in both with quantity change above 0.01: BUY or SELL of the
      change at the later price.
    - Ticker only in the later snapshot: BUY of the full quantity.
    - Ticker only in the earlier snapshot: SELL of the full quantity at the
      earlier price.
    - Cash (empty ticker) change above $1: DEPOSIT or WITHDRAWAL. When the
      earlier snapshot has no cash row, cash above $1 is an initial deposit.
    """
    diff = SnapshotDiff()
    before = {r.ticker: r for r in from_rows if r.ticker}
    after = {r.ticker: r for r in to_rows if r.ticker}

    from_cash = _cash_row(from_rows)
    to_cash = _cash_row(to_rows)
    if from_cash is not None and to_cash is not None:
        from_amount = Decimal(from_cash.quantity)
        to_amount = Decimal(to_cash.quantity)
        change = to_amount - from_amount
        if abs(change) > MIN_CASH_CHANGE:
            label = "deposit" if change > 0 else "withdrawal"
            diff.cash_flows.append({
                "flow_type": "DEPOSIT" if change > 0 else "WITHDRAWAL",
                "amount": abs(change),
                "description": (
                    f"Auto-detected {label} from snapshot comparison: "
                    f"${from_amount:.2f} -> ${to_amount:.2f}"
                ),
            })
    elif to_cash is not None:
        amount = Decimal(to_cash.quantity)
        if amount > MIN_CASH_CHANGE:
            diff.cash_flows.append({
                "flow_type": "DEPOSIT",
                "amount": amount,
                "description": f"Initial cash position: ${amount:.2f}",
            })

    for ticker, row in sorted(after.items()):
        previous = before.get(ticker)
        if previous is None:
            diff.transactions.append(
                _transaction(
                    "BUY", ticker, Decimal(row.quantity), Decimal(row.price),
                    from_date, to_date, "New position detected",
                )
            )
            continue

        from_qty = Decimal(previous.quantity)
        to_qty = Decimal(row.quantity)
        change = to_qty - from_qty
        if abs(change) > MIN_QUANTITY_CHANGE:
            kind = "BUY" if change > 0 else "SELL"
            diff.transactions.append(
                _transaction(
                    kind, ticker, abs(change), Decimal(row.price), from_date, to_date,
                    f"Detected {kind.lower()} change: {from_qty:.2f} -> {to_qty:.2f}",
                )
            )

    for ticker, row in sorted(before.items()):
        if ticker not in after:
            diff.transactions.append(
                _transaction(
                    "SELL", ticker, Decimal(row.quantity), Decimal(row.price),
                    from_date, to_date, "Position closed",
                )
            )

    return diff


class TransactionDetectionService:
    """Persists snapshot diffs as detected transactions and cash flows."""

    async def detect_transactions(self, account_id: int, from_date: date, to_date: date) -> int:
        """
        Detect and store what changed between two snapshot dates.

        Args:
            account_id: Account to diff
            from_date: Earlier snapshot date
            to_date: Later snapshot date

        Returns:
            Number of transactions plus cash flows recorded
        """
        from_rows = await holdings_orm.get_snapshot(account_id, from_date)
        to_rows = await holdings_orm.get_snapshot(account_id, to_date)
        diff = diff_snapshots(from_rows, to_rows, from_date, to_date)

        removed_flows = await transactions_orm.replace_detected(
            account_id, to_date, diff.transactions, diff.cash_flows
        )
        # Totals include auto-detected flows, so dropping stale ones counts too
        if diff.cash_flows or removed_flows:
            await holdings_orm.refresh_account_totals(account_id, to_date)

        logger.info(
            f"Account {account_id} {from_date} -> {to_date}: "
            f"{len(diff.transactions)} transactions, {len(diff.cash_flows)} cash flows"
        )
        return diff.count

    async def detect_for_new_snapshot(self, account_id: int, new_date: date) -> int:
        """Diff a new snapshot against the one before it; the first snapshot yields nothing."""
        previous = await holdings_orm.get_previous_snapshot_date(account_id, new_date)
        if previous is None:
            logger.debug(f"Account {account_id} has no snapshot before {new_date}")
            return 0
        return await self.detect_transactions(account_id, previous, new_date)
