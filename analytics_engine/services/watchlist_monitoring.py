"""
Watchlist monitoring.

For every watchlist item holding a ticker, checks the user's threshold
rules, technical pattern signals and sentiment shifts against the stored
price series, and records the monitoring state. Each rule type has a
4-hour cooldown so repeated runs do not duplicate alerts.

Usage:
    from analytics_engine.services.watchlist_monitoring import WatchlistMonitor

    monitor = WatchlistMonitor(price_service)
    results = await monitor.monitor_ticker("AAPL")
    await monitor.store_results(results)
"""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any

import numpy as np

from analytics_engine.core.logging import get_logger
from analytics_engine.database.orm import WatchlistItem, WatchlistThreshold
from analytics_engine.quant_engine import indicators
from analytics_engine.repositories import watchlist_orm
from analytics_engine.services.alert_types import Alert, AlertKind, AlertSeverity
from analytics_engine.services.prices import PriceService


logger = get_logger("services.watchlist_monitoring")

ALERT_COOLDOWN_HOURS = 4
RSI_PERIOD = 14
MIN_PATTERN_PRICES = 30
MIN_VOLATILITY_PRICES = 20
RSI_EXTREME_HIGH = 80.0
RSI_EXTREME_LOW = 20.0
SENTIMENT_SHIFT_MIN = 0.3
SENTIMENT_SHIFT_HIGH = 0.6
PATTERN_PREFIX = "pattern_"

SentimentSource = Callable[[str], Awaitable[float | None]]

COMPARISONS: dict[str, Callable[[float, float], bool]] = {
    "gt": lambda actual, threshold: actual > threshold,
    "gte": lambda actual, threshold: actual >= threshold,
    "lt": lambda actual, threshold: actual < threshold,
    "lte": lambda actual, threshold: actual <= threshold,
    "eq": lambda actual, threshold: math.isclose(actual, threshold, abs_tol=1e-9),
}


@dataclass
class MonitoringResult:
    """A triggered watchlist rule, ready to be stored as an alert."""
    ticker: str
    watchlist_item_id: int
    user_id: str
    alert_type: str
    severity: str
    message: str
    actual_value: float
    threshold_value: float | None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_alert(self, observed_on: date) -> Alert:
        """Notification-layer view; the row in watchlist_alerts keeps its own scale."""
        return Alert(
            kind=AlertKind.WATCHLIST,
            portfolio_id=None,
            metric=self.alert_type,
            current_value=self.actual_value,
            severity=AlertSeverity.from_watchlist(self.severity),
            observed_on=observed_on,
            ticker=self.ticker,
            payload={
                "watchlist_item_id": self.watchlist_item_id,
                "watchlist_severity": self.severity,
                "message": self.message,
                "threshold_value": self.threshold_value,
            },
        )


@dataclass(frozen=True)
class MarketSnapshot:
    """Latest values computed once per ticker and shared by its items."""
    prices: list[float]
    current_price: float
    rsi: float | None
    volume_ratio: float | None
    volatility: float | None


# =============================================================================
# PURE EVALUATION
# =============================================================================


def compute_snapshot(prices: Sequence[float]) -> MarketSnapshot | None:
    """Current price, RSI(14) and annualized volatility; None without a usable price."""
    values = [float(p) for p in prices]
    if not values or values[-1] == 0:
        return None

    rsi_values = indicators.rsi(values, RSI_PERIOD)
    current_rsi = rsi_values[-1] if rsi_values else None

    volatility = None
    if len(values) >= MIN_VOLATILITY_PRICES:
        returns = [
            math.log(b / a) if a > 0 and b > 0 else 0.0 for a, b in zip(values, values[1:])
        ]
        volatility = float(np.std(returns) * math.sqrt(252) * 100.0)

    # Only closes are stored, so there is no volume to compare
    return MarketSnapshot(
        prices=values,
        current_price=values[-1],
        rsi=current_rsi,
        volume_ratio=None,
        volatility=volatility,
    )


def determine_severity(threshold_type: str, actual: float, threshold: float) -> str:
    ratio = abs(actual / threshold) if threshold != 0 else 1.0
    if threshold_type in ("price_above", "price_below"):
        return "high" if ratio >= 1.1 else "medium"
    if threshold_type == "price_change_pct":
        if abs(actual) >= 10.0:
            return "critical"
        return "high" if abs(actual) >= 5.0 else "medium"
    if threshold_type == "volatility":
        return "high" if ratio >= 1.5 else "medium"
    if threshold_type == "volume_spike":
        return "high" if actual >= 3.0 else "medium"
    if threshold_type in ("rsi_overbought", "rsi_oversold"):
        return "high" if actual >= 85.0 or actual <= 15.0 else "medium"
    return "medium"


def format_alert_message(ticker: str, threshold_type: str, actual: float, threshold: float) -> str:
    if threshold_type == "price_above":
        return f"{ticker}: Price ${actual:.2f} exceeded upper threshold ${threshold:.2f}"
    if threshold_type == "price_below":
        return f"{ticker}: Price ${actual:.2f} dropped below threshold ${threshold:.2f}"
    if threshold_type == "price_change_pct":
        return f"{ticker}: Price changed {actual:.2f}% (threshold: {threshold:.2f}%)"
    if threshold_type == "volatility":
        return f"{ticker}: Volatility at {actual:.2f}% exceeds threshold {threshold:.2f}%"
    if threshold_type == "volume_spike":
        return f"{ticker}: Volume ratio at {actual:.2f}x exceeds threshold {threshold:.2f}x"
    if threshold_type == "rsi_overbought":
        return f"{ticker}: RSI at {actual:.1f} exceeds overbought threshold {threshold:.1f}"
    if threshold_type == "rsi_oversold":
        return f"{ticker}: RSI at {actual:.1f} below oversold threshold {threshold:.1f}"
    return f"{ticker}: {threshold_type} alert - value {actual:.2f} (threshold: {threshold:.2f})"


def _price_change_pct(item: WatchlistItem, current_price: float) -> float | None:
    if item.added_price is None:
        return None
    added = float(item.added_price)
    if added <= 0:
        return None
    return (current_price - added) / added * 100.0


def evaluate_threshold(
    item: WatchlistItem,
    user_id: str,
    threshold: WatchlistThreshold,
    snapshot: MarketSnapshot,
) -> MonitoringResult | None:
    """
    Evaluate one rule.

    ``price_change_pct`` compares the absolute change since the item was
    added but reports the signed change. Unknown rule types and comparisons
    never trigger.
    """
    compare = COMPARISONS.get(threshold.comparison)
    if compare is None:
        return None

    kind = threshold.threshold_type
    if kind in ("price_above", "price_below"):
        checked = actual = snapshot.current_price
    elif kind == "price_change_pct":
        actual = _price_change_pct(item, snapshot.current_price)
        checked = abs(actual) if actual is not None else None
    elif kind == "volatility":
        checked = actual = snapshot.volatility
    elif kind == "volume_spike":
        checked = actual = snapshot.volume_ratio
    elif kind in ("rsi_overbought", "rsi_oversold"):
        checked = actual = snapshot.rsi
    else:
        return None

    if checked is None or not compare(checked, threshold.value):
        return None

    return MonitoringResult(
        ticker=item.ticker,
        watchlist_item_id=item.id,
        user_id=user_id,
        alert_type=kind,
        severity=determine_severity(kind, actual, threshold.value),
        message=format_alert_message(item.ticker, kind, actual, threshold.value),
        actual_value=actual,
        threshold_value=threshold.value,
        metadata={
            "current_price": snapshot.current_price,
            "rsi": snapshot.rsi,
            "volume_ratio": snapshot.volume_ratio,
            "volatility": snapshot.volatility,
        },
    )


def detect_patterns(
    prices: Sequence[float],
    ticker: str,
    watchlist_item_id: int,
    user_id: str,
) -> list[MonitoringResult]:
    """RSI extremes, MACD crossovers and Bollinger band touches on the last bar."""
    if len(prices) < MIN_PATTERN_PRICES:
        return []

    def result(alert_type: str, severity: str, message: str, actual: float,
               threshold: float | None, metadata: dict[str, Any]) -> MonitoringResult:
        return MonitoringResult(
            ticker=ticker,
            watchlist_item_id=watchlist_item_id,
            user_id=user_id,
            alert_type=f"{PATTERN_PREFIX}{alert_type}",
            severity=severity,
            message=message,
            actual_value=actual,
            threshold_value=threshold,
            metadata={"pattern": alert_type, **metadata},
        )

    results: list[MonitoringResult] = []

    rsi_values = indicators.rsi(prices, RSI_PERIOD)
    rsi = rsi_values[-1] if rsi_values else None
    if rsi is not None:
        if rsi > RSI_EXTREME_HIGH:
            results.append(result(
                "rsi_extreme_overbought", "high",
                f"{ticker}: RSI at {rsi:.1f} indicates extreme overbought conditions",
                rsi, RSI_EXTREME_HIGH, {"rsi": rsi},
            ))
        elif rsi < RSI_EXTREME_LOW:
            results.append(result(
                "rsi_extreme_oversold", "high",
                f"{ticker}: RSI at {rsi:.1f} indicates extreme oversold conditions",
                rsi, RSI_EXTREME_LOW, {"rsi": rsi},
            ))

    macd = indicators.macd(prices)
    if macd is not None:
        macd_line, signal_line, _ = macd
        pair = (macd_line[-1], signal_line[-1], macd_line[-2], signal_line[-2])
        if all(v is not None for v in pair):
            curr_macd, curr_signal, prev_macd, prev_signal = pair
            if prev_macd <= prev_signal and curr_macd > curr_signal:
                results.append(result(
                    "macd_bullish_crossover", "medium",
                    f"{ticker}: MACD bullish crossover detected "
                    f"(MACD: {curr_macd:.4f}, Signal: {curr_signal:.4f})",
                    curr_macd, curr_signal, {"macd": curr_macd, "signal": curr_signal},
                ))
            if prev_macd >= prev_signal and curr_macd < curr_signal:
                results.append(result(
                    "macd_bearish_crossover", "medium",
                    f"{ticker}: MACD bearish crossover detected "
                    f"(MACD: {curr_macd:.4f}, Signal: {curr_signal:.4f})",
                    curr_macd, curr_signal, {"macd": curr_macd, "signal": curr_signal},
                ))

    bands = indicators.bollinger_bands(prices, 20, 2.0)
    if bands is not None:
        _, upper_band, lower_band = bands
        upper, lower = upper_band[-1], lower_band[-1]
        last_price = float(prices[-1])
        if upper is not None and lower is not None:
            if last_price >= upper:
                results.append(result(
                    "bollinger_upper_touch", "low",
                    f"{ticker}: Price ({last_price:.2f}) touched upper Bollinger Band ({upper:.2f})",
                    last_price, upper, {"price": last_price, "upper_band": upper},
                ))
            elif last_price <= lower:
                results.append(result(
                    "bollinger_lower_touch", "low",
                    f"{ticker}: Price ({last_price:.2f}) touched lower Bollinger Band ({lower:.2f})",
                    last_price, lower, {"price": last_price, "lower_band": lower},
                ))

    return results


def detect_sentiment_shift(
    ticker: str,
    watchlist_item_id: int,
    user_id: str,
    current: float,
    previous: float | None,
) -> MonitoringResult | None:
    """Shift of at least 0.3 on the -1..1 scale; 0.6 or more is high severity."""
    if previous is None:
        return None
    shift = current - previous
    if abs(shift) < SENTIMENT_SHIFT_MIN:
        return None
    direction = "positive" if shift > 0 else "negative"
    return MonitoringResult(
        ticker=ticker,
        watchlist_item_id=watchlist_item_id,
        user_id=user_id,
        alert_type=f"sentiment_shift_{direction}",
        severity="high" if abs(shift) >= SENTIMENT_SHIFT_HIGH else "medium",
        message=(
            f"{ticker}: Significant {direction} sentiment shift "
            f"({shift:+.2f}, from {previous:.2f} to {current:.2f})"
        ),
        actual_value=current,
        threshold_value=previous,
        metadata={
            "sentiment_shift": shift,
            "previous_sentiment": previous,
            "current_sentiment": current,
            "direction": direction,
        },
    )


# =============================================================================
# MONITOR
# =============================================================================


class WatchlistMonitor:
    """Runs the watchlist rules for a ticker against stored prices."""

    def __init__(
        self,
        price_service: PriceService,
        sentiment_source: SentimentSource | None = None,
        cooldown_hours: float = ALERT_COOLDOWN_HOURS,
    ):
        self.price_service = price_service
        self.sentiment_source = sentiment_source
        self.cooldown = timedelta(hours=cooldown_hours)

    async def monitor_ticker(self, ticker: str) -> list[MonitoringResult]:
        """
        Evaluate every watchlist item holding ``ticker``.

        Rules in cooldown are skipped. Pattern signals share one cooldown
        across all ``pattern_*`` alert types. The monitoring state is updated
        for each item whether or not anything triggered.
        """
        points = await self.price_service.get_history(ticker)
        snapshot = compute_snapshot([p.close for p in points])
        if snapshot is None:
            logger.debug(f"No usable prices for watchlist ticker {ticker}")
            return []

        sentiment = None
        if self.sentiment_source is not None:
            sentiment = await self.sentiment_source(ticker)

        since = datetime.now(UTC) - self.cooldown
        results: list[MonitoringResult] = []
        for item, user_id in await watchlist_orm.get_items_for_ticker(ticker):
            for threshold in await watchlist_orm.get_thresholds(item.id):
                if not threshold.enabled:
                    continue
                if await watchlist_orm.has_recent_alert(item.id, threshold.threshold_type, since):
                    continue
                triggered = evaluate_threshold(item, user_id, threshold, snapshot)
                if triggered is not None:
                    results.append(triggered)

            if not await watchlist_orm.has_recent_alert(item.id, PATTERN_PREFIX, since, prefix=True):
                results.extend(detect_patterns(snapshot.prices, item.ticker, item.id, user_id))

            if sentiment is not None:
                state = await watchlist_orm.get_monitoring_state(item.id)
                previous = state.last_sentiment_score if state else None
                shift = detect_sentiment_shift(item.ticker, item.id, user_id, sentiment, previous)
                if shift is not None and not await watchlist_orm.has_recent_alert(
                    item.id, shift.alert_type, since
                ):
                    results.append(shift)

            await watchlist_orm.upsert_monitoring_state(
                item.id,
                snapshot.current_price,
                snapshot.rsi,
                snapshot.volume_ratio,
                snapshot.volatility,
                sentiment,
            )

        return results

    async def store_results(self, results: Sequence[MonitoringResult]) -> int:
        """Persist triggered rules as watchlist alerts."""
        for r in results:
            await watchlist_orm.create_alert(
                r.watchlist_item_id,
                r.user_id,
                r.ticker,
                r.alert_type,
                r.severity,
                r.message,
                r.actual_value,
                r.threshold_value,
                r.metadata,
            )
        return len(results)
