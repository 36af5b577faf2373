"""Market regime job definitions.

This module contains jobs for:
- Daily rule-based regime classification (market_regime_update)
- HMM regime forecasts for several horizons (regime_forecast)
- Weekly HMM retraining (hmm_training)

regime_forecast depends on a model written by hmm_training; when none
exists yet the run fails with a message naming the missing model.
"""

from __future__ import annotations

from analytics_engine.core.logging import get_logger

from ..context import JobContext, JobResult
from ..registry import register_job
from ..utils import elapsed_ms, job_timer, log_job_success


logger = get_logger("jobs.regime")

HMM_TRAINING_TIMEOUT = 2 * 60 * 60


@register_job("market_regime_update")
async def market_regime_update_job(ctx: JobContext) -> JobResult:
    """
    Classify the current market regime and store it for today.

    Schedule: Daily at 5 PM (0 0 17 * * *)
    """
    job_start = job_timer()
    classification = await ctx.regime_service.update_current_regime()

    message = (
        f"Regime {classification.regime_type.value} "
        f"(confidence {classification.confidence:.0f}%)"
    )
    log_job_success(
        "market_regime_update",
        message,
        regime=classification.regime_type.value,
        volatility=round(classification.volatility, 2),
        market_return=round(classification.market_return, 2),
        confidence=round(classification.confidence, 1),
        duration_ms=elapsed_ms(job_start),
    )
    return JobResult(
        items_processed=1,
        message=message,
        details={
            "regime_type": classification.regime_type.value,
            "threshold_multiplier": classification.threshold_multiplier,
        },
    )


@register_job("regime_forecast")
async def regime_forecast_job(ctx: JobContext) -> JobResult:
    """
    Forecast regime probabilities 5, 10 and 30 trading days ahead.

    Schedule: Daily at 5:30 PM (0 30 17 * * *)
    """
    job_start = job_timer()
    forecasts = await ctx.forecast_service.generate_forecasts()

    predicted = {f.horizon_days: f.predicted_state.label for f in forecasts}
    message = f"Generated {len(forecasts)} regime forecasts"
    log_job_success(
        "regime_forecast",
        message,
        forecasts=len(forecasts),
        duration_ms=elapsed_ms(job_start),
    )
    return JobResult(items_processed=len(forecasts), message=message, details={"predicted": predicted})


@register_job("hmm_training", timeout=HMM_TRAINING_TIMEOUT)
async def hmm_training_job(ctx: JobContext) -> JobResult:
    """
    Retrain the regime HMM on ten years of benchmark closes.

    Schedule: Weekly Sunday 5 AM (0 0 5 * * SUN)
    """
    job_start = job_timer()
    trained = await ctx.training_service.train()

    message = f"Trained {trained.model_name} (accuracy {trained.accuracy:.2f})"
    log_job_success(
        "hmm_training",
        message,
        model_id=trained.model_id,
        iterations=trained.iterations,
        observations=trained.num_observations,
        models_removed=trained.models_removed,
        duration_ms=elapsed_ms(job_start),
    )
    return JobResult(
        items_processed=1,
        message=message,
        details={"model_id": trained.model_id, "models_removed": trained.models_removed},
    )
