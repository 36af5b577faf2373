"""Offline HMM training on long benchmark history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from analytics_engine.core.exceptions import DataMissingError
from analytics_engine.core.logging import get_logger
from analytics_engine.quant_engine import hmm
from analytics_engine.repositories import hmm_orm
from analytics_engine.services.prices import PriceService


logger = get_logger("services.hmm_training")

TRAINING_YEARS = 10
MODELS_TO_KEEP = 5


@dataclass(frozen=True)
class TrainingResult:
    model_id: int
    model_name: str
    accuracy: float
    iterations: int
    num_observations: int
    models_removed: int


class HMMTrainingService:
    """Trains the regime HMM and stores it as an immutable artifact."""

    def __init__(self, price_service: PriceService, market: str = "SPY"):
        self.price_service = price_service
        self.market = market.upper()

    @property
    def model_name(self) -> str:
        return f"market_regime_{self.market.lower()}"

    async def train(self, keep: int = MODELS_TO_KEEP) -> TrainingResult:
        """
        Fit a model on up to ten years of closes and keep the newest ``keep``.

        Raises:
            DataMissingError: Fewer than a year of stored closes
        """
        lookback = TRAINING_YEARS * 365
        await self.price_service.ensure_prices(self.market, lookback_days=lookback)
        points = await self.price_service.get_window(self.market, lookback)
        if len(points) < hmm.MIN_TRAINING_PRICES:
            raise DataMissingError(
                message=(
                    f"Need at least {hmm.MIN_TRAINING_PRICES} {self.market} prices "
                    f"to train, have {len(points)}"
                ),
                details={"market": self.market, "prices": len(points)},
            )

        trained = hmm.train_hmm([p.close for p in points])
        model_id = await hmm_orm.save_model({
            "model_name": self.model_name,
            "market": self.market,
            "trained_on_date": datetime.now(UTC).date(),
            "num_states": hmm.NUM_STATES,
            "state_names": trained.state_names,
            "transition_matrix": trained.transition_matrix,
            "emission_params": trained.emission_matrix,
            "observation_symbols": list(range(hmm.NUM_SYMBOLS)),
            "training_data_start": points[0].date,
            "training_data_end": points[-1].date,
            "model_accuracy": trained.accuracy,
        })
        removed = await hmm_orm.cleanup_models(self.market, keep)

        logger.info(
            f"Stored {self.model_name} (id {model_id}) trained on "
            f"{points[0].date} to {points[-1].date}"
        )
        return TrainingResult(
            model_id=model_id,
            model_name=self.model_name,
            accuracy=trained.accuracy,
            iterations=trained.iterations,
            num_observations=trained.num_observations,
            models_removed=removed,
        )
