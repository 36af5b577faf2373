"""
Hidden Markov Model layer for regime forecasting.

Four hidden states (bull, bear, high volatility, normal) emit one of 20
discrete symbols built from a (return bin, volatility bin) pair. The forecast
path only needs stored parameters: the current state distribution is read off
the emission column of the latest observation, then pushed forward through the
transition matrix. Training runs scaled Baum-Welch on numpy arrays.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import IntEnum
from typing import Any

import numpy as np

from analytics_engine.quant_engine.types import RegimeType

logger = logging.getLogger(__name__)


NUM_STATES = 4
NUM_RETURN_BINS = 5
NUM_VOLATILITY_BINS = 4
NUM_SYMBOLS = NUM_RETURN_BINS * NUM_VOLATILITY_BINS
MISSING_EMISSION = 1e-4
PROBABILITY_TOLERANCE = 0.01
MAX_FORECAST_STEPS = 30
MIN_TRAINING_PRICES = 252

RETURN_BIN_EDGES = (-2.0, 0.0, 1.0, 3.0)
VOLATILITY_BIN_EDGES = (15.0, 25.0, 35.0)

DEFAULT_TRANSITION_MATRIX: tuple[tuple[float, ...], ...] = (
    (0.85, 0.05, 0.02, 0.08),
    (0.05, 0.80, 0.10, 0.05),
    (0.10, 0.15, 0.65, 0.10),
    (0.15, 0.10, 0.05, 0.70),
)


class HMMState(IntEnum):
    """Hidden state index."""
    BULL = 0
    BEAR = 1
    HIGH_VOLATILITY = 2
    NORMAL = 3

    @property
    def regime_type(self) -> RegimeType:
        return RegimeType(self.name.lower())

    @property
    def label(self) -> str:
        return self.regime_type.value


STATE_NAMES: list[str] = [s.label for s in HMMState]


# =============================================================================
# Observations
# =============================================================================


def _bin(value: float, edges: Sequence[float]) -> int:
    for index, edge in enumerate(edges):
        if value < edge:
            return index
    return len(edges)


def discretize(daily_return_pct: float, volatility_pct: float) -> int:
    """Observation symbol r_bin x 4 + v_bin in [0, 20).

    Return bins: < -2, < 0, < 1, < 3, else. Volatility bins: < 15, < 25,
    < 35, else.
    """
    return _bin(daily_return_pct, RETURN_BIN_EDGES) * NUM_VOLATILITY_BINS + _bin(
        volatility_pct, VOLATILITY_BIN_EDGES
    )


@dataclass(frozen=True)
class Observation:
    """One market observation derived from a trailing window."""
    daily_return: float
    volatility: float
    window_return: float
    date: date | None = None

    @property
    def symbol(self) -> int:
        return discretize(self.daily_return, self.volatility)


def build_observations(
    closes: Sequence[float],
    window: int = 20,
    dates: Sequence[date] | None = None,
) -> list[Observation]:
    """
    Sliding-window observations from daily closes (oldest first).

    For each return after the first ``window`` returns, the observation holds
    that day's return in percent, the annualized population volatility of the
    preceding ``window`` returns in percent, and their cumulative return.

    Parameters
    ----------
    closes : Sequence[float]
        Daily closes, oldest first.
    window : int
        Volatility window in trading days.
    dates : Sequence[date], optional
        Dates aligned with ``closes``.

    Returns
    -------
    list[Observation]
        Empty when fewer than window + 2 closes are supplied.
    """
    p = np.asarray(closes, dtype=float)
    if p.size < window + 2:
        return []

    observations: list[Observation] = []
    returns: list[tuple[int, float]] = []
    for i in range(1, p.size):
        if p[i - 1] > 0:
            returns.append((i, (p[i] - p[i - 1]) / p[i - 1] * 100.0))

    for i in range(window, len(returns)):
        window_returns = np.array([r for _, r in returns[i - window:i]])
        volatility = float(np.std(window_returns) * math.sqrt(252))
        cumulative = float((np.prod(1.0 + window_returns / 100.0) - 1.0) * 100.0)
        price_index, daily = returns[i]
        observations.append(
            Observation(
                daily_return=float(daily),
                volatility=volatility,
                window_return=cumulative,
                date=dates[price_index] if dates is not None else None,
            )
        )
    return observations


def rule_label(observation: Observation) -> HMMState:
    """Rule-based state for an observation, using the regime thresholds."""
    v = observation.volatility
    r = observation.window_return
    if v > 35.0:
        return HMMState.HIGH_VOLATILITY
    if r > 0 and v < 20.0:
        return HMMState.BULL
    if r < 0 and v > 25.0:
        return HMMState.BEAR
    return HMMState.NORMAL


# =============================================================================
# State probabilities & forecasts
# =============================================================================


@dataclass(frozen=True)
class StateProbabilities:
    """Probability of each hidden state; four values summing to 1 (+/- 0.01)."""
    bull: float
    bear: float
    high_volatility: float
    normal: float

    def __post_init__(self) -> None:
        values = self.to_list()
        if any(v < 0 or not math.isfinite(v) for v in values):
            raise ValueError(f"State probabilities must be non-negative: {values}")
        total = sum(values)
        if abs(total - 1.0) > PROBABILITY_TOLERANCE:
            raise ValueError(f"State probabilities must sum to 1.0, got {total:.4f}")

    @classmethod
    def from_list(cls, values: Sequence[float]) -> "StateProbabilities":
        if len(values) != NUM_STATES:
            raise ValueError(f"Expected {NUM_STATES} probabilities, got {len(values)}")
        return cls(*(float(v) for v in values))

    @classmethod
    def uniform(cls) -> "StateProbabilities":
        return cls.from_list([1.0 / NUM_STATES] * NUM_STATES)

    def to_list(self) -> list[float]:
        return [self.bull, self.bear, self.high_volatility, self.normal]

    def to_dict(self) -> dict[str, float]:
        return dict(zip(STATE_NAMES, self.to_list()))

    @property
    def most_likely(self) -> HMMState:
        values = self.to_list()
        return HMMState(values.index(max(values)))

    @property
    def confidence(self) -> float:
        return max(self.to_list())


@dataclass(frozen=True)
class HMMForecast:
    """Predicted state distribution for one horizon."""
    horizon_days: int
    probabilities: StateProbabilities
    predicted_state: HMMState
    transition_probability: float
    confidence_level: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "horizon_days": self.horizon_days,
            "predicted_regime": self.predicted_state.label,
            "regime_probabilities": self.probabilities.to_dict(),
            "transition_probability": self.transition_probability,
            "confidence_level": self.confidence_level,
        }


def confidence_bucket(max_probability: float) -> str:
    if max_probability > 0.7:
        return "high"
    if max_probability > 0.5:
        return "medium"
    return "low"


def _normalize(vector: np.ndarray) -> np.ndarray:
    total = float(vector.sum())
    if total <= 0 or not math.isfinite(total):
        return np.full(vector.shape, 1.0 / vector.size)
    return vector / total


def _validate_transition(transition: Sequence[Sequence[float]]) -> np.ndarray:
    matrix = np.asarray(transition, dtype=float)
    if matrix.shape != (NUM_STATES, NUM_STATES):
        raise ValueError(f"Expected {NUM_STATES}x{NUM_STATES} transition matrix, got {matrix.shape}")
    if np.any(matrix < 0):
        raise ValueError("Transition matrix has negative entries")
    return matrix


def estimate_state(
    emission: Sequence[Sequence[float]],
    observations: Sequence[int],
) -> StateProbabilities:
    """
    State distribution from the emission column of the last observation.

    Entries missing from the emission matrix count as 1e-4. An all-zero
    column gives the uniform distribution.

    Raises
    ------
    ValueError
        No observations, or the emission matrix does not have four rows.
    """
    if not observations:
        raise ValueError("No observations provided for state estimation")
    if len(emission) != NUM_STATES:
        raise ValueError(f"Expected {NUM_STATES} emission rows, got {len(emission)}")

    symbol = int(observations[-1])
    likelihoods = np.array(
        [row[symbol] if 0 <= symbol < len(row) else MISSING_EMISSION for row in emission],
        dtype=float,
    )
    return StateProbabilities.from_list(_normalize(likelihoods).tolist())


def forecast(
    transition: Sequence[Sequence[float]],
    current: StateProbabilities,
    steps: int,
) -> HMMForecast:
    """
    Push a state distribution ``steps`` days forward: P x T^steps.

    The vector is renormalized after every multiplication so it stays a
    distribution even when T's rows do not sum exactly to one.

    Raises
    ------
    ValueError
        steps outside 1..30 or a malformed transition matrix.
    """
    if steps < 1 or steps > MAX_FORECAST_STEPS:
        raise ValueError(f"Forecast horizon must be between 1 and {MAX_FORECAST_STEPS} days")
    matrix = _validate_transition(transition)
    probs = propagate(matrix, np.asarray(current.to_list(), dtype=float), steps)
    result = StateProbabilities.from_list(probs.tolist())
    top = result.confidence
    return HMMForecast(
        horizon_days=steps,
        probabilities=result,
        predicted_state=result.most_likely,
        transition_probability=1.0 - top,
        confidence_level=confidence_bucket(top),
    )


def propagate(matrix: np.ndarray, probs: np.ndarray, steps: int) -> np.ndarray:
    """Multiply a row vector by ``matrix`` ``steps`` times, renormalizing each step."""
    out = np.asarray(probs, dtype=float)
    for _ in range(steps):
        out = _normalize(out @ matrix)
    return out


# =============================================================================
# Training
# =============================================================================


@dataclass
class TrainedHMM:
    """Parameters and fit statistics of a trained model."""
    transition_matrix: list[list[float]]
    emission_matrix: list[list[float]]
    initial_distribution: list[float]
    state_names: list[str] = field(default_factory=lambda: list(STATE_NAMES))
    log_likelihood: float = 0.0
    iterations: int = 0
    accuracy: float = 0.0
    num_observations: int = 0


def seed_emission(symbols: Sequence[int], labels: Sequence[HMMState]) -> np.ndarray:
    """Per-state symbol frequencies from rule labels, Laplace smoothed."""
    counts = np.ones((NUM_STATES, NUM_SYMBOLS))
    for symbol, label in zip(symbols, labels):
        counts[int(label), symbol] += 1.0
    return counts / counts.sum(axis=1, keepdims=True)


def _forward_backward(
    pi: np.ndarray, a: np.ndarray, b: np.ndarray, obs: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    n = obs.size
    alpha = np.zeros((n, NUM_STATES))
    scale = np.zeros(n)

    alpha[0] = pi * b[:, obs[0]]
    scale[0] = alpha[0].sum() or 1e-300
    alpha[0] /= scale[0]
    for t in range(1, n):
        alpha[t] = (alpha[t - 1] @ a) * b[:, obs[t]]
        scale[t] = alpha[t].sum() or 1e-300
        alpha[t] /= scale[t]

    beta = np.ones((n, NUM_STATES))
    for t in range(n - 2, -1, -1):
        beta[t] = a @ (b[:, obs[t + 1]] * beta[t + 1]) / scale[t + 1]

    return alpha, beta, scale


def baum_welch(
    obs: Sequence[int],
    transition: np.ndarray,
    emission: np.ndarray,
    initial: np.ndarray,
    max_iterations: int = 50,
    tolerance: float = 1e-6,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, float, int]:
    """
    Scaled Baum-Welch re-estimation.

    Returns
    -------
    tuple
        (transition, emission, initial, log_likelihood, iterations)
    """
    o = np.asarray(obs, dtype=int)
    a = transition.copy()
    b = emission.copy()
    pi = initial.copy()
    previous = -math.inf
    log_likelihood = -math.inf
    iteration = 0

    for iteration in range(1, max_iterations + 1):
        alpha, beta, scale = _forward_backward(pi, a, b, o)
        log_likelihood = float(np.log(scale).sum())

        gamma = alpha * beta
        gamma /= gamma.sum(axis=1, keepdims=True)

        xi_sum = np.zeros((NUM_STATES, NUM_STATES))
        for t in range(o.size - 1):
            xi = alpha[t][:, None] * a * (b[:, o[t + 1]] * beta[t + 1])[None, :]
            xi_sum += xi / scale[t + 1]

        pi = _normalize(gamma[0] + 1e-6)
        a = xi_sum / np.maximum(gamma[:-1].sum(axis=0)[:, None], 1e-300)
        a = np.maximum(a, 1e-6)
        a /= a.sum(axis=1, keepdims=True)

        b = np.zeros((NUM_STATES, NUM_SYMBOLS))
        for k in range(NUM_SYMBOLS):
            b[:, k] = gamma[o == k].sum(axis=0)
        b = np.maximum(b / np.maximum(gamma.sum(axis=0)[:, None], 1e-300), 1e-6)
        b /= b.sum(axis=1, keepdims=True)

        if abs(log_likelihood - previous) < tolerance:
            break
        previous = log_likelihood

    return a, b, pi, log_likelihood, iteration


def posterior_states(
    obs: Sequence[int], transition: np.ndarray, emission: np.ndarray, initial: np.ndarray
) -> np.ndarray:
    """Most probable state per step from the smoothed posteriors."""
    o = np.asarray(obs, dtype=int)
    alpha, beta, _ = _forward_backward(initial, transition, emission, o)
    return np.argmax(alpha * beta, axis=1)


def train_hmm(
    closes: Sequence[float],
    window: int = 20,
    max_iterations: int = 50,
) -> TrainedHMM:
    """
    Fit a 4-state model to daily closes.

    Starts from the default transition matrix and a rule-derived emission
    matrix, refines both with Baum-Welch and reports in-sample accuracy
    against the rule labels.

    Raises
    ------
    ValueError
        Fewer than 252 closes.
    """
    if len(closes) < MIN_TRAINING_PRICES:
        raise ValueError(
            f"Need at least {MIN_TRAINING_PRICES} prices to train, got {len(closes)}"
        )

    observations = build_observations(closes, window)
    symbols = [o.symbol for o in observations]
    labels = [rule_label(o) for o in observations]

    emission = seed_emission(symbols, labels)
    transition = np.asarray(DEFAULT_TRANSITION_MATRIX, dtype=float)
    label_counts = np.bincount([int(s) for s in labels], minlength=NUM_STATES) + 1.0
    initial = label_counts / label_counts.sum()

    a, b, pi, log_likelihood, iterations = baum_welch(
        symbols, transition, emission, initial, max_iterations=max_iterations
    )
    decoded = posterior_states(symbols, a, b, pi)
    accuracy = float(np.mean(decoded == np.array([int(s) for s in labels])))

    logger.info(
        f"Trained HMM on {len(symbols)} observations: "
        f"{iterations} iterations, log-likelihood {log_likelihood:.2f}, accuracy {accuracy:.2%}"
    )
    return TrainedHMM(
        transition_matrix=a.tolist(),
        emission_matrix=b.tolist(),
        initial_distribution=pi.tolist(),
        log_likelihood=log_likelihood,
        iterations=iterations,
        accuracy=accuracy,
        num_observations=len(symbols),
    )
