from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum


class Domain(StrEnum):
    MEMORY = "memory"
    ATTENTION = "attention"
    EXECUTIVE = "executive"
    VISUOSPATIAL = "visuospatial"


@dataclass(frozen=True, slots=True)
class ScoreReport:
    """Terminal summary handed to the host once an engine reaches its result phase.

    `metrics` carries the game-specific sub-scores the overall score was built
    from, so the host can chart them without re-deriving anything.
    """

    game_type: str
    domain: Domain
    score: int
    accuracy: int
    reaction_time_ms: int
    difficulty: str
    trials: int
    completed_at_ms: float
    metrics: Mapping[str, float] = field(default_factory=dict)

    def metric(self, name: str, default: float | None = None) -> float | None:
        return self.metrics.get(name, default)

    def as_dict(self) -> dict[str, object]:
        return {
            "gameType": self.game_type,
            "domain": self.domain.value,
            "score": int(self.score),
            "accuracy": int(self.accuracy),
            "reactionTime": int(self.reaction_time_ms),
            "difficulty": self.difficulty,
            "trials": int(self.trials),
            "completedAtMs": float(self.completed_at_ms),
            "metrics": {k: float(v) for k, v in self.metrics.items()},
        }


def clamp_score(x: float) -> float:
    """Clamp a 0-100 score component."""

    if math.isnan(x):
        return 0.0
    return 0.0 if x <= 0.0 else 100.0 if x >= 100.0 else float(x)


def round_half_up(x: float) -> int:
    # Matches the rounding players see elsewhere in the product (x.5 rounds up).
    return int(math.floor(x + 0.5))


def weighted_score(components: Sequence[float], weights: Sequence[float]) -> int:
    """Blend 0-100 components into one 0-100 integer score.

    Every component is clamped on its own before weighting, then the blend is
    rounded half-up and clamped again.
    """

    if len(components) != len(weights):
        raise ValueError("components and weights must have the same length")
    total = sum(clamp_score(c) * float(w) for c, w in zip(components, weights, strict=True))
    return int(clamp_score(round_half_up(total)))
