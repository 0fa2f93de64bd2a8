"""Adaptive cognitive mini-game engines with a thin pygame host."""

from .results import Domain, ScoreReport

__all__ = ["Domain", "ScoreReport"]
