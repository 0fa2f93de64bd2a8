from __future__ import annotations

import logging
import random
import statistics
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

from .clock import Clock, Scheduler, TimerHandle
from .results import Domain, ScoreReport, round_half_up

logger = logging.getLogger(__name__)

T = TypeVar("T")

CompletionCallback = Callable[[ScoreReport], None]


@dataclass(frozen=True, slots=True)
class Trial:
    """One closed stimulus/response unit.

    Trials are appended to the owning engine's log when they close, so a
    Trial object is never mutated after it exists.
    """

    index: int
    presented_at_ms: float
    stimulus: object
    responded_at_ms: float | None
    is_correct: bool
    points: float = 0.0

    @property
    def missed(self) -> bool:
        return self.responded_at_ms is None

    @property
    def reaction_time_ms(self) -> float | None:
        if self.responded_at_ms is None:
            return None
        return max(0.0, self.responded_at_ms - self.presented_at_ms)


class TrialLog:
    """Append-only trial history of one engine instance."""

    def __init__(self) -> None:
        self._trials: list[Trial] = []

    def __len__(self) -> int:
        return len(self._trials)

    def __iter__(self) -> Iterator[Trial]:
        return iter(tuple(self._trials))

    def append(
        self,
        *,
        presented_at_ms: float,
        stimulus: object,
        responded_at_ms: float | None,
        is_correct: bool,
        points: float = 0.0,
    ) -> Trial:
        trial = Trial(
            index=len(self._trials),
            presented_at_ms=float(presented_at_ms),
            stimulus=stimulus,
            responded_at_ms=None if responded_at_ms is None else float(responded_at_ms),
            is_correct=bool(is_correct),
            points=float(points),
        )
        self._trials.append(trial)
        return trial

    @property
    def correct(self) -> int:
        return sum(1 for t in self._trials if t.is_correct)

    def reaction_times_ms(self) -> list[float]:
        return [t.reaction_time_ms for t in self._trials if t.reaction_time_ms is not None]

    def as_list(self) -> list[Trial]:
        return list(self._trials)


@dataclass(frozen=True, slots=True)
class GameSnapshot:
    """View model for the host (pure data)."""

    title: str
    phase: StrEnum
    prompt: str
    input_hint: str
    paused: bool
    trial_index: int
    trial_total: int | None
    correct: int
    lives: int | None
    time_remaining_s: float | None
    running_score: float
    payload: object | None = None


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def uniform(self, a: float, b: float) -> float:
        return self._rng.uniform(a, b)

    def random(self) -> float:
        return self._rng.random()

    def shuffle(self, values: list[T]) -> None:
        # Deterministic in-place Fisher-Yates shuffle.
        for i in range(len(values) - 1, 0, -1):
            j = int(self.randint(0, i))
            values[i], values[j] = values[j], values[i]


def clamp01(x: float) -> float:
    return 0.0 if x <= 0.0 else 1.0 if x >= 1.0 else float(x)


def mean(values: Iterable[float]) -> float:
    items = [float(v) for v in values]
    return 0.0 if not items else sum(items) / len(items)


def pstdev(values: Iterable[float]) -> float:
    items = [float(v) for v in values]
    return 0.0 if len(items) < 2 else statistics.pstdev(items)


class GameEngine:
    """Shared shape of every game: timed state machine + trial log + scorer.

    Subclasses declare their phase enum through the class attributes below and
    implement `_on_start()` and `_build_report()`; the base class owns the
    scheduler, pause/resume, abandonment and single emission of the report.

    Host contract:
    - call `update()` every frame so scheduled timers fire;
    - forward inputs with the wall-clock time they happened (`at_s`);
    - read `snapshot()` after each event to render.
    """

    title: str = ""
    game_type: str = ""
    domain: Domain = Domain.MEMORY
    input_hint: str = ""

    setup_phase: StrEnum
    result_phase: StrEnum
    countdown_phase: StrEnum | None = None
    paused_phase: StrEnum | None = None
    pausable_phases: frozenset[StrEnum] = frozenset()

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        self._clock = clock
        self._seed = int(seed)
        self._rng = SeededRng(self._seed)
        self._scheduler = Scheduler(clock)
        self._log = TrialLog()
        self._on_complete = on_complete

        self._phase: StrEnum = self.setup_phase
        self._resume_phase: StrEnum | None = None
        self._paused = False
        self._abandoned = False
        self._report: ScoreReport | None = None
        self._running_score = 0.0

        self._countdown_left = 0
        self._countdown_handle: TimerHandle | None = None

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def phase(self) -> StrEnum:
        return self._phase

    @property
    def report(self) -> ScoreReport | None:
        return self._report

    @property
    def is_finished(self) -> bool:
        return self._report is not None

    @property
    def is_abandoned(self) -> bool:
        return self._abandoned

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def running_score(self) -> float:
        return self._running_score

    def now_ms(self) -> float:
        return self._scheduler.now_ms()

    def trials(self) -> list[Trial]:
        return self._log.as_list()

    def can_exit(self) -> bool:
        return self._phase in (self.setup_phase, self.result_phase) or self._abandoned

    def start(self, at_s: float | None = None) -> bool:
        if self._phase is not self.setup_phase or self._abandoned:
            return False
        self._scheduler.advance(at_s)
        self._on_start()
        return True

    def update(self) -> None:
        if self._report is not None or self._abandoned:
            return
        self._scheduler.advance()

    def pause(self, at_s: float | None = None) -> bool:
        if self._paused or self._report is not None or self._abandoned:
            return False
        if self._phase not in self.pausable_phases:
            return False
        self._scheduler.pause(at_s)
        if self._report is not None:
            # A timer due before the pause instant ended the game.
            return False
        self._paused = True
        self._resume_phase = self._phase
        if self.paused_phase is not None:
            self._set_phase(self.paused_phase)
        return True

    def resume(self, at_s: float | None = None) -> bool:
        if not self._paused or self._abandoned:
            return False
        self._scheduler.resume(at_s)
        self._paused = False
        if self._resume_phase is not None and self.paused_phase is not None:
            self._set_phase(self._resume_phase)
        self._resume_phase = None
        return True

    def abandon(self) -> None:
        """Discard a running engine: cancel every timer, never emit a report."""

        if self._report is not None or self._abandoned:
            return
        self._scheduler.cancel_all()
        self._abandoned = True
        logger.debug("%s abandoned in phase %s", self.game_type, self._phase.value)

    def snapshot(self) -> GameSnapshot:
        return GameSnapshot(
            title=self.title,
            phase=self._phase,
            prompt=self._prompt(),
            input_hint=self.input_hint,
            paused=self._paused,
            trial_index=self._trial_index(),
            trial_total=self._trial_total(),
            correct=self._log.correct,
            lives=self._lives(),
            time_remaining_s=self._time_remaining_s(),
            running_score=float(self._running_score),
            payload=self._payload(),
        )

    # Hooks

    def _on_start(self) -> None:
        raise NotImplementedError

    def _build_report(self) -> ScoreReport:
        raise NotImplementedError

    def _prompt(self) -> str:
        return ""

    def _payload(self) -> object | None:
        return None

    def _trial_index(self) -> int:
        return len(self._log)

    def _trial_total(self) -> int | None:
        return None

    def _lives(self) -> int | None:
        return None

    def _time_remaining_s(self) -> float | None:
        return None

    # Helpers for subclasses

    def _accept_input(self, at_s: float | None) -> bool:
        """Bring the timeline up to the input instant; False if input must be ignored."""

        if self._report is not None or self._abandoned or self._paused:
            return False
        self._scheduler.advance(at_s)
        return self._report is None

    def _set_phase(self, phase: StrEnum) -> None:
        if phase is self._phase:
            return
        logger.debug("%s: %s -> %s", self.game_type, self._phase.value, phase.value)
        self._phase = phase

    def _run_countdown(self, seconds: int, then: Callable[[], None]) -> None:
        if self.countdown_phase is None or seconds <= 0:
            then()
            return
        self._countdown_left = int(seconds)
        self._set_phase(self.countdown_phase)

        def _step() -> None:
            self._countdown_left -= 1
            if self._countdown_left > 0:
                return
            if self._countdown_handle is not None:
                self._countdown_handle.cancel()
                self._countdown_handle = None
            then()

        self._countdown_handle = self._scheduler.tick(1000.0, _step)

    def _finish(self) -> None:
        if self._report is not None or self._abandoned:
            return
        self._scheduler.cancel_all()
        self._set_phase(self.result_phase)
        report = self._build_report()
        self._report = report
        logger.info(
            "%s finished: score=%d accuracy=%d%% rt=%dms trials=%d",
            report.game_type,
            report.score,
            report.accuracy,
            report.reaction_time_ms,
            report.trials,
        )
        if self._on_complete is not None:
            self._on_complete(report)

    def _make_report(
        self,
        *,
        score: int,
        accuracy: float,
        reaction_time_ms: float,
        difficulty: str,
        metrics: Mapping[str, float],
    ) -> ScoreReport:
        return ScoreReport(
            game_type=self.game_type,
            domain=self.domain,
            score=int(score),
            accuracy=round_half_up(accuracy),
            reaction_time_ms=round_half_up(reaction_time_ms),
            difficulty=difficulty,
            trials=len(self._log),
            completed_at_ms=self._scheduler.now_ms(),
            metrics=dict(metrics),
        )
