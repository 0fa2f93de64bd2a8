from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from .clock import Clock, TimerHandle
from .cognitive_core import CompletionCallback, GameEngine, SeededRng, mean
from .results import Domain, ScoreReport, weighted_score

logger = logging.getLogger(__name__)


class DualTaskPhase(StrEnum):
    SETUP = "setup"
    COUNTDOWN = "countdown"
    STROOP = "stroop"
    TOWER = "tower"
    RESULT = "result"


COLOR_NAMES: tuple[str, ...] = ("red", "blue", "green", "yellow", "purple", "orange")


@dataclass(frozen=True, slots=True)
class TowerLevel:
    disks: int
    optimal_moves: int
    time_limit_s: int


TOWER_LEVELS: tuple[TowerLevel, ...] = (
    TowerLevel(3, 7, 120),
    TowerLevel(4, 15, 180),
    TowerLevel(5, 31, 300),
)


@dataclass(frozen=True, slots=True)
class DualTaskConfig:
    stroop_trials: int = 30
    countdown_s: int = 3
    palette_size: int = len(COLOR_NAMES)
    tower_disks: int = 3
    tower_levels: tuple[TowerLevel, ...] = TOWER_LEVELS


@dataclass(frozen=True, slots=True)
class StroopStimulus:
    word: int
    ink: int

    @property
    def congruent(self) -> bool:
        return self.word == self.ink


@dataclass(frozen=True, slots=True)
class TowerStimulus:
    disks: int
    optimal_moves: int
    moves: int
    time_limit_s: int


@dataclass(frozen=True, slots=True)
class DualTaskPayload:
    stage: str  # "countdown" | "stroop" | "tower"
    palette: tuple[str, ...]
    word: int | None
    ink: int | None
    pegs: tuple[tuple[int, ...], ...]
    selected_peg: int | None
    moves: int
    optimal_moves: int
    countdown: int | None


class StroopGenerator:
    """Word and ink drawn independently, so congruent trials occur by chance."""

    def __init__(self, rng: SeededRng) -> None:
        self._rng = rng

    def next_trial(self, *, palette_size: int) -> StroopStimulus:
        word = self._rng.randint(0, palette_size - 1)
        ink = self._rng.randint(0, palette_size - 1)
        return StroopStimulus(word=word, ink=ink)


def stroop_points(*, reaction_time_ms: float) -> int:
    time_bonus = max(0, 150 - math.floor(reaction_time_ms / 20.0))
    return 100 + time_bonus


class TowerPuzzle:
    """Three pegs, disks numbered by size; each peg lists disks bottom to top."""

    def __init__(self, disks: int) -> None:
        if disks < 1:
            raise ValueError("disks must be >= 1")
        self._disks = int(disks)
        self._pegs: list[list[int]] = [list(range(self._disks, 0, -1)), [], []]
        self._moves = 0

    @property
    def disks(self) -> int:
        return self._disks

    @property
    def moves(self) -> int:
        return self._moves

    def pegs(self) -> tuple[tuple[int, ...], ...]:
        return tuple(tuple(p) for p in self._pegs)

    def top(self, peg: int) -> int | None:
        stack = self._pegs[peg]
        return stack[-1] if stack else None

    def can_move(self, src: int, dst: int) -> bool:
        if src == dst or not (0 <= src < 3) or not (0 <= dst < 3):
            return False
        moving = self.top(src)
        if moving is None:
            return False
        target = self.top(dst)
        return target is None or moving < target

    def move(self, src: int, dst: int) -> bool:
        """Move the top disk; illegal moves leave the pegs and move count untouched."""

        if not self.can_move(src, dst):
            return False
        self._pegs[dst].append(self._pegs[src].pop())
        self._moves += 1
        return True

    def is_solved(self) -> bool:
        return self._pegs[2] == list(range(self._disks, 0, -1))


def tower_points(*, moves: int, optimal_moves: int, reaction_time_ms: float) -> tuple[int, int]:
    """Return (efficiency, time bonus) for a solved puzzle."""

    efficiency = max(0, 100 - (moves - optimal_moves) * 10)
    time_bonus = max(0, 500 - math.floor(reaction_time_ms / 100.0))
    return efficiency, time_bonus


def dual_task_score(*, correct: int, total: int, reaction_times_ms: Sequence[float]) -> tuple[int, float, float]:
    """Return (score, accuracy %, speed score) over the combined Stroop and tower outcomes."""

    accuracy = 0.0 if total <= 0 else (correct / total) * 100.0
    speed = max(0.0, 100.0 - mean(reaction_times_ms) / 40.0)
    return weighted_score((accuracy, speed), (0.6, 0.4)), accuracy, speed


class DualTaskEngine(GameEngine):
    """A block of colour-word interference trials followed by one tower puzzle.

    Stroop trials wait for an answer with no deadline. The tower phase runs
    against a per-second countdown; running out of time closes the puzzle
    unsolved. The engine finishes when the puzzle is solved or times out.
    """

    title = "Executive Function Challenge"
    game_type = "executive"
    domain = Domain.EXECUTIVE
    input_hint = "Name the ink colour, not the word. Then move the tower to the right peg."

    setup_phase = DualTaskPhase.SETUP
    result_phase = DualTaskPhase.RESULT
    countdown_phase = DualTaskPhase.COUNTDOWN
    pausable_phases = frozenset({DualTaskPhase.STROOP, DualTaskPhase.TOWER})

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        config: DualTaskConfig | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        cfg = config or DualTaskConfig()
        if cfg.stroop_trials <= 0:
            raise ValueError("stroop_trials must be > 0")
        if cfg.countdown_s < 0:
            raise ValueError("countdown_s must be >= 0")
        if not (2 <= cfg.palette_size <= len(COLOR_NAMES)):
            raise ValueError(f"palette_size must be in [2, {len(COLOR_NAMES)}]")
        level = next((lv for lv in cfg.tower_levels if lv.disks == cfg.tower_disks), None)
        if level is None:
            raise ValueError(f"no tower level configured for {cfg.tower_disks} disks")
        if level.time_limit_s <= 0 or level.optimal_moves <= 0:
            raise ValueError("tower time limit and optimal moves must be > 0")

        super().__init__(clock=clock, seed=seed, on_complete=on_complete)
        self._cfg = cfg
        self._tower_level = level
        self._gen = StroopGenerator(self._rng)

        self._stroop_index = 0
        self._current: StroopStimulus | None = None
        self._presented_ms = 0.0
        self._stroop_correct = 0
        self._congruent_rts: list[float] = []
        self._incongruent_rts: list[float] = []
        self._congruent_trials = 0

        self._puzzle = TowerPuzzle(level.disks)
        self._selected: int | None = None
        self._tower_started_ms = 0.0
        self._tower_seconds_left = int(level.time_limit_s)
        self._tower_tick: TimerHandle | None = None
        self._tower_solved = False
        self._tower_efficiency = 0
        self._tower_time_bonus = 0

        self._reaction_times: list[float] = []

    @property
    def current_stimulus(self) -> StroopStimulus | None:
        return self._current if self._phase is DualTaskPhase.STROOP else None

    @property
    def puzzle(self) -> TowerPuzzle:
        return self._puzzle

    @property
    def selected_peg(self) -> int | None:
        return self._selected

    def answer(self, color_index: int, at_s: float | None = None) -> bool:
        """Name the ink colour of the current word. Returns True if accepted."""

        if not self._accept_input(at_s):
            return False
        if self._phase is not DualTaskPhase.STROOP or self._current is None:
            return False
        if not (0 <= int(color_index) < self._cfg.palette_size):
            return False

        stim = self._current
        now = self._scheduler.now_ms()
        rt = max(0.0, now - self._presented_ms)
        self._reaction_times.append(rt)
        (self._congruent_rts if stim.congruent else self._incongruent_rts).append(rt)

        correct = int(color_index) == stim.ink
        points = stroop_points(reaction_time_ms=rt) if correct else 0
        if correct:
            self._stroop_correct += 1
            self._running_score += points
        self._log.append(
            presented_at_ms=self._presented_ms,
            stimulus=stim,
            responded_at_ms=now,
            is_correct=correct,
            points=points,
        )

        self._stroop_index += 1
        if self._stroop_index >= self._cfg.stroop_trials:
            self._begin_tower()
        else:
            self._present_stroop()
        return True

    def select_peg(self, peg_index: int, at_s: float | None = None) -> bool:
        """Tap a peg: select a source, deselect it, or move onto another peg.

        Returns False for ignored taps and for rejected (illegal) moves.
        """

        if not self._accept_input(at_s):
            return False
        if self._phase is not DualTaskPhase.TOWER:
            return False
        peg = int(peg_index)
        if not (0 <= peg < 3):
            return False

        if self._selected is None:
            if self._puzzle.top(peg) is None:
                return False
            self._selected = peg
            return True

        if self._selected == peg:
            self._selected = None
            return True

        src = self._selected
        self._selected = None
        if not self._puzzle.move(src, peg):
            return False
        if self._puzzle.is_solved():
            self._close_tower(solved=True)
        return True

    def _on_start(self) -> None:
        self._run_countdown(self._cfg.countdown_s, self._begin_stroop)

    def _begin_stroop(self) -> None:
        self._set_phase(DualTaskPhase.STROOP)
        self._stroop_index = 0
        self._present_stroop()

    def _present_stroop(self) -> None:
        self._current = self._gen.next_trial(palette_size=self._cfg.palette_size)
        if self._current.congruent:
            self._congruent_trials += 1
        self._presented_ms = self._scheduler.now_ms()

    def _begin_tower(self) -> None:
        self._current = None
        self._set_phase(DualTaskPhase.TOWER)
        self._tower_started_ms = self._scheduler.now_ms()
        self._tower_seconds_left = int(self._tower_level.time_limit_s)
        self._tower_tick = self._scheduler.tick(1000.0, self._tick_tower)

    def _tick_tower(self) -> None:
        self._tower_seconds_left -= 1
        if self._tower_seconds_left <= 0:
            logger.debug("executive: tower time limit reached after %d moves", self._puzzle.moves)
            self._close_tower(solved=False)

    def _close_tower(self, *, solved: bool) -> None:
        if self._tower_tick is not None:
            self._tower_tick.cancel()
            self._tower_tick = None
        now = self._scheduler.now_ms()
        stim = TowerStimulus(
            disks=self._puzzle.disks,
            optimal_moves=self._tower_level.optimal_moves,
            moves=self._puzzle.moves,
            time_limit_s=self._tower_level.time_limit_s,
        )
        if solved:
            rt = max(0.0, now - self._tower_started_ms)
            self._reaction_times.append(rt)
            self._tower_efficiency, self._tower_time_bonus = tower_points(
                moves=self._puzzle.moves,
                optimal_moves=self._tower_level.optimal_moves,
                reaction_time_ms=rt,
            )
            points = self._tower_efficiency + self._tower_time_bonus
            self._running_score += points
            self._tower_solved = True
            self._log.append(
                presented_at_ms=self._tower_started_ms,
                stimulus=stim,
                responded_at_ms=now,
                is_correct=True,
                points=points,
            )
        else:
            self._log.append(
                presented_at_ms=self._tower_started_ms,
                stimulus=stim,
                responded_at_ms=None,
                is_correct=False,
            )
        self._finish()

    def _build_report(self) -> ScoreReport:
        correct = self._stroop_correct + (1 if self._tower_solved else 0)
        total = self._cfg.stroop_trials + 1
        score, accuracy, speed = dual_task_score(
            correct=correct,
            total=total,
            reaction_times_ms=self._reaction_times,
        )
        congruent_rt = mean(self._congruent_rts)
        incongruent_rt = mean(self._incongruent_rts)
        interference = incongruent_rt - congruent_rt if self._congruent_rts and self._incongruent_rts else 0.0
        stroop_accuracy = (self._stroop_correct / float(self._cfg.stroop_trials)) * 100.0
        return self._make_report(
            score=score,
            accuracy=accuracy,
            reaction_time_ms=mean(self._reaction_times),
            difficulty=f"Executive ({self._puzzle.disks} disks)",
            metrics={
                "stroop_accuracy": stroop_accuracy,
                "congruent_rt_ms": congruent_rt,
                "incongruent_rt_ms": incongruent_rt,
                "interference_ms": interference,
                "congruent_trials": float(self._congruent_trials),
                "tower_solved": 1.0 if self._tower_solved else 0.0,
                "tower_moves": float(self._puzzle.moves),
                "tower_efficiency": float(self._tower_efficiency),
                "tower_time_bonus": float(self._tower_time_bonus),
                "speed_score": speed,
                "points": float(self._running_score),
            },
        )

    def _prompt(self) -> str:
        if self._phase is DualTaskPhase.SETUP:
            return "Part 1: pick the colour of the ink. Part 2: rebuild the tower on the right peg."
        if self._phase is DualTaskPhase.COUNTDOWN:
            return f"Get ready... {self._countdown_left}"
        if self._phase is DualTaskPhase.STROOP and self._current is not None:
            return f"Which colour is the ink?  ({self._stroop_index + 1}/{self._cfg.stroop_trials})"
        if self._phase is DualTaskPhase.TOWER:
            return (
                f"Moves {self._puzzle.moves} (best {self._tower_level.optimal_moves})  "
                f"Time left {self._tower_seconds_left}s"
            )
        if self._report is not None:
            r = self._report
            return f"Score {r.score}/100  Accuracy {r.accuracy}%  Mean RT {r.reaction_time_ms} ms"
        return ""

    def _payload(self) -> DualTaskPayload | None:
        if self._phase not in (DualTaskPhase.COUNTDOWN, DualTaskPhase.STROOP, DualTaskPhase.TOWER):
            return None
        stim = self._current if self._phase is DualTaskPhase.STROOP else None
        return DualTaskPayload(
            stage=self._phase.value,
            palette=COLOR_NAMES[: self._cfg.palette_size],
            word=None if stim is None else stim.word,
            ink=None if stim is None else stim.ink,
            pegs=self._puzzle.pegs(),
            selected_peg=self._selected,
            moves=self._puzzle.moves,
            optimal_moves=self._tower_level.optimal_moves,
            countdown=self._countdown_left if self._phase is DualTaskPhase.COUNTDOWN else None,
        )

    def _trial_index(self) -> int:
        if self._phase is DualTaskPhase.TOWER:
            return self._cfg.stroop_trials + 1
        return min(self._stroop_index + 1, self._cfg.stroop_trials)

    def _trial_total(self) -> int | None:
        return self._cfg.stroop_trials + 1

    def _time_remaining_s(self) -> float | None:
        if self._phase is not DualTaskPhase.TOWER:
            return None
        elapsed_s = (self._scheduler.now_ms() - self._tower_started_ms) / 1000.0
        return max(0.0, float(self._tower_level.time_limit_s) - elapsed_s)


def build_dual_task_engine(
    *,
    clock: Clock,
    seed: int,
    config: DualTaskConfig | None = None,
    on_complete: CompletionCallback | None = None,
) -> DualTaskEngine:
    return DualTaskEngine(clock=clock, seed=seed, config=config, on_complete=on_complete)
