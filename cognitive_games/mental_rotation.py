from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from .clock import Clock
from .cognitive_core import CompletionCallback, GameEngine, SeededRng, mean, pstdev
from .results import Domain, ScoreReport, round_half_up, weighted_score

logger = logging.getLogger(__name__)

Shape = tuple[tuple[int, ...], ...]


class RotationPhase(StrEnum):
    SETUP = "setup"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    RESULT = "result"


SHAPE_BANK: tuple[Shape, ...] = (
    # L
    ((1, 0, 0), (1, 0, 0), (1, 1, 0)),
    ((1, 1, 0), (1, 0, 0), (1, 0, 0)),
    # T / plus
    ((1, 1, 1), (0, 1, 0), (0, 1, 0)),
    ((0, 1, 0), (1, 1, 1), (0, 1, 0)),
    # Z / S
    ((1, 1, 0), (0, 1, 1), (0, 0, 0)),
    ((0, 1, 1), (1, 1, 0), (0, 0, 0)),
    # complex
    ((1, 0, 1), (1, 1, 1), (0, 1, 0)),
    ((0, 1, 0), (1, 1, 0), (1, 0, 1)),
    # asymmetric
    ((1, 0, 0), (1, 1, 0), (0, 1, 1)),
    ((1, 1, 1), (0, 0, 1), (0, 0, 1)),
)

ANGLES: tuple[int, ...] = (60, 90, 120, 180, 240, 270, 300)


def rotate_shape(shape: Shape, degrees: int) -> Shape:
    """Rotate clockwise, snapping the angle to the nearest quarter turn."""

    turns = round_half_up((degrees % 360) / 90.0)
    out = shape
    for _ in range(turns % 4):
        rows = len(out)
        cols = len(out[0]) if rows else 0
        out = tuple(tuple(out[rows - 1 - r][c] for r in range(rows)) for c in range(cols))
    return out


def mirror_shape(shape: Shape) -> Shape:
    return tuple(tuple(reversed(row)) for row in shape)


def filled_cells(shape: Shape) -> int:
    return sum(sum(row) for row in shape)


def is_asymmetric(shape: Shape) -> bool:
    return mirror_shape(shape) != shape


def angular_distance(degrees: int) -> int:
    a = degrees % 360
    return min(a, 360 - a)


def trial_complexity(shape: Shape, degrees: int, *, mirror_distractor: bool) -> int:
    filled = filled_cells(shape)
    tier = 1 if filled <= 4 else 2 if filled <= 7 else 3
    value = tier + (1 if is_asymmetric(shape) else 0)
    value += 1 if degrees % 90 != 0 else 0
    value += 1 if mirror_distractor else 0
    return max(1, min(5, value))


def rotation_points(*, complexity: int, reaction_time_ms: float, degrees: int, mirror_task: bool) -> float:
    optimal_ms = 2000.0 + complexity * 1000.0
    time_bonus = max(0.0, 150.0 - max(0.0, (reaction_time_ms - optimal_ms) / 50.0))
    rotation_bonus = 30.0 if degrees % 90 != 0 else 0.0
    mirror_bonus = 20.0 if mirror_task else 0.0
    return 100.0 + complexity * 25.0 + time_bonus + rotation_bonus + mirror_bonus


@dataclass(frozen=True, slots=True)
class RotationConfig:
    trials: int = 20
    countdown_s: int = 3
    mirror_every: int = 4
    mirror_answer_probability: float = 0.5
    mirror_distractor_probability: float = 0.5
    other_shape_probability: float = 0.3
    other_shape_probability_hard: float = 0.15
    hard_complexity: int = 4
    distractor_attempts: int = 40
    shapes: tuple[Shape, ...] = SHAPE_BANK
    angles: tuple[int, ...] = ANGLES


@dataclass(frozen=True, slots=True)
class RotationStimulus:
    shape: Shape
    angle: int
    target: Shape
    options: tuple[Shape, ...]
    correct_option: int
    mirror_task: bool
    mirror_distractor: bool
    complexity: int


@dataclass(frozen=True, slots=True)
class RotationPayload:
    shape: Shape
    angle: int
    options: tuple[Shape, ...]
    mirror_task: bool


class RotationTrialGenerator:
    """Builds one trial: base shape, angle, correct answer and four distinct options."""

    def __init__(self, rng: SeededRng, config: RotationConfig) -> None:
        self._rng = rng
        self._cfg = config

    def next_trial(self, index: int) -> RotationStimulus:
        cfg = self._cfg
        shape = self._rng.choice(cfg.shapes)
        angle = self._rng.choice(cfg.angles)
        mirror_task = index % cfg.mirror_every == 0

        target = rotate_shape(shape, angle)
        if mirror_task and self._rng.random() < cfg.mirror_answer_probability:
            target = mirror_shape(target)

        options: list[Shape] = [target]
        mirror_distractor = False
        if mirror_task or self._rng.random() < cfg.mirror_distractor_probability:
            mirrored = mirror_shape(target)
            if mirrored != target:
                options.append(mirrored)
                mirror_distractor = True

        complexity = trial_complexity(shape, angle, mirror_distractor=mirror_distractor)
        self._fill(options, shape, complexity)
        self._rng.shuffle(options)

        return RotationStimulus(
            shape=shape,
            angle=angle,
            target=target,
            options=tuple(options),
            correct_option=options.index(target),
            mirror_task=mirror_task,
            mirror_distractor=mirror_distractor,
            complexity=complexity,
        )

    def _fill(self, options: list[Shape], shape: Shape, complexity: int) -> None:
        cfg = self._cfg
        p_other = cfg.other_shape_probability
        if complexity >= cfg.hard_complexity:
            p_other = cfg.other_shape_probability_hard
        attempts = 0
        while len(options) < 4 and attempts < cfg.distractor_attempts:
            attempts += 1
            if self._rng.random() < p_other:
                candidate = rotate_shape(self._rng.choice(cfg.shapes), self._rng.choice(cfg.angles))
            else:
                candidate = rotate_shape(shape, self._rng.choice(cfg.angles))
                if self._rng.random() < 0.4:
                    candidate = mirror_shape(candidate)
            if candidate not in options:
                options.append(candidate)

        if len(options) < 4:
            logger.debug("visuospatial: distractor search exhausted, sweeping the shape bank")
        for base in (shape, *cfg.shapes):
            for turns in range(4):
                for flip in (False, True):
                    if len(options) >= 4:
                        return
                    candidate = rotate_shape(base, turns * 90)
                    if flip:
                        candidate = mirror_shape(candidate)
                    if candidate not in options:
                        options.append(candidate)


@dataclass(frozen=True, slots=True)
class RotationSubscores:
    accuracy: float
    mirror_discrimination: float
    rotation_speed: float
    working_memory: float
    consistency: float
    spatial: float

    def final_score(self) -> int:
        return weighted_score(
            (
                self.accuracy,
                self.mirror_discrimination,
                self.rotation_speed,
                self.working_memory,
                self.consistency,
                self.spatial,
            ),
            (0.25, 0.20, 0.20, 0.15, 0.10, 0.10),
        )


def expected_rotation_ms(degrees: int) -> float:
    return 1000.0 + 1000.0 * (angular_distance(degrees) / 60.0)


def rotation_subscores(
    *,
    outcomes: Sequence[tuple[RotationStimulus, bool, float]],
    total_trials: int,
    mirror_errors: int,
    running_accuracy: float,
) -> RotationSubscores:
    """Score answered trials given as (stimulus, correct, reaction time ms)."""

    correct = sum(1 for _, ok, _ in outcomes if ok)
    accuracy = 0.0 if total_trials <= 0 else (correct / total_trials) * 100.0

    mirror_tasks = sum(1 for stim, _, _ in outcomes if stim.mirror_task)
    mirror = 100.0 if mirror_tasks == 0 else max(0.0, 100.0 - (mirror_errors / mirror_tasks) * 50.0)

    speeds = []
    for stim, _, rt in outcomes:
        expected = expected_rotation_ms(stim.angle)
        speeds.append(100.0 * expected / max(rt, expected))
    speed = mean(speeds)

    total_complexity = sum(stim.complexity for stim, _, _ in outcomes)
    solved_complexity = sum(stim.complexity for stim, ok, _ in outcomes if ok)
    working_memory = 0.0 if total_complexity == 0 else (solved_complexity / total_complexity) * 100.0

    consistency = max(0.0, 100.0 - pstdev([rt for _, _, rt in outcomes]) / 100.0)

    return RotationSubscores(
        accuracy=accuracy,
        mirror_discrimination=mirror,
        rotation_speed=speed,
        working_memory=working_memory,
        consistency=consistency,
        spatial=running_accuracy,
    )


class RotationEngine(GameEngine):
    """Match a rotated (sometimes mirrored) shape among four candidates."""

    title = "Visuospatial Challenge"
    game_type = "visuospatial"
    domain = Domain.VISUOSPATIAL
    input_hint = "Pick the option that is the shape turned by the given angle (1-4)"

    setup_phase = RotationPhase.SETUP
    result_phase = RotationPhase.RESULT
    countdown_phase = RotationPhase.COUNTDOWN
    pausable_phases = frozenset({RotationPhase.PLAYING})

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        config: RotationConfig | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        cfg = config or RotationConfig()
        if cfg.trials <= 0:
            raise ValueError("trials must be > 0")
        if cfg.countdown_s < 0:
            raise ValueError("countdown_s must be >= 0")
        if cfg.mirror_every <= 0:
            raise ValueError("mirror_every must be > 0")
        for name in (
            "mirror_answer_probability",
            "mirror_distractor_probability",
            "other_shape_probability",
            "other_shape_probability_hard",
        ):
            if not (0.0 <= getattr(cfg, name) <= 1.0):
                raise ValueError(f"{name} must be in [0.0, 1.0]")
        if not cfg.shapes or not cfg.angles:
            raise ValueError("shapes and angles must not be empty")

        super().__init__(clock=clock, seed=seed, on_complete=on_complete)
        self._cfg = cfg
        self._gen = RotationTrialGenerator(self._rng, cfg)

        self._index = 0
        self._current: RotationStimulus | None = None
        self._presented_ms = 0.0
        self._outcomes: list[tuple[RotationStimulus, bool, float]] = []
        self._mirror_errors = 0
        self._angle_totals: dict[int, list[int]] = {}
        self._spatial = 100.0

    @property
    def current_stimulus(self) -> RotationStimulus | None:
        return self._current if self._phase is RotationPhase.PLAYING else None

    @property
    def mirror_errors(self) -> int:
        return self._mirror_errors

    def select_option(self, option_index: int, at_s: float | None = None) -> bool:
        """Pick one of the four candidates. Returns True if the answer was recorded."""

        if not self._accept_input(at_s):
            return False
        if self._phase is not RotationPhase.PLAYING or self._current is None:
            return False
        choice = int(option_index)
        if not (0 <= choice < len(self._current.options)):
            return False

        stim = self._current
        now = self._scheduler.now_ms()
        rt = max(0.0, now - self._presented_ms)
        correct = choice == stim.correct_option

        if not correct and stim.options[choice] == mirror_shape(stim.target):
            self._mirror_errors += 1

        points = 0.0
        if correct:
            points = rotation_points(
                complexity=stim.complexity,
                reaction_time_ms=rt,
                degrees=stim.angle,
                mirror_task=stim.mirror_task,
            )
            self._running_score += points

        tally = self._angle_totals.setdefault(stim.angle, [0, 0])
        tally[1] += 1
        if correct:
            tally[0] += 1

        self._outcomes.append((stim, correct, rt))
        self._log.append(
            presented_at_ms=self._presented_ms,
            stimulus=stim,
            responded_at_ms=now,
            is_correct=correct,
            points=points,
        )
        self._spatial = (self._log.correct / float(len(self._log))) * 100.0

        self._index += 1
        if self._index >= self._cfg.trials:
            self._finish()
        else:
            self._present()
        return True

    def _on_start(self) -> None:
        self._run_countdown(self._cfg.countdown_s, self._begin_playing)

    def _begin_playing(self) -> None:
        self._set_phase(RotationPhase.PLAYING)
        self._index = 0
        self._present()

    def _present(self) -> None:
        self._current = self._gen.next_trial(self._index)
        self._presented_ms = self._scheduler.now_ms()

    def _build_report(self) -> ScoreReport:
        subs = rotation_subscores(
            outcomes=self._outcomes,
            total_trials=self._cfg.trials,
            mirror_errors=self._mirror_errors,
            running_accuracy=self._spatial,
        )
        metrics: dict[str, float] = {
            "accuracy": subs.accuracy,
            "mirror_discrimination": subs.mirror_discrimination,
            "rotation_speed": subs.rotation_speed,
            "working_memory": subs.working_memory,
            "consistency": subs.consistency,
            "spatial_average": subs.spatial,
            "mirror_errors": float(self._mirror_errors),
            "mirror_tasks": float(sum(1 for stim, _, _ in self._outcomes if stim.mirror_task)),
            "points": float(self._running_score),
        }
        for angle in sorted(self._angle_totals):
            ok, total = self._angle_totals[angle]
            metrics[f"angle_{angle}_accuracy"] = (ok / total) * 100.0
        return self._make_report(
            score=subs.final_score(),
            accuracy=subs.accuracy,
            reaction_time_ms=mean(rt for _, _, rt in self._outcomes),
            difficulty=f"Mental Rotation (Mirror errors: {self._mirror_errors})",
            metrics=metrics,
        )

    def _prompt(self) -> str:
        if self._phase is RotationPhase.SETUP:
            return "Find the option that shows the shape after rotation. Watch out for mirror images."
        if self._phase is RotationPhase.COUNTDOWN:
            return f"Get ready... {self._countdown_left}"
        if self._phase is RotationPhase.PLAYING and self._current is not None:
            return f"Rotate {self._current.angle} degrees clockwise  ({self._index + 1}/{self._cfg.trials})"
        if self._report is not None:
            r = self._report
            return f"Score {r.score}/100  Accuracy {r.accuracy}%  Mirror errors {self._mirror_errors}"
        return ""

    def _payload(self) -> RotationPayload | None:
        if self._phase is not RotationPhase.PLAYING or self._current is None:
            return None
        stim = self._current
        return RotationPayload(
            shape=stim.shape,
            angle=stim.angle,
            options=stim.options,
            mirror_task=stim.mirror_task,
        )

    def _trial_index(self) -> int:
        return min(self._index + 1, self._cfg.trials)

    def _trial_total(self) -> int | None:
        return self._cfg.trials


def build_rotation_engine(
    *,
    clock: Clock,
    seed: int,
    config: RotationConfig | None = None,
    on_complete: CompletionCallback | None = None,
) -> RotationEngine:
    return RotationEngine(clock=clock, seed=seed, config=config, on_complete=on_complete)
