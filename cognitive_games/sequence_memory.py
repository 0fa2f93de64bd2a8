from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from .clock import Clock
from .cognitive_core import CompletionCallback, GameEngine, SeededRng, mean
from .results import Domain, ScoreReport, round_half_up, weighted_score

logger = logging.getLogger(__name__)


class SequencePhase(StrEnum):
    SETUP = "setup"
    SHOWING = "showing"
    PLAYING = "playing"
    RESULT = "result"


@dataclass(frozen=True, slots=True)
class SequenceLevel:
    name: str
    sequence_length: int
    time_per_item_ms: float
    colors: int
    adaptive_threshold: float


PALETTE: tuple[str, ...] = ("red", "blue", "green", "yellow", "purple", "orange")

DIFFICULTY_LEVELS: tuple[SequenceLevel, ...] = (
    SequenceLevel("Easy", 3, 1200.0, 4, 0.80),
    SequenceLevel("Medium", 4, 1000.0, 5, 0.75),
    SequenceLevel("Hard", 5, 800.0, 6, 0.70),
    SequenceLevel("Expert", 6, 700.0, 6, 0.65),
    SequenceLevel("Master", 7, 600.0, 6, 0.60),
)


@dataclass(frozen=True, slots=True)
class SequenceConfig:
    max_rounds: int = 15
    lives: int = 3
    initial_span: int = 3
    min_span: int = 2
    max_span: int = 8
    streak_to_adapt: int = 2
    adaptive: bool = True

    start_level: int = 0
    level_check_every: int = 4
    levels: tuple[SequenceLevel, ...] = DIFFICULTY_LEVELS
    palette_size: int | None = None  # overrides the level's colour count

    lead_in_ms: float = 1000.0
    gap_ms: float = 200.0
    next_round_delay_ms: float = 1500.0
    retry_delay_ms: float = 2000.0
    optimal_ms_per_item: float = 500.0


@dataclass(frozen=True, slots=True)
class SequenceStimulus:
    round: int
    sequence: tuple[int, ...]
    attempts: int
    errors: int
    error_positions: tuple[int, ...]
    level: int


@dataclass(frozen=True, slots=True)
class SequencePayload:
    palette: tuple[str, ...]
    highlighted: int | None
    sequence_length: int
    entered: int
    span: int
    level_name: str
    accepting_input: bool
    feedback: str | None  # "correct" | "wrong" while the next attempt is pending


class SequenceGenerator:
    """Colour-index sequences with no immediate repeats (when the palette allows)."""

    def __init__(self, rng: SeededRng) -> None:
        self._rng = rng

    def next_sequence(self, *, length: int, palette_size: int) -> tuple[int, ...]:
        if palette_size < 1:
            raise ValueError("palette_size must be >= 1")
        out: list[int] = []
        last = -1
        for _ in range(max(0, int(length))):
            pick = self._rng.randint(0, palette_size - 1)
            while pick == last and palette_size > 2:
                pick = self._rng.randint(0, palette_size - 1)
            out.append(pick)
            last = pick
        return tuple(out)


class AdaptiveSpanPolicy:
    """Two fully-correct rounds in a row lengthen the span, two erroneous rounds shorten it."""

    def __init__(self, *, initial: int, floor: int, ceiling: int, streak: int = 2) -> None:
        self._floor = int(floor)
        self._ceiling = int(ceiling)
        self._streak = max(1, int(streak))
        self._span = self._clamp(int(initial))
        self._consecutive_correct = 0
        self._consecutive_errors = 0
        self.increases = 0
        self.decreases = 0

    @property
    def span(self) -> int:
        return self._span

    @property
    def streak(self) -> int:
        return self._streak

    @property
    def consecutive_correct(self) -> int:
        return self._consecutive_correct

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    def record(self, *, correct: bool) -> int:
        """Feed one round outcome; returns the span change it caused."""

        if correct:
            self._consecutive_correct += 1
            self._consecutive_errors = 0
            if self._consecutive_correct >= self._streak:
                self._consecutive_correct = 0
                return self._shift(+1)
            return 0

        self._consecutive_errors += 1
        self._consecutive_correct = 0
        if self._consecutive_errors >= self._streak:
            self._consecutive_errors = 0
            return self._shift(-1)
        return 0

    def _shift(self, delta: int) -> int:
        before = self._span
        self._span = self._clamp(before + delta)
        if self._span > before:
            self.increases += 1
        elif self._span < before:
            self.decreases += 1
        return self._span - before

    def _clamp(self, span: int) -> int:
        return max(self._floor, min(self._ceiling, span))


def round_score(
    *,
    reaction_time_ms: float,
    sequence_length: int,
    errors_so_far: int,
    level: int,
    optimal_ms_per_item: float = 500.0,
) -> int:
    optimal_ms = sequence_length * optimal_ms_per_item
    time_bonus = max(0.0, 100.0 - max(0.0, (reaction_time_ms - optimal_ms) / 50.0))
    length_bonus = sequence_length * 20
    consistency_bonus = max(0, 50 - errors_so_far * 10)
    multiplier = 1.0 + (level + 1) * 0.5
    return round_half_up((100 + time_bonus + length_bonus + consistency_bonus) * multiplier)


class SequenceEngine(GameEngine):
    """Watch a colour sequence, then tap it back in order.

    Each round is one Trial. A wrong tap costs a life and replays the round
    with a fresh sequence after a feedback pause; the Trial closes when the
    round is finally completed (correct only if it had no errors) or when the
    last life is lost.
    """

    title = "Memory Challenge"
    game_type = "memory"
    domain = Domain.MEMORY
    input_hint = "Watch the sequence, then tap the colours in the same order"

    setup_phase = SequencePhase.SETUP
    result_phase = SequencePhase.RESULT
    pausable_phases = frozenset({SequencePhase.SHOWING, SequencePhase.PLAYING})

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        config: SequenceConfig | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        cfg = config or SequenceConfig()
        if cfg.max_rounds <= 0:
            raise ValueError("max_rounds must be > 0")
        if cfg.lives <= 0:
            raise ValueError("lives must be > 0")
        if cfg.min_span < 1 or cfg.min_span > cfg.max_span:
            raise ValueError("span bounds must satisfy 1 <= min_span <= max_span")
        if not cfg.levels:
            raise ValueError("levels must not be empty")
        if not (0 <= cfg.start_level < len(cfg.levels)):
            raise ValueError("start_level out of range")
        if cfg.palette_size is not None and not (2 <= cfg.palette_size <= len(PALETTE)):
            raise ValueError(f"palette_size must be in [2, {len(PALETTE)}]")
        if any(lv.colors < 2 or lv.colors > len(PALETTE) for lv in cfg.levels):
            raise ValueError(f"level colour counts must be in [2, {len(PALETTE)}]")
        if cfg.level_check_every <= 0:
            raise ValueError("level_check_every must be > 0")

        super().__init__(clock=clock, seed=seed, on_complete=on_complete)
        self._cfg = cfg
        self._gen = SequenceGenerator(self._rng)
        self._policy = AdaptiveSpanPolicy(
            initial=cfg.initial_span,
            floor=cfg.min_span,
            ceiling=cfg.max_span,
            streak=cfg.streak_to_adapt,
        )

        self._level = int(cfg.start_level)
        self._lives_left = int(cfg.lives)
        self._round = 0

        self._sequence: tuple[int, ...] = ()
        self._step = 0
        self._highlight: int | None = None
        self._input_locked = True
        self._feedback: str | None = None
        self._playing_started_ms = 0.0

        self._round_attempts = 0
        self._round_errors = 0
        self._round_error_positions: list[int] = []
        self._total_errors = 0
        self._reaction_times: list[float] = []
        self._flawless_rounds = 0
        self._completed_rounds = 0
        self._peak_span = self._current_span()

    @property
    def span(self) -> int:
        return self._current_span()

    @property
    def level(self) -> int:
        return self._level

    @property
    def lives(self) -> int:
        return self._lives_left

    @property
    def round(self) -> int:
        return self._round

    @property
    def sequence(self) -> tuple[int, ...]:
        return self._sequence

    @property
    def palette_size(self) -> int:
        if self._cfg.palette_size is not None:
            return int(self._cfg.palette_size)
        return int(self._cfg.levels[self._level].colors)

    def tap(self, color_index: int, at_s: float | None = None) -> bool:
        """Player taps a colour pad. Returns True if the tap was accepted."""

        if not self._accept_input(at_s):
            return False
        if self._phase is not SequencePhase.PLAYING or self._input_locked:
            return False
        if not (0 <= int(color_index) < self.palette_size):
            return False

        now = self._scheduler.now_ms()
        rt = max(0.0, now - self._playing_started_ms)
        if int(color_index) == self._sequence[self._step]:
            self._step += 1
            if self._step == len(self._sequence):
                self._complete_round(now, rt)
            return True

        self._fail_attempt(now, rt)
        return True

    def _on_start(self) -> None:
        self._round = 1
        self._round_attempts = 0
        self._round_errors = 0
        self._round_error_positions = []
        self._begin_attempt()

    def _current_span(self) -> int:
        if self._cfg.adaptive:
            return self._policy.span
        length = self._cfg.levels[self._level].sequence_length
        return max(self._cfg.min_span, min(self._cfg.max_span, int(length)))

    def _begin_attempt(self) -> None:
        self._feedback = None
        self._input_locked = True
        self._highlight = None
        self._step = 0
        self._round_attempts += 1
        self._sequence = self._gen.next_sequence(length=self._current_span(), palette_size=self.palette_size)
        self._peak_span = max(self._peak_span, len(self._sequence))
        self._set_phase(SequencePhase.SHOWING)
        self._scheduler.after(self._cfg.lead_in_ms, lambda: self._show_item(0))

    def _show_item(self, i: int) -> None:
        if i >= len(self._sequence):
            self._highlight = None
            self._input_locked = False
            self._playing_started_ms = self._scheduler.now_ms()
            self._set_phase(SequencePhase.PLAYING)
            return
        self._highlight = self._sequence[i]
        per_item = self._cfg.levels[self._level].time_per_item_ms
        self._scheduler.after(per_item, lambda: self._hide_item(i))

    def _hide_item(self, i: int) -> None:
        self._highlight = None
        self._scheduler.after(self._cfg.gap_ms, lambda: self._show_item(i + 1))

    def _complete_round(self, now: float, rt: float) -> None:
        points = round_score(
            reaction_time_ms=rt,
            sequence_length=len(self._sequence),
            errors_so_far=self._total_errors,
            level=self._level,
            optimal_ms_per_item=self._cfg.optimal_ms_per_item,
        )
        self._running_score += points
        self._reaction_times.append(rt)
        flawless = self._round_errors == 0
        self._close_round(now, is_correct=flawless, points=points)
        self._completed_rounds += 1
        if flawless:
            self._flawless_rounds += 1

        if self._round >= self._cfg.max_rounds:
            self._finish()
            return

        if self._round % self._cfg.level_check_every == 0:
            self._maybe_level_up()

        self._round += 1
        self._round_attempts = 0
        self._round_errors = 0
        self._round_error_positions = []
        self._input_locked = True
        self._feedback = "correct"
        self._scheduler.after(self._cfg.next_round_delay_ms, self._begin_attempt)

    def _fail_attempt(self, now: float, rt: float) -> None:
        self._lives_left -= 1
        self._total_errors += 1
        self._round_errors += 1
        self._reaction_times.append(rt)
        self._round_error_positions.append(self._step)

        if self._lives_left <= 0:
            self._close_round(now, is_correct=False, points=0.0)
            self._finish()
            return

        self._input_locked = True
        self._feedback = "wrong"
        self._scheduler.after(self._cfg.retry_delay_ms, self._begin_attempt)

    def _close_round(self, now: float, *, is_correct: bool, points: float) -> None:
        self._log.append(
            presented_at_ms=self._playing_started_ms,
            stimulus=SequenceStimulus(
                round=self._round,
                sequence=self._sequence,
                attempts=self._round_attempts,
                errors=self._round_errors,
                error_positions=tuple(self._round_error_positions),
                level=self._level,
            ),
            responded_at_ms=now,
            is_correct=is_correct,
            points=points,
        )
        # The span only moves between rounds, never across replays of one.
        self._adapt(correct=self._round_errors == 0)

    def _adapt(self, *, correct: bool) -> None:
        if not self._cfg.adaptive:
            return
        delta = self._policy.record(correct=correct)
        if delta:
            logger.debug("memory span %+d -> %d", delta, self._policy.span)

    def _maybe_level_up(self) -> None:
        if self._level >= len(self._cfg.levels) - 1:
            return
        rate = self._flawless_rounds / float(max(1, self._completed_rounds))
        if rate > self._cfg.levels[self._level].adaptive_threshold:
            self._level += 1
            logger.debug("memory level -> %s", self._cfg.levels[self._level].name)

    def _build_report(self) -> ScoreReport:
        rounds_played = len(self._log)
        accuracy = 0.0 if rounds_played == 0 else (self._flawless_rounds / rounds_played) * 100.0
        mean_rt = mean(self._reaction_times)

        span_score = min(100.0, (self._peak_span / float(self._cfg.max_span)) * 100.0)
        reaction_score = max(0.0, 100.0 - mean_rt / 50.0)
        consistency = max(0.0, 100.0 - self._total_errors * 10.0)
        if self._cfg.adaptive:
            hits = self._policy.increases * self._policy.streak
            adaptive_score = min(100.0, (hits / float(max(1, len(self._log)))) * 100.0)
        else:
            adaptive_score = 50.0

        score = weighted_score(
            (span_score, accuracy, reaction_score, consistency, adaptive_score),
            (0.30, 0.25, 0.20, 0.15, 0.10),
        )
        level_name = self._cfg.levels[self._level].name
        return self._make_report(
            score=score,
            accuracy=accuracy,
            reaction_time_ms=mean_rt,
            difficulty=f"{level_name} (Span: {self._peak_span})",
            metrics={
                "span_score": span_score,
                "accuracy": accuracy,
                "reaction_score": reaction_score,
                "consistency": consistency,
                "adaptive_score": adaptive_score,
                "peak_span": float(self._peak_span),
                "final_span": float(self._current_span()),
                "level": float(self._level),
                "errors": float(self._total_errors),
                "lives_left": float(max(0, self._lives_left)),
                "points": float(self._running_score),
            },
        )

    def _prompt(self) -> str:
        if self._phase is SequencePhase.SETUP:
            return "Watch the colours light up, then repeat them in order. Press Enter to start."
        if self._phase is SequencePhase.SHOWING:
            return f"Round {self._round}: watch carefully..."
        if self._phase is SequencePhase.PLAYING:
            if self._feedback == "correct":
                return "Correct! Get ready for the next round."
            if self._feedback == "wrong":
                return "Wrong colour. The round will replay."
            return f"Your turn: {self._step}/{len(self._sequence)}"
        if self._report is not None:
            r = self._report
            return f"Score {r.score}/100  Accuracy {r.accuracy}%  Span {self._peak_span}"
        return ""

    def _payload(self) -> SequencePayload | None:
        if self._phase not in (SequencePhase.SHOWING, SequencePhase.PLAYING):
            return None
        return SequencePayload(
            palette=PALETTE[: self.palette_size],
            highlighted=self._highlight,
            sequence_length=len(self._sequence),
            entered=self._step,
            span=self._current_span(),
            level_name=self._cfg.levels[self._level].name,
            accepting_input=self._phase is SequencePhase.PLAYING and not self._input_locked and not self._paused,
            feedback=self._feedback,
        )

    def _trial_index(self) -> int:
        return self._round

    def _trial_total(self) -> int | None:
        return self._cfg.max_rounds

    def _lives(self) -> int | None:
        return self._lives_left


def build_sequence_engine(
    *,
    clock: Clock,
    seed: int,
    config: SequenceConfig | None = None,
    on_complete: CompletionCallback | None = None,
) -> SequenceEngine:
    return SequenceEngine(clock=clock, seed=seed, config=config, on_complete=on_complete)
