from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from .clock import Clock, TimerHandle
from .cognitive_core import CompletionCallback, GameEngine, SeededRng, Trial, mean, pstdev
from .results import Domain, ScoreReport, round_half_up, weighted_score

logger = logging.getLogger(__name__)


class VigilancePhase(StrEnum):
    SETUP = "setup"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    PAUSED = "paused"
    RESULT = "result"


class VigilanceOutcome(StrEnum):
    HIT = "hit"
    MISS = "miss"
    FALSE_ALARM = "false_alarm"
    CORRECT_REJECTION = "correct_rejection"


@dataclass(frozen=True, slots=True)
class VigilanceConfig:
    # Long enough for a measurable vigilance decrement.
    duration_s: int = 120
    countdown_s: int = 3

    target_probability: float = 0.25
    min_spawn_interval_ms: float = 800.0
    max_spawn_interval_ms: float = 2500.0
    stimulus_lifetime_ms: float = 2500.0

    field_width: float = 600.0
    field_height: float = 400.0
    margin: float = 60.0
    min_separation: float = 80.0
    placement_attempts: int = 10
    hit_radius: float = 32.0

    hit_points: float = 100.0
    false_alarm_penalty: float = 50.0
    decrement_buckets: int = 4


@dataclass(frozen=True, slots=True)
class VigilanceStimulus:
    stimulus_id: int
    x: float
    y: float
    is_target: bool
    spawned_at_ms: float


@dataclass(frozen=True, slots=True)
class VigilancePayload:
    stimuli: tuple[VigilanceStimulus, ...]
    field_width: float
    field_height: float
    hit_radius: float
    hits: int
    misses: int
    false_alarms: int
    countdown: int | None


@dataclass(frozen=True, slots=True)
class VigilanceSubscores:
    sensitivity: float
    accuracy: float
    sustained: float
    vigilance: float
    consistency: float
    inhibition: float

    def final_score(self) -> int:
        return weighted_score(
            (
                self.sensitivity,
                self.accuracy,
                self.sustained,
                self.vigilance,
                self.consistency,
                self.inhibition,
            ),
            (0.25, 0.20, 0.20, 0.15, 0.10, 0.10),
        )


@dataclass(slots=True)
class _LiveStimulus:
    stimulus: VigilanceStimulus
    expiry: TimerHandle


class StimulusSpawner:
    """Go/no-go stimulus draws: kind, position and the delay before the next one."""

    def __init__(self, rng: SeededRng, config: VigilanceConfig) -> None:
        self._rng = rng
        self._cfg = config

    def draw_is_target(self) -> bool:
        return self._rng.random() < self._cfg.target_probability

    def next_interval_ms(self, *, accuracy: float) -> float:
        base = self._rng.uniform(self._cfg.min_spawn_interval_ms, self._cfg.max_spawn_interval_ms)
        multiplier = max(0.7, min(1.3, 2.0 - accuracy))
        return base * multiplier

    def place(self, occupied: Sequence[tuple[float, float]]) -> tuple[float, float]:
        """Pick a spot clear of every visible stimulus; after the retry cap keep the last draw."""

        cfg = self._cfg
        x = y = 0.0
        for _ in range(max(1, cfg.placement_attempts)):
            x = cfg.margin + self._rng.random() * (cfg.field_width - 2.0 * cfg.margin)
            y = cfg.margin + self._rng.random() * (cfg.field_height - 2.0 * cfg.margin)
            if all(math.hypot(ox - x, oy - y) >= cfg.min_separation for ox, oy in occupied):
                break
        return x, y


def classify(trial: Trial) -> VigilanceOutcome:
    stim = trial.stimulus
    assert isinstance(stim, VigilanceStimulus)
    clicked = trial.responded_at_ms is not None
    if stim.is_target:
        return VigilanceOutcome.HIT if clicked else VigilanceOutcome.MISS
    return VigilanceOutcome.FALSE_ALARM if clicked else VigilanceOutcome.CORRECT_REJECTION


def bucket_hit_rates(
    target_outcomes: Sequence[tuple[float, bool]],
    *,
    duration_ms: float,
    buckets: int,
) -> list[float | None]:
    """Hit rate per equal slice of the run; None where no target was shown."""

    n = max(1, int(buckets))
    width = max(1e-9, float(duration_ms) / n)
    hits = [0] * n
    totals = [0] * n
    for elapsed_ms, hit in target_outcomes:
        idx = min(n - 1, max(0, int(elapsed_ms // width)))
        totals[idx] += 1
        if hit:
            hits[idx] += 1
    return [None if totals[i] == 0 else hits[i] / totals[i] for i in range(n)]


def vigilance_decrement_score(rates: Sequence[float | None]) -> float:
    populated = [r for r in rates if r is not None]
    if len(populated) < 2:
        return 100.0
    decline = max(0.0, populated[0] - populated[-1])
    return max(0.0, 100.0 - decline * 100.0)


def vigilance_subscores(
    *,
    hits: int,
    misses: int,
    false_alarms: int,
    reaction_times_ms: Sequence[float],
    bucket_rates: Sequence[float | None],
) -> VigilanceSubscores:
    total_targets = hits + misses
    total_clicks = hits + false_alarms
    accuracy = 0.0 if total_clicks == 0 else (hits / total_clicks) * 100.0
    sensitivity = 0.0 if total_targets == 0 else (hits / total_targets) * 100.0
    sustained = max(0.0, 100.0 - misses * 8.0 - false_alarms * 5.0)
    consistency = max(0.0, 100.0 - pstdev(reaction_times_ms) / 20.0)
    fa_rate = 0.0 if total_clicks == 0 else (false_alarms / total_clicks) * 100.0
    inhibition = max(0.0, 100.0 - fa_rate * 2.0)
    return VigilanceSubscores(
        sensitivity=sensitivity,
        accuracy=accuracy,
        sustained=sustained,
        vigilance=vigilance_decrement_score(bucket_rates),
        consistency=consistency,
        inhibition=inhibition,
    )


class VigilanceEngine(GameEngine):
    """Sustained-attention go/no-go task bounded by wall-clock time, not trials.

    Targets and distractors pop up at jittered intervals and vanish after a
    fixed lifetime. Clicking a target is a hit, clicking a distractor a false
    alarm, and a target that expires unclicked is a miss.
    """

    title = "Attention Challenge"
    game_type = "attention"
    domain = Domain.ATTENTION
    input_hint = "Click the targets, ignore the distractors. P pauses."

    setup_phase = VigilancePhase.SETUP
    result_phase = VigilancePhase.RESULT
    countdown_phase = VigilancePhase.COUNTDOWN
    paused_phase = VigilancePhase.PAUSED
    pausable_phases = frozenset({VigilancePhase.PLAYING})

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        config: VigilanceConfig | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        cfg = config or VigilanceConfig()
        if cfg.duration_s <= 0:
            raise ValueError("duration_s must be > 0")
        if cfg.countdown_s < 0:
            raise ValueError("countdown_s must be >= 0")
        if not (0.0 <= cfg.target_probability <= 1.0):
            raise ValueError("target_probability must be in [0.0, 1.0]")
        if cfg.min_spawn_interval_ms <= 0.0 or cfg.max_spawn_interval_ms < cfg.min_spawn_interval_ms:
            raise ValueError("spawn interval range must satisfy 0 < min <= max")
        if cfg.stimulus_lifetime_ms <= 0.0:
            raise ValueError("stimulus_lifetime_ms must be > 0")
        if cfg.field_width <= 2.0 * cfg.margin or cfg.field_height <= 2.0 * cfg.margin:
            raise ValueError("field must be larger than twice the margin")
        if cfg.decrement_buckets <= 0:
            raise ValueError("decrement_buckets must be > 0")

        super().__init__(clock=clock, seed=seed, on_complete=on_complete)
        self._cfg = cfg
        self._spawner = StimulusSpawner(self._rng, cfg)

        self._live: dict[int, _LiveStimulus] = {}
        self._next_id = 0
        self._playing_started_ms = 0.0
        self._seconds_left = int(cfg.duration_s)

        self._hits = 0
        self._misses = 0
        self._false_alarms = 0
        self._correct_rejections = 0
        self._reaction_times: list[float] = []
        self._target_outcomes: list[tuple[float, bool]] = []

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def false_alarms(self) -> int:
        return self._false_alarms

    def visible_stimuli(self) -> tuple[VigilanceStimulus, ...]:
        return tuple(live.stimulus for live in self._live.values())

    def click(self, stimulus_id: int, at_s: float | None = None) -> bool:
        """Player clicks a visible stimulus. Returns True if the click was scored."""

        if not self._accept_input(at_s):
            return False
        return self._register_click(int(stimulus_id))

    def click_at(self, x: float, y: float, at_s: float | None = None) -> bool:
        """Hit-test a click in field coordinates against the visible stimuli."""

        if not self._accept_input(at_s):
            return False
        best: VigilanceStimulus | None = None
        best_d = float(self._cfg.hit_radius)
        for live in self._live.values():
            d = math.hypot(live.stimulus.x - float(x), live.stimulus.y - float(y))
            if d <= best_d:
                best, best_d = live.stimulus, d
        if best is None:
            return False
        return self._register_click(best.stimulus_id)

    def _register_click(self, stimulus_id: int) -> bool:
        if self._phase is not VigilancePhase.PLAYING:
            return False
        live = self._live.pop(stimulus_id, None)
        if live is None:
            return False
        live.expiry.cancel()

        stim = live.stimulus
        now = self._scheduler.now_ms()
        self._reaction_times.append(max(0.0, now - stim.spawned_at_ms))
        if stim.is_target:
            self._hits += 1
            self._running_score += self._cfg.hit_points
            self._target_outcomes.append((stim.spawned_at_ms - self._playing_started_ms, True))
        else:
            self._false_alarms += 1
            self._running_score = max(0.0, self._running_score - self._cfg.false_alarm_penalty)
        self._log.append(
            presented_at_ms=stim.spawned_at_ms,
            stimulus=stim,
            responded_at_ms=now,
            is_correct=stim.is_target,
            points=self._cfg.hit_points if stim.is_target else -self._cfg.false_alarm_penalty,
        )
        return True

    def _on_start(self) -> None:
        self._run_countdown(self._cfg.countdown_s, self._begin_playing)

    def _begin_playing(self) -> None:
        self._set_phase(VigilancePhase.PLAYING)
        self._playing_started_ms = self._scheduler.now_ms()
        self._seconds_left = int(self._cfg.duration_s)
        self._scheduler.tick(1000.0, self._tick_second)
        self._spawn()

    def _tick_second(self) -> None:
        self._seconds_left -= 1
        if self._seconds_left <= 0:
            self._finish()

    def _running_accuracy(self) -> float:
        clicks = self._hits + self._false_alarms
        return 1.0 if clicks == 0 else self._hits / clicks

    def _spawn(self) -> None:
        now = self._scheduler.now_ms()
        occupied = [(live.stimulus.x, live.stimulus.y) for live in self._live.values()]
        x, y = self._spawner.place(occupied)
        stim = VigilanceStimulus(
            stimulus_id=self._next_id,
            x=float(x),
            y=float(y),
            is_target=self._spawner.draw_is_target(),
            spawned_at_ms=now,
        )
        self._next_id += 1
        sid = stim.stimulus_id
        expiry = self._scheduler.after(self._cfg.stimulus_lifetime_ms, lambda: self._expire(sid))
        self._live[sid] = _LiveStimulus(stimulus=stim, expiry=expiry)

        delay = self._spawner.next_interval_ms(accuracy=self._running_accuracy())
        self._scheduler.after(delay, self._spawn)

    def _expire(self, stimulus_id: int) -> None:
        live = self._live.pop(stimulus_id, None)
        if live is None:
            return
        stim = live.stimulus
        if stim.is_target:
            self._misses += 1
            self._target_outcomes.append((stim.spawned_at_ms - self._playing_started_ms, False))
        else:
            self._correct_rejections += 1
        self._log.append(
            presented_at_ms=stim.spawned_at_ms,
            stimulus=stim,
            responded_at_ms=None,
            is_correct=not stim.is_target,
        )

    def _build_report(self) -> ScoreReport:
        # Anything still on screen when time ran out is dropped unscored.
        self._live.clear()
        rates = bucket_hit_rates(
            self._target_outcomes,
            duration_ms=self._cfg.duration_s * 1000.0,
            buckets=self._cfg.decrement_buckets,
        )
        subs = vigilance_subscores(
            hits=self._hits,
            misses=self._misses,
            false_alarms=self._false_alarms,
            reaction_times_ms=self._reaction_times,
            bucket_rates=rates,
        )
        return self._make_report(
            score=subs.final_score(),
            accuracy=subs.accuracy,
            reaction_time_ms=mean(self._reaction_times),
            difficulty=f"Vigilance (Sensitivity: {round_half_up(subs.sensitivity)}%)",
            metrics={
                "hits": float(self._hits),
                "misses": float(self._misses),
                "false_alarms": float(self._false_alarms),
                "correct_rejections": float(self._correct_rejections),
                "sensitivity": subs.sensitivity,
                "accuracy": subs.accuracy,
                "sustained_attention": subs.sustained,
                "vigilance": subs.vigilance,
                "consistency": subs.consistency,
                "inhibition": subs.inhibition,
                "points": float(self._running_score),
            },
        )

    def _prompt(self) -> str:
        if self._phase is VigilancePhase.SETUP:
            return "Click every green target as fast as you can. Leave the red distractors alone."
        if self._phase is VigilancePhase.COUNTDOWN:
            return f"Get ready... {self._countdown_left}"
        if self._phase is VigilancePhase.PAUSED:
            return "Paused. Press P to resume."
        if self._phase is VigilancePhase.PLAYING:
            return f"Hits {self._hits}  Misses {self._misses}  False alarms {self._false_alarms}"
        if self._report is not None:
            r = self._report
            return f"Score {r.score}/100  Accuracy {r.accuracy}%  Mean RT {r.reaction_time_ms} ms"
        return ""

    def _payload(self) -> VigilancePayload | None:
        if self._phase not in (VigilancePhase.COUNTDOWN, VigilancePhase.PLAYING, VigilancePhase.PAUSED):
            return None
        return VigilancePayload(
            stimuli=self.visible_stimuli(),
            field_width=float(self._cfg.field_width),
            field_height=float(self._cfg.field_height),
            hit_radius=float(self._cfg.hit_radius),
            hits=self._hits,
            misses=self._misses,
            false_alarms=self._false_alarms,
            countdown=self._countdown_left if self._phase is VigilancePhase.COUNTDOWN else None,
        )

    def _time_remaining_s(self) -> float | None:
        if self._phase not in (VigilancePhase.PLAYING, VigilancePhase.PAUSED):
            return None
        elapsed_s = (self._scheduler.now_ms() - self._playing_started_ms) / 1000.0
        return max(0.0, float(self._cfg.duration_s) - elapsed_s)


def build_vigilance_engine(
    *,
    clock: Clock,
    seed: int,
    config: VigilanceConfig | None = None,
    on_complete: CompletionCallback | None = None,
) -> VigilanceEngine:
    return VigilanceEngine(clock=clock, seed=seed, config=config, on_complete=on_complete)
