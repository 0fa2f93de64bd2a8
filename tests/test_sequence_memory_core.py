from __future__ import annotations

from dataclasses import dataclass

import pytest

from cognitive_games.cognitive_core import SeededRng
from cognitive_games.sequence_memory import (
    AdaptiveSpanPolicy,
    SequenceConfig,
    SequenceGenerator,
    SequencePayload,
    SequencePhase,
    build_sequence_engine,
    round_score,
)


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def test_generator_determinism_same_seed_same_sequences() -> None:
    g1 = SequenceGenerator(SeededRng(4242))
    g2 = SequenceGenerator(SeededRng(4242))
    seq1 = [g1.next_sequence(length=6, palette_size=4) for _ in range(20)]
    seq2 = [g2.next_sequence(length=6, palette_size=4) for _ in range(20)]
    assert seq1 == seq2


def test_generator_never_repeats_adjacent_colours_when_palette_allows() -> None:
    gen = SequenceGenerator(SeededRng(7))
    for _ in range(200):
        seq = gen.next_sequence(length=8, palette_size=3)
        assert len(seq) == 8
        assert all(0 <= c < 3 for c in seq)
        assert all(a != b for a, b in zip(seq, seq[1:]))


def test_generator_two_colour_palette_still_terminates() -> None:
    gen = SequenceGenerator(SeededRng(1))
    seq = gen.next_sequence(length=8, palette_size=2)
    assert len(seq) == 8
    assert set(seq) <= {0, 1}


def test_policy_two_correct_rounds_raise_span_by_one_and_reset_counter() -> None:
    policy = AdaptiveSpanPolicy(initial=3, floor=2, ceiling=8)
    assert policy.record(correct=True) == 0
    assert policy.span == 3
    assert policy.record(correct=True) == 1
    assert policy.span == 4
    assert policy.consecutive_correct == 0
    assert policy.increases == 1


def test_policy_two_errors_lower_span_by_one() -> None:
    policy = AdaptiveSpanPolicy(initial=3, floor=2, ceiling=8)
    policy.record(correct=False)
    assert policy.record(correct=False) == -1
    assert policy.span == 2
    assert policy.decreases == 1


def test_policy_mixed_outcomes_break_the_streak() -> None:
    policy = AdaptiveSpanPolicy(initial=5, floor=2, ceiling=8)
    for correct in (True, False, True, False, True, False):
        assert policy.record(correct=correct) == 0
    assert policy.span == 5


def test_policy_stays_within_bounds() -> None:
    top = AdaptiveSpanPolicy(initial=8, floor=2, ceiling=8)
    for _ in range(10):
        top.record(correct=True)
    assert top.span == 8
    assert top.increases == 0

    bottom = AdaptiveSpanPolicy(initial=2, floor=2, ceiling=8)
    for _ in range(10):
        bottom.record(correct=False)
    assert bottom.span == 2
    assert bottom.decreases == 0

    clamped = AdaptiveSpanPolicy(initial=20, floor=2, ceiling=8)
    assert clamped.span == 8


def test_round_score_reference_case() -> None:
    assert round_score(reaction_time_ms=1500, sequence_length=3, errors_so_far=0, level=0) == 465


def test_round_score_time_bonus_and_consistency_floor_at_zero() -> None:
    # 20 s late: time bonus floors at 0; 9 errors: consistency floors at 0.
    score = round_score(reaction_time_ms=21500, sequence_length=3, errors_so_far=9, level=0)
    assert score == round((100 + 0 + 60 + 0) * 1.5)


def test_round_score_multiplier_grows_with_level() -> None:
    easy = round_score(reaction_time_ms=0, sequence_length=4, errors_so_far=0, level=0)
    hard = round_score(reaction_time_ms=0, sequence_length=4, errors_so_far=0, level=2)
    assert easy == 495
    assert hard == 825


@pytest.mark.parametrize(
    "config",
    [
        SequenceConfig(max_rounds=0),
        SequenceConfig(lives=0),
        SequenceConfig(min_span=5, max_span=4),
        SequenceConfig(palette_size=1),
        SequenceConfig(start_level=9),
    ],
)
def test_invalid_config_raises(config: SequenceConfig) -> None:
    with pytest.raises(ValueError):
        build_sequence_engine(clock=FakeClock(), seed=1, config=config)


def test_taps_are_ignored_outside_playing() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=11)
    assert engine.tap(0) is False

    assert engine.start() is True
    assert engine.start() is False
    assert engine.phase is SequencePhase.SHOWING
    assert engine.tap(engine.sequence[0]) is False


def test_showing_highlights_each_item_then_opens_input() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=21)
    engine.start()
    seq = engine.sequence

    # Easy: 1000 ms lead-in, 1200 ms per item, 200 ms gap.
    clock.t = 1.5
    engine.update()
    p = engine.snapshot().payload
    assert isinstance(p, SequencePayload)
    assert p.highlighted == seq[0]

    clock.t = 2.25
    engine.update()
    assert engine.snapshot().payload.highlighted is None

    clock.t = 2.5
    engine.update()
    assert engine.snapshot().payload.highlighted == seq[1]

    clock.t = 5.25
    engine.update()
    assert engine.phase is SequencePhase.PLAYING
    assert engine.snapshot().payload.accepting_input is True


def test_out_of_range_colour_is_rejected() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=5)
    engine.start()
    clock.t = 6.0
    engine.update()
    assert engine.tap(99) is False
    assert engine.tap(-1) is False
    assert engine.lives == 3


def test_pause_is_noop_when_already_paused_and_blocks_input() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=8)
    assert engine.pause() is False
    engine.start()
    clock.t = 6.0
    engine.update()

    assert engine.pause() is True
    assert engine.pause() is False
    assert engine.tap(engine.sequence[0]) is False
    assert engine.resume() is True
    assert engine.resume() is False
    assert engine.tap(engine.sequence[0]) is True


def test_abandon_cancels_timers_and_never_reports() -> None:
    reports = []
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=3, on_complete=reports.append)
    engine.start()
    clock.t = 0.5
    engine.update()
    engine.abandon()

    clock.t = 600.0
    engine.update()
    assert engine.is_abandoned is True
    assert engine.report is None
    assert reports == []
    assert engine.snapshot().payload.highlighted is None
    assert engine.tap(0) is False
