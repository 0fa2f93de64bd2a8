from __future__ import annotations

from dataclasses import dataclass

import pytest

from cognitive_games.results import Domain
from cognitive_games.sequence_memory import (
    SequenceConfig,
    SequenceEngine,
    SequencePayload,
    SequencePhase,
    SequenceStimulus,
    build_sequence_engine,
)


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _wait_for_input(engine: SequenceEngine, clock: FakeClock, *, step: float = 0.125) -> None:
    for _ in range(10_000):
        p = engine.snapshot().payload
        if isinstance(p, SequencePayload) and p.accepting_input:
            return
        if engine.is_finished:
            return
        clock.advance(step)
        engine.update()
    raise AssertionError("engine never opened input")


def _play_round(engine: SequenceEngine, clock: FakeClock) -> tuple[int, ...]:
    _wait_for_input(engine, clock)
    seq = engine.sequence
    for colour in seq:
        assert engine.tap(colour) is True
    return seq


def test_first_round_reference_score() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=1234)
    engine.start()
    assert engine.span == 3

    # Input opens at 5.2 s; answering within the 1.5 s optimum keeps the full time bonus.
    clock.t = 6.5
    for colour in engine.sequence:
        assert engine.tap(colour) is True

    trials = engine.trials()
    assert len(trials) == 1
    assert trials[0].is_correct is True
    assert trials[0].points == pytest.approx(465.0)
    assert trials[0].reaction_time_ms == pytest.approx(1300.0)
    assert engine.running_score == pytest.approx(465.0)


def test_two_clean_rounds_grow_the_span() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=99)
    engine.start()

    assert len(_play_round(engine, clock)) == 3
    assert engine.span == 3
    assert len(_play_round(engine, clock)) == 3
    assert engine.span == 4
    assert len(_play_round(engine, clock)) == 4


def test_wrong_tap_costs_a_life_and_replays_the_round() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=77)
    engine.start()
    _wait_for_input(engine, clock)

    wrong = (engine.sequence[0] + 1) % engine.palette_size
    assert engine.tap(wrong) is True
    assert engine.lives == 2
    assert engine.round == 1
    assert len(engine.trials()) == 0
    assert engine.tap(engine.sequence[0]) is False

    _play_round(engine, clock)
    trials = engine.trials()
    assert len(trials) == 1
    stim = trials[0].stimulus
    assert isinstance(stim, SequenceStimulus)
    assert stim.attempts == 2
    assert stim.errors == 1
    assert stim.error_positions == (0,)
    assert trials[0].is_correct is False



def _tap_wrong(engine: SequenceEngine, clock: FakeClock) -> None:
    _wait_for_input(engine, clock)
    wrong = (engine.sequence[0] + 1) % engine.palette_size
    assert engine.tap(wrong) is True


def test_replays_of_a_round_keep_the_span_it_started_with() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=77)
    engine.start()
    span_before = engine.span

    _tap_wrong(engine, clock)
    _tap_wrong(engine, clock)
    assert engine.lives == 1

    _wait_for_input(engine, clock)
    assert len(engine.sequence) == span_before == 3
    assert engine.span == 3

    _play_round(engine, clock)
    stim = engine.trials()[0].stimulus
    assert isinstance(stim, SequenceStimulus)
    assert stim.attempts == 3
    assert stim.errors == 2
    assert stim.error_positions == (0, 0)
    assert engine.span == 3


def test_round_finished_after_an_error_does_not_count_towards_growth() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=77)
    engine.start()

    _tap_wrong(engine, clock)
    _play_round(engine, clock)
    assert engine.trials()[0].is_correct is False

    _play_round(engine, clock)
    assert engine.trials()[1].is_correct is True
    assert engine.span == 3

    _play_round(engine, clock)
    assert engine.span == 4
    assert len(_play_round(engine, clock)) == 4


def test_two_erroneous_rounds_shrink_the_span_for_the_next_round() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=404)
    engine.start()

    for _ in range(2):
        _tap_wrong(engine, clock)
        assert len(_play_round(engine, clock)) == 3

    assert engine.lives == 1
    assert engine.span == 2
    assert len(_play_round(engine, clock)) == 2


def test_exit_is_allowed_only_outside_an_active_run() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=3)
    assert engine.can_exit() is True
    engine.start()
    assert engine.can_exit() is False
    engine.abandon()
    assert engine.can_exit() is True
    assert engine.is_abandoned is True

def test_exhausting_lives_ends_the_game_with_a_report() -> None:
    reports = []
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=5, on_complete=reports.append)
    engine.start()

    for _ in range(3):
        _wait_for_input(engine, clock)
        wrong = (engine.sequence[0] + 1) % engine.palette_size
        engine.tap(wrong)

    assert engine.phase is SequencePhase.RESULT
    assert engine.lives == 0
    assert len(reports) == 1
    report = reports[0]
    assert report.domain is Domain.MEMORY
    assert report.trials == 1
    assert report.accuracy == 0
    assert 0 <= report.score <= 100
    assert engine.tap(0) is False

    clock.advance(60.0)
    engine.update()
    assert len(reports) == 1


def test_full_clean_run_logs_the_round_budget_and_caps_span() -> None:
    reports = []
    clock = FakeClock()
    engine = build_sequence_engine(clock=clock, seed=2024, on_complete=reports.append)
    engine.start()

    lengths = []
    while not engine.is_finished:
        lengths.append(len(_play_round(engine, clock)))
        assert 2 <= engine.span <= 8

    assert len(lengths) == 15
    assert lengths[:4] == [3, 3, 4, 4]
    assert max(lengths) == 8
    assert len(reports) == 1

    report = reports[0]
    assert report.trials == 15
    assert report.accuracy == 100
    assert report.metric("peak_span") == 8.0
    assert report.metric("span_score") == pytest.approx(100.0)
    assert 90 <= report.score <= 100
    assert report.difficulty.endswith("(Span: 8)")
    assert report.metric("level", 0.0) >= 1.0


def test_non_adaptive_mode_uses_the_level_length() -> None:
    clock = FakeClock()
    engine = build_sequence_engine(
        clock=clock,
        seed=31,
        config=SequenceConfig(adaptive=False, start_level=2, max_rounds=3),
    )
    engine.start()
    lengths = []
    while not engine.is_finished:
        lengths.append(len(_play_round(engine, clock)))
    assert lengths == [5, 5, 5]
    assert engine.report is not None
    assert engine.report.metric("adaptive_score") == pytest.approx(50.0)


def test_same_seed_same_run() -> None:
    def run(seed: int) -> list[tuple[int, ...]]:
        clock = FakeClock()
        engine = build_sequence_engine(clock=clock, seed=seed, config=SequenceConfig(max_rounds=5))
        engine.start()
        out = []
        while not engine.is_finished:
            out.append(_play_round(engine, clock))
        return out

    assert run(777) == run(777)
