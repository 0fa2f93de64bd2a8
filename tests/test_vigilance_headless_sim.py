from __future__ import annotations

from dataclasses import dataclass

import pytest

from cognitive_games.results import Domain
from cognitive_games.vigilance import (
    VigilanceConfig,
    VigilanceEngine,
    VigilanceOutcome,
    VigilancePhase,
    build_vigilance_engine,
    classify,
)


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _run_clicking_targets(
    engine: VigilanceEngine,
    clock: FakeClock,
    *,
    rt_s: float,
    click_distractors: bool = False,
) -> None:
    clicked: set[int] = set()
    for _ in range(100_000):
        if engine.is_finished:
            return
        pending = [
            s
            for s in engine.visible_stimuli()
            if s.stimulus_id not in clicked and (s.is_target or click_distractors)
        ]
        if pending:
            stim = pending[0]
            clicked.add(stim.stimulus_id)
            engine.click(stim.stimulus_id, at_s=stim.spawned_at_ms / 1000.0 + rt_s)
            continue
        clock.advance(0.05)
        engine.update()
    raise AssertionError("run did not finish")


def test_full_run_hitting_every_target_scores_full_marks() -> None:
    reports = []
    clock = FakeClock()
    engine = build_vigilance_engine(
        clock=clock,
        seed=4321,
        config=VigilanceConfig(target_probability=1.0),
        on_complete=reports.append,
    )
    engine.start()
    _run_clicking_targets(engine, clock, rt_s=0.4)

    assert len(reports) == 1
    report = reports[0]
    assert report.domain is Domain.ATTENTION
    assert engine.misses == 0
    assert engine.false_alarms == 0
    assert engine.hits >= 10
    assert report.metric("sensitivity") == pytest.approx(100.0)
    assert report.metric("accuracy") == pytest.approx(100.0)
    assert report.reaction_time_ms == 400
    assert report.score == 100
    assert report.difficulty == "Vigilance (Sensitivity: 100%)"
    # 3 s countdown + 120 s of play, independent of how many stimuli appeared.
    assert report.completed_at_ms == pytest.approx(123_000.0)


def test_run_ends_at_exactly_the_configured_duration_without_input() -> None:
    reports = []
    clock = FakeClock()
    engine = build_vigilance_engine(
        clock=clock,
        seed=8,
        config=VigilanceConfig(duration_s=10),
        on_complete=reports.append,
    )
    engine.start()

    clock.t = 12.75
    engine.update()
    assert engine.phase is VigilancePhase.PLAYING
    assert engine.snapshot().time_remaining_s == pytest.approx(0.25)

    clock.t = 13.0
    engine.update()
    assert engine.phase is VigilancePhase.RESULT
    assert len(reports) == 1
    assert reports[0].completed_at_ms == pytest.approx(13_000.0)

    outcomes = {classify(t) for t in engine.trials()}
    assert outcomes <= {VigilanceOutcome.MISS, VigilanceOutcome.CORRECT_REJECTION}
    assert engine.hits == 0
    assert engine.false_alarms == 0
    assert reports[0].metric("misses") == float(engine.misses)


def test_paused_time_does_not_count_against_the_budget() -> None:
    clock = FakeClock()
    engine = build_vigilance_engine(clock=clock, seed=12, config=VigilanceConfig(duration_s=10))
    engine.start()

    clock.t = 5.0
    engine.update()
    before = len(engine.trials())
    visible = engine.visible_stimuli()
    assert engine.pause() is True
    assert engine.snapshot().time_remaining_s == pytest.approx(8.0)

    clock.t = 35.0
    engine.update()
    assert len(engine.trials()) == before
    assert engine.visible_stimuli() == visible
    assert engine.snapshot().time_remaining_s == pytest.approx(8.0)

    assert engine.resume() is True
    clock.t = 42.5
    engine.update()
    assert engine.is_finished is False

    clock.t = 43.0
    engine.update()
    assert engine.is_finished is True
    assert engine.report is not None
    assert engine.report.completed_at_ms == pytest.approx(13_000.0)


def test_false_alarms_reduce_points_but_never_below_zero() -> None:
    clock = FakeClock()
    engine = build_vigilance_engine(
        clock=clock,
        seed=31,
        config=VigilanceConfig(duration_s=20, target_probability=0.0),
    )
    engine.start()
    _run_clicking_targets(engine, clock, rt_s=0.3, click_distractors=True)

    assert engine.hits == 0
    assert engine.false_alarms > 0
    assert engine.running_score == 0.0
    report = engine.report
    assert report is not None
    assert report.metric("inhibition") == pytest.approx(0.0)
    assert 0 <= report.score <= 100


def test_click_at_hits_the_nearest_stimulus_in_range() -> None:
    clock = FakeClock()
    engine = build_vigilance_engine(clock=clock, seed=6, config=VigilanceConfig(target_probability=1.0))
    engine.start()
    clock.t = 3.0
    engine.update()
    stim = engine.visible_stimuli()[0]

    assert engine.click_at(stim.x + 10.0, stim.y - 10.0, at_s=3.25) is True
    assert engine.hits == 1
    assert engine.visible_stimuli() == ()
    assert engine.trials()[-1].reaction_time_ms == pytest.approx(250.0)


def test_same_seed_same_stimulus_stream() -> None:
    def run(seed: int) -> list[tuple[float, float, bool, float]]:
        clock = FakeClock()
        engine = build_vigilance_engine(clock=clock, seed=seed, config=VigilanceConfig(duration_s=15))
        engine.start()
        while not engine.is_finished:
            clock.advance(0.25)
            engine.update()
        return [
            (t.stimulus.x, t.stimulus.y, t.stimulus.is_target, t.presented_at_ms)
            for t in engine.trials()
        ]

    assert run(55) == run(55)
