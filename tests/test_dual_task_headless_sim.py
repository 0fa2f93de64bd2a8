from __future__ import annotations

from dataclasses import dataclass

import pytest

from cognitive_games.dual_task import (
    DualTaskConfig,
    DualTaskEngine,
    DualTaskPayload,
    DualTaskPhase,
    StroopStimulus,
    TowerStimulus,
    build_dual_task_engine,
)
from cognitive_games.results import Domain

OPTIMAL_3 = [(0, 2), (0, 1), (2, 1), (0, 2), (1, 0), (1, 2), (0, 2)]


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _answer_block(engine: DualTaskEngine, clock: FakeClock, *, rt_s: float, wrong_every: int = 0) -> None:
    n = 0
    while engine.phase is DualTaskPhase.STROOP:
        stim = engine.current_stimulus
        assert stim is not None
        clock.advance(rt_s)
        n += 1
        choice = stim.ink
        if wrong_every and n % wrong_every == 0:
            choice = (stim.ink + 1) % 6
        assert engine.answer(choice) is True


def test_full_run_with_instant_optimal_tower() -> None:
    reports = []
    clock = FakeClock()
    engine = build_dual_task_engine(clock=clock, seed=1001, on_complete=reports.append)
    engine.start()
    clock.t = 3.0
    engine.update()
    assert engine.phase is DualTaskPhase.STROOP

    _answer_block(engine, clock, rt_s=0.5)
    assert engine.phase is DualTaskPhase.TOWER
    stroop_trials = engine.trials()
    assert len(stroop_trials) == 30
    assert all(t.is_correct for t in stroop_trials)
    assert all(t.points == pytest.approx(225.0) for t in stroop_trials)
    assert all(isinstance(t.stimulus, StroopStimulus) for t in stroop_trials)

    # Every peg tap lands at the instant the tower appeared.
    for src, dst in OPTIMAL_3:
        assert engine.select_peg(src) is True
        assert engine.select_peg(dst) is True

    assert engine.phase is DualTaskPhase.RESULT
    assert len(reports) == 1
    report = reports[0]
    tower = engine.trials()[-1]
    assert isinstance(tower.stimulus, TowerStimulus)
    assert tower.reaction_time_ms == pytest.approx(0.0)
    assert tower.points == pytest.approx(600.0)

    assert report.domain is Domain.EXECUTIVE
    assert report.trials == 31
    assert report.accuracy == 100
    assert report.metric("tower_efficiency") == pytest.approx(100.0)
    assert report.metric("tower_time_bonus") == pytest.approx(500.0)
    assert report.metric("tower_moves") == pytest.approx(7.0)
    # mean RT = 30 x 500 ms + 0 ms over 31 responses
    assert report.reaction_time_ms == 484
    assert report.score == 95


def test_illegal_peg_move_clears_selection_without_counting() -> None:
    clock = FakeClock()
    engine = build_dual_task_engine(
        clock=clock,
        seed=12,
        config=DualTaskConfig(stroop_trials=1, countdown_s=0),
    )
    engine.start()
    engine.answer(engine.current_stimulus.ink)
    assert engine.phase is DualTaskPhase.TOWER

    assert engine.select_peg(1) is False  # empty peg cannot be picked up
    assert engine.select_peg(0) is True
    assert engine.selected_peg == 0
    assert engine.select_peg(0) is True  # same peg deselects
    assert engine.selected_peg is None

    engine.select_peg(0)
    engine.select_peg(1)
    before = engine.puzzle.pegs()
    assert engine.puzzle.moves == 1

    engine.select_peg(0)
    assert engine.select_peg(1) is False
    assert engine.selected_peg is None
    assert engine.puzzle.pegs() == before
    assert engine.puzzle.moves == 1

    p = engine.snapshot().payload
    assert isinstance(p, DualTaskPayload)
    assert p.pegs == ((3, 2), (1,), ())
    assert p.moves == 1


def test_tower_time_limit_closes_the_puzzle_unsolved() -> None:
    reports = []
    clock = FakeClock()
    engine = build_dual_task_engine(clock=clock, seed=77, on_complete=reports.append)
    engine.start()
    clock.t = 3.0
    engine.update()
    _answer_block(engine, clock, rt_s=0.5)
    tower_started = clock.t
    assert engine.phase is DualTaskPhase.TOWER
    assert engine.snapshot().time_remaining_s == pytest.approx(120.0)

    clock.t = tower_started + 119.5
    engine.update()
    assert engine.phase is DualTaskPhase.TOWER

    clock.t = tower_started + 120.0
    engine.update()
    assert engine.phase is DualTaskPhase.RESULT
    tower = engine.trials()[-1]
    assert tower.missed is True
    assert tower.is_correct is False

    report = reports[0]
    assert report.metric("tower_solved") == 0.0
    # 30/31 correct, mean RT 500 ms -> speed 87.5
    assert report.accuracy == 97
    assert report.score == 93
    assert engine.select_peg(0) is False


def test_tower_timer_does_not_run_while_paused() -> None:
    clock = FakeClock()
    engine = build_dual_task_engine(
        clock=clock,
        seed=5,
        config=DualTaskConfig(stroop_trials=1, countdown_s=0),
    )
    engine.start()
    engine.answer(0)
    assert engine.phase is DualTaskPhase.TOWER

    clock.t = 60.0
    engine.update()
    assert engine.pause() is True
    clock.t = 1000.0
    engine.update()
    assert engine.phase is DualTaskPhase.TOWER
    assert engine.snapshot().time_remaining_s == pytest.approx(60.0)

    engine.resume()
    clock.t = 1059.5
    engine.update()
    assert engine.phase is DualTaskPhase.TOWER
    clock.t = 1060.0
    engine.update()
    assert engine.phase is DualTaskPhase.RESULT


def test_wrong_answers_earn_no_points_and_track_interference() -> None:
    clock = FakeClock()
    engine = build_dual_task_engine(clock=clock, seed=606, config=DualTaskConfig(countdown_s=0))
    engine.start()
    _answer_block(engine, clock, rt_s=0.25, wrong_every=3)

    stroop = engine.trials()
    assert sum(1 for t in stroop if not t.is_correct) == 10
    assert all(t.points == 0.0 for t in stroop if not t.is_correct)

    engine.abandon()
    assert engine.report is None
    clock.advance(500.0)
    engine.update()
    assert engine.report is None


def test_same_seed_same_interference_block() -> None:
    def words(seed: int) -> list[tuple[int, int]]:
        clock = FakeClock()
        engine = build_dual_task_engine(clock=clock, seed=seed, config=DualTaskConfig(countdown_s=0))
        engine.start()
        out = []
        while engine.phase is DualTaskPhase.STROOP:
            stim = engine.current_stimulus
            out.append((stim.word, stim.ink))
            engine.answer(stim.ink)
        return out

    assert words(8080) == words(8080)
