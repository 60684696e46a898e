"""Tests for the recalculation scheduler state machine."""

from __future__ import annotations

import pytest

from core_engine.scheduler import CalculationScheduler, ScheduleDecision, SchedulerState


@pytest.fixture
def scheduler() -> CalculationScheduler:
    return CalculationScheduler()


class TestScheduler:
    """IDLE → RUNNING → RUNNING_WITH_PENDING_RERUN transitions."""

    def test_starts_idle(self, scheduler: CalculationScheduler) -> None:
        assert scheduler.state is SchedulerState.IDLE
        assert not scheduler.is_busy

    def test_request_while_idle_starts(self, scheduler: CalculationScheduler) -> None:
        assert scheduler.request(1) is ScheduleDecision.START
        assert scheduler.state is SchedulerState.RUNNING
        assert scheduler.active_tick == 1

    def test_request_without_tick_starts_when_idle(self, scheduler: CalculationScheduler) -> None:
        assert scheduler.request() is ScheduleDecision.START

    def test_same_tick_dropped(self, scheduler: CalculationScheduler) -> None:
        scheduler.request(5)
        assert scheduler.request(5) is ScheduleDecision.DROPPED
        assert scheduler.request(4) is ScheduleDecision.DROPPED
        assert scheduler.state is SchedulerState.RUNNING

    def test_missing_tick_dropped_while_busy(self, scheduler: CalculationScheduler) -> None:
        scheduler.request(5)
        assert scheduler.request(None) is ScheduleDecision.DROPPED

    def test_newer_ticks_coalesce_to_latest(self, scheduler: CalculationScheduler) -> None:
        scheduler.request(1)
        assert scheduler.request(2) is ScheduleDecision.COALESCED
        assert scheduler.request(3) is ScheduleDecision.COALESCED
        assert scheduler.request(3) is ScheduleDecision.DROPPED
        assert scheduler.request(2) is ScheduleDecision.DROPPED
        assert scheduler.state is SchedulerState.RUNNING_WITH_PENDING_RERUN
        assert scheduler.pending_tick == 3

    def test_finish_runs_exactly_one_rerun(self, scheduler: CalculationScheduler) -> None:
        scheduler.request(1)
        for tick in (2, 3, 4):
            scheduler.request(tick)
        assert scheduler.finish() == 4
        assert scheduler.state is SchedulerState.RUNNING
        assert scheduler.active_tick == 4
        assert scheduler.finish() is None
        assert scheduler.state is SchedulerState.IDLE

    def test_request_during_rerun(self, scheduler: CalculationScheduler) -> None:
        scheduler.request(1)
        scheduler.request(2)
        scheduler.finish()
        assert scheduler.request(2) is ScheduleDecision.DROPPED
        assert scheduler.request(3) is ScheduleDecision.COALESCED

    def test_finish_while_idle_raises(self, scheduler: CalculationScheduler) -> None:
        with pytest.raises(RuntimeError):
            scheduler.finish()

    def test_abort_discards_pending(self, scheduler: CalculationScheduler) -> None:
        scheduler.request(1)
        scheduler.request(2)
        scheduler.abort()
        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.pending_tick is None
        assert scheduler.request(1) is ScheduleDecision.START
