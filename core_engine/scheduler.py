"""Recalculation scheduler — non-re-entrant passes with trailing-edge coalescing.

The engine may be asked to recompute on every frame, but a pass is never run
concurrently with another one. This module holds the bookkeeping as an
explicit state machine, independent of any event loop:

    IDLE ──request()──▶ RUNNING ──request(newer tick)──▶ RUNNING_WITH_PENDING_RERUN
      ▲                    │                                      │
      └────finish()────────┘            finish() → rerun tick ────┘ (back to RUNNING)

Rules
-----
- A request while IDLE always starts a pass.
- A request while a pass is in flight is *dropped* unless it carries a tick
  id newer than the one the running pass started with (and newer than any
  already pending tick); such a request is *coalesced* into a single
  pending re-run.
- ``finish()`` either returns the tick id of the pending re-run (state goes
  back to RUNNING) or ``None`` (state goes to IDLE).

Any number of newer requests during one pass therefore collapse into
exactly one follow-up pass, for the latest tick seen.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    RUNNING_WITH_PENDING_RERUN = "running_with_pending_rerun"


class ScheduleDecision(Enum):
    START = "start"
    COALESCED = "coalesced"
    DROPPED = "dropped"


class CalculationScheduler:
    """State machine deciding whether a recalculation request runs now."""

    def __init__(self) -> None:
        self._state = SchedulerState.IDLE
        self._active_tick: int | None = None
        self._pending_tick: int | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state is not SchedulerState.IDLE

    @property
    def active_tick(self) -> int | None:
        """Tick id of the pass currently in flight."""
        return self._active_tick

    @property
    def pending_tick(self) -> int | None:
        """Tick id of the queued re-run, if any."""
        return self._pending_tick

    def _is_newer(self, tick_id: int) -> bool:
        if self._pending_tick is not None and tick_id <= self._pending_tick:
            return False
        return self._active_tick is None or tick_id > self._active_tick

    def request(self, tick_id: int | None = None) -> ScheduleDecision:
        """Register a recalculation request.

        Parameters
        ----------
        tick_id : int, optional
            Monotonically increasing frame/tick counter of the caller.

        Returns
        -------
        ScheduleDecision
            START if the caller must run the pass now, COALESCED if it was
            folded into the pending re-run, DROPPED otherwise.
        """
        if self._state is SchedulerState.IDLE:
            self._state = SchedulerState.RUNNING
            self._active_tick = tick_id
            return ScheduleDecision.START

        if tick_id is None or not self._is_newer(tick_id):
            logger.debug(
                "Dropped request (tick=%s) while tick %s is running",
                tick_id, self._active_tick,
            )
            return ScheduleDecision.DROPPED

        self._pending_tick = tick_id
        self._state = SchedulerState.RUNNING_WITH_PENDING_RERUN
        logger.debug(
            "Coalesced request for tick %d behind running tick %s",
            tick_id, self._active_tick,
        )
        return ScheduleDecision.COALESCED

    def finish(self) -> int | None:
        """Mark the running pass complete.

        Returns
        -------
        int or None
            Tick id of the re-run the caller must start immediately, or
            ``None`` when the scheduler is idle again.
        """
        if self._state is SchedulerState.IDLE:
            raise RuntimeError("finish() called while no pass is running")

        if self._state is SchedulerState.RUNNING_WITH_PENDING_RERUN:
            self._active_tick = self._pending_tick
            self._pending_tick = None
            self._state = SchedulerState.RUNNING
            return self._active_tick

        self._active_tick = None
        self._state = SchedulerState.IDLE
        return None

    def abort(self) -> None:
        """Return to IDLE after a failed pass, discarding any pending re-run."""
        self._state = SchedulerState.IDLE
        self._active_tick = None
        self._pending_tick = None
