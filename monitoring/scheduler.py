"""
============================================================================
PINGMASTER - MONITOR SCHEDULER
============================================================================
Keeps exactly one live timer per active monitor and runs the check
pipeline each time it fires:

    Probe → Classifier → persist CheckResult → update monitor state
          → Dispatcher (only when the classifier emits a transition)

Cadence
-------
Deadlines are ``t0 + k * interval`` on the event-loop clock, so the
schedule does not drift by the time a check takes. A cycle that
overruns its interval skips the missed deadlines instead of running
back to back, and the next deadline is only armed once the current
cycle has finished: one monitor never has two probes in flight.

Cancellation
------------
Each cycle runs as its own task awaited through ``asyncio.shield``.
Cancelling a timer (unregister, reconfigure, shutdown) detaches it
immediately while a probe already in flight runs to completion and is
recorded. ``register`` and ``delete`` wait for that in-flight cycle
before going further.

Per-monitor ``asyncio.Lock``s serialize register / unregister /
reconfigure / delete so an old and a new timer can never coexist.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from config.constants import ErrorKind, HealthState, Limits
from config.settings import MonitoringSettings, get_settings
from database.models import CheckResult, Monitor
from database.repository import Repository
from exceptions import ConfigurationError, PersistenceFailure, ProbeFailure
from monitoring.classifier import TransitionEvent, classify
from monitoring.dispatcher import NotificationDispatcher
from monitoring.probe import Probe, ProbeResult
from utils.helpers import StringHelper, TimeHelper
from utils.logger import get_logger
from utils.validators import validate_monitor


logger = get_logger("Scheduler")


# ============================================================================
# IN-MEMORY HEALTH
# ============================================================================

@dataclass
class MonitorHealth:
    """
    Latest known health of a monitor, kept in memory.

    Survives unregister/re-register so a reconfigured monitor keeps
    its previous state; dropped only when the monitor is deleted.
    """
    state: HealthState = HealthState.PENDING
    checked_at: Optional[datetime] = None
    response_time: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "checked_at": TimeHelper.to_iso(self.checked_at),
            "response_time": self.response_time,
            "error": self.error,
        }


# ============================================================================
# MONITOR SCHEDULER
# ============================================================================

class MonitorScheduler:
    """
    One asyncio timer task per monitor.

    Usage
    -----
        scheduler = MonitorScheduler(repository, probe, dispatcher)
        await scheduler.start()          # registers every active monitor
        await scheduler.reconfigure(m)   # atomically replaces m's schedule
        await scheduler.stop()
    """

    def __init__(
        self,
        repository: Repository,
        probe: Probe,
        dispatcher: NotificationDispatcher,
        settings: Optional[MonitoringSettings] = None,
    ):
        self.settings = settings or get_settings().monitoring
        self.repository = repository
        self.probe = probe
        self.dispatcher = dispatcher

        self._timers: Dict[int, asyncio.Task] = {}
        self._inflight: Dict[int, asyncio.Task] = {}
        self._locks: Dict[int, asyncio.Lock] = {}
        self._health: Dict[int, MonitorHealth] = {}

        self._running = False
        self._stopped = False

        # --- stats ---
        self._total_cycles = 0
        self._total_errors = 0
        self._total_transitions = 0

        logger.info(
            f"[Scheduler] Created: tls_warning_days={self.settings.tls_warning_days}, "
            f"shutdown_grace={self.settings.shutdown_grace}s"
        )

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Register every active monitor from the repository."""
        if self._running:
            logger.warning("[Scheduler] Already running")
            return
        self._running = True
        self._stopped = False

        monitors = await self.repository.list_monitors()
        results = await asyncio.gather(
            *(self.register(monitor) for monitor in monitors),
            return_exceptions=True,
        )

        registered = 0
        for monitor, result in zip(monitors, results):
            if isinstance(result, ConfigurationError):
                logger.warning(
                    f"[Scheduler] Monitor {monitor.id} not scheduled: {result.message}"
                )
            elif isinstance(result, BaseException):
                logger.error(
                    f"[Scheduler] Monitor {monitor.id} failed to register: {result!r}"
                )
            else:
                registered += 1

        logger.info(f"[Scheduler] ✓ Started: {registered}/{len(monitors)} monitors scheduled")

    async def stop(self, grace: Optional[float] = None) -> None:
        """
        Cancel every timer, then give in-flight probes ``grace`` seconds
        to finish before abandoning them.
        """
        grace = self.settings.shutdown_grace if grace is None else grace
        self._running = False
        self._stopped = True

        timers = list(self._timers.values())
        self._timers.clear()
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

        inflight = list(self._inflight.values())
        if inflight:
            logger.info(
                f"[Scheduler] Waiting up to {grace}s for {len(inflight)} in-flight checks"
            )
            _, pending = await asyncio.wait(inflight, timeout=grace)
            if pending:
                logger.warning(f"[Scheduler] Abandoning {len(pending)} checks still running")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info("[Scheduler] ✓ Stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # REGISTRATION
    # ------------------------------------------------------------------

    def _lock_for(self, monitor_id: int) -> asyncio.Lock:
        lock = self._locks.get(monitor_id)
        if lock is None:
            lock = self._locks[monitor_id] = asyncio.Lock()
        return lock

    async def register(self, monitor: Monitor) -> CheckResult:
        """
        Validate, run one check immediately, then arm the recurring timer.

        Returns:
            The check result of the immediate cycle

        Raises:
            ConfigurationError: Invalid URL, interval, timeout or channel
        """
        validate_monitor(monitor, self.settings.max_interval)
        async with self._lock_for(monitor.id):
            return await self._register_locked(monitor)

    async def unregister(self, monitor_id: int) -> bool:
        """Cancel the monitor's timer. Safe to call repeatedly."""
        async with self._lock_for(monitor_id):
            return await self._unregister_locked(monitor_id)

    async def reconfigure(self, monitor: Monitor) -> CheckResult:
        """Replace a monitor's schedule with one built from its new configuration."""
        validate_monitor(monitor, self.settings.max_interval)
        async with self._lock_for(monitor.id):
            await self._unregister_locked(monitor.id)
            logger.info(f"[Scheduler] Reconfiguring monitor {monitor.id}")
            return await self._register_locked(monitor)

    async def delete(self, monitor_id: int) -> bool:
        """
        Unschedule a monitor, forget its throttle entries and delete it
        with its history and notifications.
        """
        async with self._lock_for(monitor_id):
            await self._unregister_locked(monitor_id)
            await self._wait_inflight(monitor_id)
            self.dispatcher.clear_throttle(monitor_id)
            self._health.pop(monitor_id, None)
            deleted = await self.repository.delete_monitor(monitor_id)
        self._locks.pop(monitor_id, None)
        return deleted

    async def _register_locked(self, monitor: Monitor) -> CheckResult:
        await self._cancel_timer(monitor.id)
        await self._wait_inflight(monitor.id)

        if monitor.id not in self._health:
            self._health[monitor.id] = MonitorHealth(
                state=HealthState(monitor.state or HealthState.PENDING),
                checked_at=TimeHelper.ensure_aware(monitor.last_checked),
                response_time=monitor.response_time,
            )

        result = await self._run_cycle_shielded(monitor)
        if self._stopped:
            return result

        self._timers[monitor.id] = asyncio.create_task(
            self._timer_loop(monitor),
            name=f"monitor-timer-{monitor.id}",
        )
        logger.info(
            f"[Scheduler] ✓ Monitor {monitor.id} scheduled every {monitor.check_interval}s "
            f"({monitor.url})"
        )
        return result

    async def _unregister_locked(self, monitor_id: int) -> bool:
        cancelled = await self._cancel_timer(monitor_id)
        if cancelled:
            logger.info(f"[Scheduler] Monitor {monitor_id} unscheduled")
        return cancelled

    async def _cancel_timer(self, monitor_id: int) -> bool:
        task = self._timers.pop(monitor_id, None)
        if task is None:
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def _wait_inflight(self, monitor_id: int) -> None:
        task = self._inflight.get(monitor_id)
        if task is not None and not task.done():
            logger.debug(f"[Scheduler] Waiting for in-flight check of monitor {monitor_id}")
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # TIMER LOOP
    # ------------------------------------------------------------------

    async def _timer_loop(self, monitor: Monitor) -> None:
        loop = asyncio.get_running_loop()
        interval = float(monitor.check_interval)
        t0 = loop.time()
        k = 1

        while True:
            delay = t0 + k * interval - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            await self._run_cycle_shielded(monitor)

            # Skip deadlines that passed while the cycle ran
            elapsed_ticks = math.floor((loop.time() - t0) / interval)
            if elapsed_ticks > k:
                logger.debug(
                    f"[Scheduler] Monitor {monitor.id} overran its interval, "
                    f"skipping {elapsed_ticks - k} tick(s)"
                )
            k = max(k, elapsed_ticks) + 1

    async def _run_cycle_shielded(self, monitor: Monitor) -> CheckResult:
        task = asyncio.create_task(
            self._run_cycle_guarded(monitor),
            name=f"monitor-check-{monitor.id}",
        )
        self._inflight[monitor.id] = task

        def _clear(t: asyncio.Task, monitor_id: int = monitor.id) -> None:
            if self._inflight.get(monitor_id) is t:
                del self._inflight[monitor_id]

        task.add_done_callback(_clear)
        return await asyncio.shield(task)

    # ------------------------------------------------------------------
    # CHECK PIPELINE
    # ------------------------------------------------------------------

    async def _run_cycle_guarded(self, monitor: Monitor) -> CheckResult:
        """Never raises: any unexpected failure is recorded as an ``error`` result."""
        try:
            return await self._run_cycle(monitor)
        except Exception as e:
            self._total_errors += 1
            logger.opt(exception=True).error(
                f"[Scheduler] Unhandled error checking monitor {monitor.id}: {e}"
            )
            return await self._record_fallback(monitor, e)

    async def _probe_with_retries(self, monitor: Monitor) -> ProbeResult:
        result = await self.probe.probe(monitor)
        budget = monitor.retries or 0
        attempt = 0

        while not result.success and attempt < budget:
            attempt += 1
            logger.debug(
                f"[Scheduler] Monitor {monitor.id} down, confirming "
                f"({attempt}/{budget}) in {self.settings.confirm_retry_delay}s"
            )
            await asyncio.sleep(self.settings.confirm_retry_delay)
            result = await self.probe.probe(monitor)

        return result

    async def _run_cycle(self, monitor: Monitor) -> CheckResult:
        self._total_cycles += 1
        health = self._health.setdefault(monitor.id, MonitorHealth())
        previous = health.state

        outcome: Any
        try:
            outcome = await self._probe_with_retries(monitor)
        except Exception as e:
            self._total_errors += 1
            logger.error(f"[Scheduler] Probe for monitor {monitor.id} raised: {e!r}")
            outcome = e

        state, transition = classify(previous, outcome, self.settings.tls_warning_days)
        record = self._build_record(monitor, state, outcome)

        self._apply_health(monitor, record)
        await self._persist(monitor, record)

        if transition is not None:
            self._total_transitions += 1
            self._log_transition(monitor, transition)
            event = TransitionEvent(
                monitor=monitor,
                transition=transition,
                check_result=record,
                error=record.error,
            )
            try:
                await self.dispatcher.dispatch(event)
            except PersistenceFailure as e:
                logger.error(f"[Scheduler] Notification for monitor {monitor.id} not stored: {e.log_format()}")
            except Exception as e:
                logger.opt(exception=True).error(
                    f"[Scheduler] Dispatch for monitor {monitor.id} failed: {e}"
                )

        return record

    async def _record_fallback(self, monitor: Monitor, error: Exception) -> CheckResult:
        record = self._build_record(monitor, HealthState.ERROR, error)
        self._apply_health(monitor, record)
        await self._persist(monitor, record)
        return record

    @staticmethod
    def _build_record(monitor: Monitor, state: HealthState, outcome: Any) -> CheckResult:
        checked_at = TimeHelper.utc_now()

        if isinstance(outcome, ProbeResult):
            return CheckResult(
                monitor_id=monitor.id,
                checked_at=checked_at,
                state=state,
                latency_ms=outcome.latency_ms,
                status_code=outcome.status_code,
                error=outcome.error,
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
                tls_days_remaining=outcome.tls.days_until_expiry if outcome.tls else None,
            )

        if isinstance(outcome, ProbeFailure):
            error, kind = outcome.error_string, outcome.kind.value
        else:
            detail = getattr(outcome, "message", None) or str(outcome) or outcome.__class__.__name__
            error, kind = f"{ErrorKind.INTERNAL.value}: {detail}", ErrorKind.INTERNAL.value

        return CheckResult(
            monitor_id=monitor.id,
            checked_at=checked_at,
            state=state,
            error=StringHelper.truncate(error, Limits.MAX_ERROR_LENGTH),
            error_kind=kind,
        )

    def _apply_health(self, monitor: Monitor, record: CheckResult) -> None:
        health = self._health.setdefault(monitor.id, MonitorHealth())
        health.state = HealthState(record.state)
        health.checked_at = record.checked_at
        health.response_time = record.latency_ms
        health.error = record.error

        monitor.state = health.state
        monitor.last_checked = record.checked_at
        monitor.response_time = record.latency_ms

    async def _persist(self, monitor: Monitor, record: CheckResult) -> None:
        try:
            await self.repository.save_check_result(record)
        except PersistenceFailure as e:
            logger.error(f"[Scheduler] Check result for monitor {monitor.id} not stored: {e.log_format()}")
        except Exception as e:
            logger.error(f"[Scheduler] Check result for monitor {monitor.id} not stored: {e!r}")

        try:
            await self.repository.update_monitor_state(
                monitor.id,
                HealthState(record.state),
                record.checked_at,
                record.latency_ms,
            )
        except PersistenceFailure as e:
            logger.error(f"[Scheduler] State of monitor {monitor.id} not stored: {e.log_format()}")
        except Exception as e:
            logger.error(f"[Scheduler] State of monitor {monitor.id} not stored: {e!r}")

    @staticmethod
    def _log_transition(monitor: Monitor, transition: Any) -> None:
        message = (
            f"[Scheduler] Monitor {monitor.id} ({monitor.url}) "
            f"{transition.previous.value} → {transition.current.value} "
            f"[{transition.kind.value}]"
        )
        if transition.severity.value in ("error", "warning"):
            logger.warning(message)
        else:
            logger.info(message)

    # ------------------------------------------------------------------
    # DIAGNOSTIC
    # ------------------------------------------------------------------

    def get_health(self, monitor_id: int) -> Optional[MonitorHealth]:
        return self._health.get(monitor_id)

    def scheduled_ids(self) -> List[int]:
        return sorted(self._timers)

    def in_flight_ids(self) -> List[int]:
        return sorted(self._inflight)

    def get_stats(self) -> Dict[str, Any]:
        states: Dict[str, int] = {}
        for health in self._health.values():
            states[health.state.value] = states.get(health.state.value, 0) + 1

        return {
            "is_running": self._running,
            "scheduled": len(self._timers),
            "in_flight": len(self._inflight),
            "total_cycles": self._total_cycles,
            "total_errors": self._total_errors,
            "total_transitions": self._total_transitions,
            "states": states,
        }
