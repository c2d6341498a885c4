"""
============================================================================
PINGMASTER - HEALTH CLASSIFIER
============================================================================
Turns a probe outcome into a health state and decides whether the
change is worth telling anyone about.

``classify`` is a pure function. It emits a transition when the state
changes (always from ``pending``), or when a healthy monitor's TLS
certificate expires within the warning window.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Union

from config.constants import EventKind, HealthState, Severity
from monitoring.probe import ProbeResult


DEFAULT_TLS_WARNING_DAYS = 30

Outcome = Union[ProbeResult, BaseException]


@dataclass(frozen=True)
class Transition:
    """What changed, and how loudly to say so."""

    kind: EventKind
    previous: HealthState
    current: HealthState
    severity: Severity
    tls_days_remaining: Optional[int] = None


@dataclass
class TransitionEvent:
    """
    A transition bound to the monitor and history record it concerns.
    Handed from the scheduler to the dispatcher.
    """

    monitor: Any
    transition: Transition
    check_result: Any = None
    error: Optional[str] = field(default=None)

    @property
    def kind(self) -> EventKind:
        return self.transition.kind

    @property
    def severity(self) -> Severity:
        return self.transition.severity

    @property
    def throttle_key(self) -> Tuple[int, str]:
        """Key the dispatcher throttles on: monitor plus new state or TLS."""
        if self.transition.kind == EventKind.TLS_EXPIRING:
            return (self.monitor.id, EventKind.TLS_EXPIRING.value)
        return (self.monitor.id, self.transition.current.value)


def severity_for(state: HealthState) -> Severity:
    if state == HealthState.UP:
        return Severity.SUCCESS
    return Severity.ERROR


def classify(
    previous: HealthState,
    outcome: Outcome,
    tls_warning_days: int = DEFAULT_TLS_WARNING_DAYS,
) -> Tuple[HealthState, Optional[Transition]]:
    """
    Classify a probe outcome.

    Args:
        previous: State before this check
        outcome: The ProbeResult, or the exception the probe raised
        tls_warning_days: Certificates expiring sooner than this warn

    Returns:
        The new state and the transition to report, if any
    """
    previous = HealthState(previous)

    if isinstance(outcome, BaseException):
        current = HealthState.ERROR
    elif outcome.success:
        current = HealthState.UP
    else:
        current = HealthState.DOWN

    if current != previous:
        return current, Transition(
            kind=EventKind.STATE_CHANGE,
            previous=previous,
            current=current,
            severity=severity_for(current),
        )

    if (
        current == HealthState.UP
        and outcome.tls is not None
        and outcome.tls.days_until_expiry < tls_warning_days
    ):
        return current, Transition(
            kind=EventKind.TLS_EXPIRING,
            previous=previous,
            current=current,
            severity=Severity.WARNING,
            tls_days_remaining=outcome.tls.days_until_expiry,
        )

    return current, None
