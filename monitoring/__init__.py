"""
============================================================================
PINGMASTER - MONITORING PACKAGE
============================================================================
The runtime engine:
    • Probe                  - DNS → TLS → HTTP check of one monitor
    • classify               - maps a probe outcome to a health state
                               and decides whether it is an event
    • MonitorScheduler       - one timer per monitor, no overlapping probes
    • NotificationDispatcher - throttle, persist, fan out to channels
    • PingMasterServer       - aiohttp health endpoint + SSE streams

monitoring/
├── __init__.py          ← this file
├── probe.py             ← Probe + DNS/TLS/HTTP steps
├── classifier.py        ← classify + Transition/TransitionEvent
├── scheduler.py         ← MonitorScheduler
├── dispatcher.py        ← NotificationDispatcher + ThrottleState
└── server.py            ← PingMasterServer

============================================================================
"""

from monitoring.probe import Probe, ProbeResult, TlsInfo, DNSChecker, TLSInspector, HTTPChecker
from monitoring.classifier import Transition, TransitionEvent, classify, severity_for
from monitoring.dispatcher import NotificationDispatcher, ThrottleState, render_notification
from monitoring.scheduler import MonitorScheduler, MonitorHealth
from monitoring.server import PingMasterServer

__all__ = [
    # Probe
    "Probe",
    "ProbeResult",
    "TlsInfo",
    "DNSChecker",
    "TLSInspector",
    "HTTPChecker",

    # Classification
    "Transition",
    "TransitionEvent",
    "classify",
    "severity_for",

    # Dispatch
    "NotificationDispatcher",
    "ThrottleState",
    "render_notification",

    # Scheduling
    "MonitorScheduler",
    "MonitorHealth",

    # HTTP
    "PingMasterServer",
]
