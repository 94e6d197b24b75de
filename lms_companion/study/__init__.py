"""Learner-facing state machines: idle monitor, progression gate, test clock."""

from lms_companion.study.idle_monitor import IdleMonitor, IdleState
from lms_companion.study.progression import AccessDecision, CompletionResult, SubtaskProgressionGate
from lms_companion.study.test_clock import ClockState, TimedTestClock, format_time

__all__ = [
    "AccessDecision",
    "ClockState",
    "CompletionResult",
    "IdleMonitor",
    "IdleState",
    "SubtaskProgressionGate",
    "TimedTestClock",
    "format_time",
]
