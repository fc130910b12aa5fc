"""
Enumeration definitions for the CallPulse backend.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
inside Pydantic models and API responses.

Groups:
- Call domain: CallStatus, PeriodOfDay
- Normalization: FieldKind
- Metrics: Trend
- Infrastructure: CachePriority, SyncState
"""

from enum import Enum


class CallStatus(str, Enum):
    """
    Canonical call outcome.

    Raw spreadsheet values ("Atendida", "ok", "Retida na URA", ...) are mapped
    onto these four values by the FieldNormalizer; a CallRecord never carries
    the raw status string.
    """
    ANSWERED = "Answered"
    MISSED = "Missed"
    ABANDONED = "Abandoned"
    WAITING = "Waiting"


class PeriodOfDay(str, Enum):
    """
    Coarse time-of-day bucket derived from a call's local hour.

    morning: 06:00-11:59, afternoon: 12:00-17:59, evening: everything else.
    """
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class FieldKind(str, Enum):
    """Field families handled by FieldNormalizer, each with its own rules."""
    OPERATOR = "operator"
    STATUS = "status"
    QUEUE = "queue"
    DURATION = "duration"


class Trend(str, Enum):
    """
    Direction of an operator's efficiency between two sub-periods.

    up: second period more than 5 points above the first
    down: more than 5 points below
    stable: anything in between, or not enough data to split
    """
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class CachePriority(str, Enum):
    """
    Eviction priority of a cache entry. Low entries are evicted first.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    CachePriority.LOW: 0,
    CachePriority.MEDIUM: 1,
    CachePriority.HIGH: 2,
}


class SyncState(str, Enum):
    """SyncOrchestrator run state: Idle -> Running -> Idle."""
    IDLE = "idle"
    RUNNING = "running"
