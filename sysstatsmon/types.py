"""Problem, status and monitor types shared by problem daemons and exporters."""

from __future__ import annotations

import abc
import enum
import queue
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional


class Severity(str, enum.Enum):
    """Severity of a problem event."""

    INFO = "info"
    WARN = "warn"


class ConditionStatus(str, enum.Enum):
    """Whether a node is in a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ProblemType(str, enum.Enum):
    """Whether a problem is temporary (an event) or permanent (a condition)."""

    TEMP = "temporary"
    PERM = "permanent"


@dataclass
class Condition:
    """A node condition reported by a problem daemon."""

    type: str
    status: ConditionStatus
    transition: datetime
    reason: str = ""
    message: str = ""


@dataclass
class Event:
    """A temporary node problem event."""

    severity: Severity
    timestamp: datetime
    reason: str = ""
    message: str = ""


@dataclass
class Status:
    """What a problem daemon reports: events (oldest first) and current conditions."""

    source: str
    events: list[Event] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)


class Monitor(abc.ABC):
    """Watches the system and reports problems and metrics."""

    @abc.abstractmethod
    def start(self) -> Optional["queue.Queue[Status]"]:
        """Start monitoring; return a status queue, or None for metrics-only monitors."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop monitoring."""


class Exporter(abc.ABC):
    """Exports machine health data to a control plane."""

    @abc.abstractmethod
    def export_problems(self, status: Status) -> None:
        """Export the problems in ``status``."""


@dataclass(frozen=True)
class ProblemDaemonHandler:
    """How to create one type of problem daemon from a config file path."""

    create_problem_daemon_or_die: Callable[[str], Monitor]
    cmd_option_description: str = ""