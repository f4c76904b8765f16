from __future__ import annotations
"""SLA deadline computation and compliance evaluation.

The priority -> window table is configuration (see config/sla.py); this module only does
the arithmetic. A deadline is derived once, from the first assignment time, and
compliance compares the first completion-like timestamp against it.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Mapping, Optional

from facilityops.config.sla import DEFAULT_SLA_WINDOWS, normalize_sla_windows
from facilityops.utils.durations import to_utc, Timestamp


class SlaStatus(str, Enum):
    NO_DEADLINE = 'no_deadline'
    PENDING = 'pending'      # open, deadline still ahead
    OVERDUE = 'overdue'      # open, deadline passed; escalation candidate, not yet scored
    ON_TIME = 'on_time'
    DELAYED = 'delayed'


@dataclass(frozen=True)
class SlaPolicy:
    windows: Mapping[str, int]

    @classmethod
    def from_config(cls, config: Optional[Mapping] = None) -> 'SlaPolicy':
        windows = (config or {}).get('SLA_WINDOWS') or DEFAULT_SLA_WINDOWS
        return cls(windows=normalize_sla_windows(dict(windows)))

    def window_minutes(self, priority: str) -> int:
        key = getattr(priority, 'value', priority)
        if key not in self.windows:
            raise ValueError(f'No SLA window configured for priority {key}')
        return self.windows[key]

    def compute_deadline(self, assigned_at: Timestamp, priority: str) -> Optional[datetime]:
        assigned = to_utc(assigned_at)
        if assigned is None:
            return None
        return assigned + timedelta(minutes=self.window_minutes(priority))


def finished_at(issue) -> Optional[datetime]:
    """completedAt, falling back to approvedAt then closedAt."""
    for name in ('completed_at', 'approved_at', 'closed_at'):
        value = to_utc(getattr(issue, name, None))
        if value is not None:
            return value
    return None


def evaluate(issue, now: Timestamp) -> SlaStatus:
    deadline = to_utc(getattr(issue, 'sla_deadline', None))
    if deadline is None:
        return SlaStatus.NO_DEADLINE
    done = finished_at(issue)
    if done is not None:
        return SlaStatus.ON_TIME if done <= deadline else SlaStatus.DELAYED
    current = to_utc(now)
    if current is not None and current > deadline:
        return SlaStatus.OVERDUE
    return SlaStatus.PENDING


def is_delayed(issue) -> bool:
    """True only for finished issues that missed their deadline."""
    deadline = to_utc(getattr(issue, 'sla_deadline', None))
    done = finished_at(issue)
    return deadline is not None and done is not None and done > deadline


def is_overdue(issue, now: Timestamp) -> bool:
    return evaluate(issue, now) == SlaStatus.OVERDUE


__all__ = ['SlaPolicy', 'SlaStatus', 'evaluate', 'is_delayed', 'is_overdue', 'finished_at']
