"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from src.config import Priority, SLAState


def as_utc(instant: datetime) -> datetime:
    """Normalize an instant to aware UTC. Naive datetimes are taken as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


@dataclass(frozen=True)
class TicketContext:
    """The ticket fields an SLA policy can be scoped by."""

    priority: Optional[Priority] = None
    department_id: Optional[int] = None
    service_catalog_id: Optional[int] = None
    service_item_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "priority": self.priority.value if isinstance(self.priority, Priority) else self.priority,
            "department_id": self.department_id,
            "service_catalog_id": self.service_catalog_id,
            "service_item_id": self.service_item_id,
        }


@dataclass(frozen=True)
class BusinessWindow:
    """An open interval of one calendar day, as aware local datetimes."""

    start: datetime
    end: datetime

    @property
    def start_utc(self) -> datetime:
        return self.start.astimezone(timezone.utc)

    @property
    def end_utc(self) -> datetime:
        return self.end.astimezone(timezone.utc)

    def contains(self, instant: datetime) -> bool:
        return self.start_utc <= as_utc(instant) < self.end_utc

    def overlap(self, start: datetime, end: datetime) -> timedelta:
        """Length of the intersection with [start, end)."""
        lower = max(self.start_utc, as_utc(start))
        upper = min(self.end_utc, as_utc(end))
        if lower >= upper:
            return timedelta(0)
        return upper - lower


@dataclass(frozen=True)
class DueDateResult:
    """Outcome of a due date computation."""

    due_date: datetime
    is_currently_in_business_hours: bool
    holidays_skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "due_date": self.due_date.isoformat(),
            "is_currently_in_business_hours": self.is_currently_in_business_hours,
            "holidays_skipped": self.holidays_skipped,
        }


@dataclass(frozen=True)
class EscalationResult:
    """An escalation that should be (or has been) applied to a ticket."""

    ticket_id: int
    level: int
    assign_to_role: str
    previous_level: int
    elapsed_minutes: float
    threshold_minutes: int

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "level": self.level,
            "assign_to_role": self.assign_to_role,
            "previous_level": self.previous_level,
            "elapsed_minutes": round(self.elapsed_minutes, 2),
            "threshold_minutes": self.threshold_minutes,
        }


@dataclass(frozen=True)
class SLAStatusSnapshot:
    """Point-in-time view of a ticket's resolution SLA."""

    ticket_id: int
    due_date: datetime
    state: SLAState
    remaining_minutes: float
    business_minutes_remaining: float
    percentage_remaining: float
    is_overdue: bool
    next_business_start: Optional[datetime] = None
    met_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "due_date": self.due_date.isoformat(),
            "state": self.state.value,
            "remaining_minutes": round(self.remaining_minutes, 2),
            "business_minutes_remaining": round(self.business_minutes_remaining, 2),
            "percentage_remaining": round(self.percentage_remaining, 2),
            "is_overdue": self.is_overdue,
            "next_business_start": self.next_business_start.isoformat() if self.next_business_start else None,
            "met_at": self.met_at.isoformat() if self.met_at else None,
        }


class SLAStatusCalculator:
    """
    Pure functions for SLA state reporting.

    Stateless utility class for classifying a running SLA clock.
    """

    @staticmethod
    def classify(
        percentage_remaining: float,
        is_breached: bool,
        warning_threshold_percent: int = 15
    ) -> SLAState:
        """State of a running SLA clock from its remaining budget."""
        if is_breached:
            return SLAState.BREACHED
        elif percentage_remaining <= warning_threshold_percent:
            return SLAState.AT_RISK
        return SLAState.ON_TRACK
