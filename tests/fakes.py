"""In-memory repositories and builders for SLA engine tests."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, time
from typing import Iterable
from zoneinfo import ZoneInfo

from src.config import Priority, TicketStatus
from src.core import ConcurrencyConflict, ResourceNotFoundException
from src.sla.application import IReferenceDataRepository, ITicketRepository
from src.sla.domain import (
    BusinessApproval, BusinessHoursConfig, EscalationLevel, Holiday,
    NotificationRule, SLAPolicy, Ticket, TicketPatch,
)

JAKARTA = ZoneInfo("Asia/Jakarta")


def jkt(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    """Aware Asia/Jakarta datetime."""
    return datetime(year, month, day, hour, minute, tzinfo=JAKARTA)


def weekday_hours(
    department_id: int | None = 1,
    start: str = "09:00",
    end: str = "17:00",
    timezone: str = "Asia/Jakarta",
    days: Iterable[int] = (1, 2, 3, 4, 5),
) -> list[BusinessHoursConfig]:
    """One window per given weekday (default Monday-Friday)."""
    start_h, start_m = map(int, start.split(":"))
    end_h, end_m = map(int, end.split(":"))
    return [
        BusinessHoursConfig(
            department_id=department_id,
            day_of_week=day,
            start_time=time(start_h, start_m),
            end_time=time(end_h, end_m),
            timezone=timezone,
        )
        for day in days
    ]


def make_policy(policy_id: int = 1, **overrides) -> SLAPolicy:
    values = dict(
        id=policy_id,
        name=f"Policy {policy_id}",
        response_time_minutes=60,
        resolution_time_minutes=480,
        business_hours_only=True,
    )
    values.update(overrides)
    if "escalation_matrix" in values:
        values["escalation_matrix"] = tuple(
            row if isinstance(row, EscalationLevel) else EscalationLevel(*row)
            for row in values["escalation_matrix"]
        )
    if "notification_rules" in values:
        values["notification_rules"] = tuple(
            row if isinstance(row, NotificationRule) else NotificationRule(*row)
            for row in values["notification_rules"]
        )
    return SLAPolicy(**values)


def make_ticket(ticket_id: int = 1, **overrides) -> Ticket:
    values = dict(
        id=ticket_id,
        status=TicketStatus.PENDING_APPROVAL,
        priority=Priority.HIGH,
        created_by_user_id=10,
        created_at=jkt(2026, 10, 19, 8, 0),
        department_id=1,
        title=f"Ticket {ticket_id}",
    )
    values.update(overrides)
    return Ticket(**values)


class InMemoryReferenceDataRepository(IReferenceDataRepository):
    """Reference data held in lists; counts loads for cache tests."""

    def __init__(
        self,
        business_hours: Iterable[BusinessHoursConfig] = (),
        holidays: Iterable[Holiday] = (),
        policies: Iterable[SLAPolicy] = (),
    ):
        self.business_hours = list(business_hours)
        self.holidays = list(holidays)
        self.policies = list(policies)
        self.loads = 0

    async def get_business_hours(self, department_id):
        self.loads += 1
        return [c for c in self.business_hours if c.department_id == department_id]

    async def get_holidays(self, department_id):
        return [h for h in self.holidays if h.department_id is None or h.department_id == department_id]

    async def get_active_sla_policies(self):
        return [p for p in self.policies if p.is_active]


class InMemoryTicketRepository(ITicketRepository):
    """Version-checked ticket store. Loads yield to the event loop so tasks interleave."""

    def __init__(self):
        self.tickets: dict[int, Ticket] = {}
        self.approvals: dict[int, BusinessApproval] = {}
        self.assignment_logs = []
        self.comments = []
        self.approval_writes = 0

    def add(self, ticket: Ticket, approval: BusinessApproval | None = None) -> Ticket:
        self.tickets[ticket.id] = ticket
        if approval is not None:
            self.approvals[ticket.id] = approval
        return ticket

    async def load_ticket(self, ticket_id):
        await asyncio.sleep(0)
        ticket = self.tickets.get(ticket_id)
        return replace(ticket) if ticket else None

    async def load_approval(self, ticket_id):
        approval = self.approvals.get(ticket_id)
        return replace(approval) if approval else None

    async def save_ticket_transition(self, ticket_id, expected_version, patch: TicketPatch):
        current = self.tickets.get(ticket_id)
        if current is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        if current.version != expected_version:
            raise ConcurrencyConflict(ticket_id, expected_version)

        updated = patch.apply_to(current)
        self.tickets[ticket_id] = updated
        if patch.approval is not None:
            self.approvals[ticket_id] = patch.approval
            self.approval_writes += 1
        self.assignment_logs.extend(patch.assignment_logs)
        self.comments.extend(patch.comments)
        return replace(updated)

    async def list_active_tickets(self):
        return [
            replace(t) for t in self.tickets.values()
            if t.is_active and t.sla_policy_id is not None
        ]


class ConflictingTicketRepository(InMemoryTicketRepository):
    """Another writer bumps the ticket version right before the next ``conflicts`` saves."""

    def __init__(self, conflicts: int = 1):
        super().__init__()
        self.conflicts_left = conflicts

    async def save_ticket_transition(self, ticket_id, expected_version, patch):
        if self.conflicts_left > 0:
            self.conflicts_left -= 1
            current = self.tickets[ticket_id]
            self.tickets[ticket_id] = replace(current, version=current.version + 1)
        return await super().save_ticket_transition(ticket_id, expected_version, patch)
