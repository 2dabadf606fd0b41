"""
SLA Domain Layer
================

Domain layer for the SLA engine.

Contains:
- Entities: Reference data (BusinessHoursConfig, Holiday, SLAPolicy) and
  workflow objects (Ticket, BusinessApproval, AssignmentLog, Comment)
- Value Objects: Immutable results (DueDateResult, EscalationResult, ...)
- Domain Services: BusinessHoursCalendar, HolidayRegistry, DueDateCalculator,
  SLAPolicyResolver, EscalationEngine, TicketLifecycleStateMachine

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.sla.domain.entities import (
    BusinessHoursConfig,
    END_OF_DAY,
    Holiday,
    EscalationLevel,
    NotificationRule,
    SLAPolicy,
    Ticket,
    BusinessApproval,
    AssignmentLog,
    Comment,
)
from src.sla.domain.value_objects import (
    TicketContext,
    BusinessWindow,
    DueDateResult,
    EscalationResult,
    SLAStatusSnapshot,
    SLAStatusCalculator,
    as_utc,
)
from src.sla.domain.calendar import BusinessHoursCalendar, HolidayRegistry, day_of_week
from src.sla.domain.calculator import DueDateCalculator, DEFAULT_MAX_LOOKAHEAD_DAYS
from src.sla.domain.policies import SLAPolicyResolver, policy_rank, policy_specificity, rank_policies
from src.sla.domain.escalation import EscalationEngine
from src.sla.domain.lifecycle import (
    TicketLifecycleStateMachine,
    TicketEvent,
    TicketPatch,
    TransitionOutcome,
    TRANSITIONS,
    allowed_events,
    next_status,
)

__all__ = [
    # Entities
    "BusinessHoursConfig",
    "END_OF_DAY",
    "Holiday",
    "EscalationLevel",
    "NotificationRule",
    "SLAPolicy",
    "Ticket",
    "BusinessApproval",
    "AssignmentLog",
    "Comment",
    # Value Objects
    "TicketContext",
    "BusinessWindow",
    "DueDateResult",
    "EscalationResult",
    "SLAStatusSnapshot",
    "SLAStatusCalculator",
    "as_utc",
    # Domain Services
    "BusinessHoursCalendar",
    "HolidayRegistry",
    "day_of_week",
    "DueDateCalculator",
    "DEFAULT_MAX_LOOKAHEAD_DAYS",
    "SLAPolicyResolver",
    "policy_rank",
    "policy_specificity",
    "rank_policies",
    "EscalationEngine",
    "TicketLifecycleStateMachine",
    "TicketEvent",
    "TicketPatch",
    "TransitionOutcome",
    "TRANSITIONS",
    "allowed_events",
    "next_status",
]
