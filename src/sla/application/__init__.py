"""
SLA Application Layer
======================

Application layer for the SLA engine.

Contains:
- Services: Orchestrate domain services and coordinate with repositories
- Reference data cache: TTL snapshots of business hours, holidays and policies
- DTOs: Validation of reference data and lifecycle events

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.sla.application.dto import (
    BusinessHoursConfigDTO,
    HolidayDTO,
    EscalationLevelDTO,
    NotificationRuleDTO,
    SLAPolicyDTO,
    ReferenceDataDocument,
    TicketEventDTO,
)
from src.sla.application.services import (
    IReferenceDataRepository,
    ITicketRepository,
    ReferenceSnapshot,
    ReferenceDataCache,
    SLAService,
    TransitionResult,
    TicketLifecycleService,
)

__all__ = [
    # DTOs
    "BusinessHoursConfigDTO",
    "HolidayDTO",
    "EscalationLevelDTO",
    "NotificationRuleDTO",
    "SLAPolicyDTO",
    "ReferenceDataDocument",
    "TicketEventDTO",
    # Services
    "ReferenceSnapshot",
    "ReferenceDataCache",
    "SLAService",
    "TransitionResult",
    "TicketLifecycleService",
    # Repository Interfaces
    "IReferenceDataRepository",
    "ITicketRepository",
]
