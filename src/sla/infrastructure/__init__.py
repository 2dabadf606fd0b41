"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer (SQLAlchemy and YAML)
- External: External service integrations (Slack, file watcher, scheduler)
"""

from src.sla.infrastructure.models import (
    BusinessHoursConfigModel,
    HolidayModel,
    SLAPolicyModel,
    TicketModel,
    BusinessApprovalModel,
    AssignmentLogModel,
    CommentModel,
)
from src.sla.infrastructure.repositories import (
    SQLAlchemyReferenceDataRepository,
    SQLAlchemyTicketRepository,
    YAMLReferenceDataRepository,
)

__all__ = [
    "BusinessHoursConfigModel",
    "HolidayModel",
    "SLAPolicyModel",
    "TicketModel",
    "BusinessApprovalModel",
    "AssignmentLogModel",
    "CommentModel",
    "SQLAlchemyReferenceDataRepository",
    "SQLAlchemyTicketRepository",
    "YAMLReferenceDataRepository",
]
