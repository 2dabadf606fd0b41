"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces.

- SQLAlchemy repositories for reference data and tickets
- YAML reference data provider for deployments without an admin database

Rows and YAML entries pass through the application DTOs, so malformed
reference data is reported as ConfigurationException wherever it comes from.
"""

import threading
from pathlib import Path
from typing import Iterable, List, Optional, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import ACTIVE_STATUSES, ApprovalStatus, Priority, TicketStatus
from src.core import ConcurrencyConflict, ConfigurationException, RepositoryException
from src.shared.infrastructure.logging import get_logger
from src.sla.application import (
    BusinessHoursConfigDTO, HolidayDTO, IReferenceDataRepository, ITicketRepository,
    ReferenceDataDocument, SLAPolicyDTO,
)
from src.sla.domain import (
    BusinessApproval, BusinessHoursCalendar, BusinessHoursConfig, Holiday,
    SLAPolicy, Ticket, TicketPatch, as_utc,
)
from src.sla.infrastructure.models import (
    AssignmentLogModel, BusinessApprovalModel, BusinessHoursConfigModel, CommentModel,
    HolidayModel, SLAPolicyModel, TicketModel,
)

logger = get_logger(__name__)

DTO = TypeVar("DTO", bound=BaseModel)


def _validate_rows(dto_class: Type[DTO], rows: Iterable, source: str) -> List[DTO]:
    """Validate ORM rows through a DTO, reporting failures as configuration errors."""
    try:
        return [dto_class.model_validate(row, from_attributes=True) for row in rows]
    except ValidationError as e:
        raise ConfigurationException(
            f"Invalid {source} reference data: {e.error_count()} error(s)",
            {"source": source, "errors": e.errors(include_url=False)}
        ) from e


def _dept_filter(column, department_id: Optional[int]):
    if department_id is None:
        return column.is_(None)
    return column == department_id


# ========== SQLAlchemy repositories ==========

class SQLAlchemyReferenceDataRepository(IReferenceDataRepository):
    """
    SQLAlchemy implementation of the reference data repository.

    Each call opens its own short-lived session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_business_hours(self, department_id: Optional[int]) -> List[BusinessHoursConfig]:
        stmt = select(BusinessHoursConfigModel).where(
            _dept_filter(BusinessHoursConfigModel.department_id, department_id),
            BusinessHoursConfigModel.is_active.is_(True),
        ).order_by(BusinessHoursConfigModel.day_of_week, BusinessHoursConfigModel.start_time)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [dto.to_domain() for dto in _validate_rows(BusinessHoursConfigDTO, rows, "business_hours")]

    async def get_holidays(self, department_id: Optional[int]) -> List[Holiday]:
        # Unit-scoped rows are returned too; the registry filters them per unit
        scope = HolidayModel.department_id.is_(None)
        if department_id is not None:
            scope = or_(scope, HolidayModel.department_id == department_id)

        stmt = select(HolidayModel).where(scope, HolidayModel.is_active.is_(True))

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [dto.to_domain() for dto in _validate_rows(HolidayDTO, rows, "holidays")]

    async def get_active_sla_policies(self) -> List[SLAPolicy]:
        stmt = select(SLAPolicyModel).where(SLAPolicyModel.is_active.is_(True))

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [dto.to_domain() for dto in _validate_rows(SLAPolicyDTO, rows, "sla_policies")]


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket repository.

    ``save_ticket_transition`` writes the ticket row, the approval record
    and the audit entries in one transaction, guarded by the ticket version.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load_ticket(self, ticket_id: int) -> Optional[Ticket]:
        async with self._session_factory() as session:
            model = await session.get(TicketModel, ticket_id)
            return self._to_ticket(model) if model else None

    async def load_approval(self, ticket_id: int) -> Optional[BusinessApproval]:
        stmt = select(BusinessApprovalModel).where(BusinessApprovalModel.ticket_id == ticket_id)
        async with self._session_factory() as session:
            model = (await session.execute(stmt)).scalar_one_or_none()
            return self._to_approval(model) if model else None

    async def save_ticket_transition(
        self,
        ticket_id: int,
        expected_version: int,
        patch: TicketPatch
    ) -> Ticket:
        values = {key: self._column_value(value) for key, value in patch.fields.items()}
        values["version"] = expected_version + 1

        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id, TicketModel.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    raise ConcurrencyConflict(ticket_id, expected_version)

                if patch.approval is not None:
                    await self._save_approval(session, patch.approval)

                for log in patch.assignment_logs:
                    session.add(AssignmentLogModel(
                        ticket_id=log.ticket_id,
                        reason=log.reason,
                        assigned_to_user_id=log.assigned_to_user_id,
                        assigned_by_user_id=log.assigned_by_user_id,
                        assigned_role=log.assigned_role,
                        created_at=log.created_at,
                    ))

                for comment in patch.comments:
                    session.add(CommentModel(
                        ticket_id=comment.ticket_id,
                        content=comment.content,
                        author_user_id=comment.author_user_id,
                        is_internal=comment.is_internal,
                        created_at=comment.created_at,
                    ))

            model = await session.get(TicketModel, ticket_id, populate_existing=True)
            if model is None:
                raise RepositoryException(f"Ticket {ticket_id} disappeared after update")
            return self._to_ticket(model)

    async def list_active_tickets(self) -> List[Ticket]:
        stmt = select(TicketModel).where(
            TicketModel.status.in_([s.value for s in ACTIVE_STATUSES]),
            TicketModel.sla_policy_id.is_not(None),
        ).order_by(TicketModel.sla_due_date.asc())

        async with self._session_factory() as session:
            models = (await session.execute(stmt)).scalars().all()
            return [self._to_ticket(m) for m in models]

    @staticmethod
    async def _save_approval(session: AsyncSession, approval: BusinessApproval) -> None:
        stmt = select(BusinessApprovalModel).where(BusinessApprovalModel.ticket_id == approval.ticket_id)
        model = (await session.execute(stmt)).scalar_one_or_none()
        if model is None:
            model = BusinessApprovalModel(ticket_id=approval.ticket_id)
            session.add(model)

        model.business_reviewer_id = approval.business_reviewer_id
        model.approval_status = approval.approval_status.value
        model.approved_at = approval.approved_at
        model.comments = approval.comments

    @staticmethod
    def _column_value(value):
        if isinstance(value, (TicketStatus, Priority, ApprovalStatus)):
            return value.value
        return value

    @staticmethod
    def _to_ticket(model: TicketModel) -> Ticket:
        def aware(value):
            return as_utc(value) if value is not None else None

        return Ticket(
            id=model.id,
            title=model.title,
            status=TicketStatus(model.status),
            priority=Priority(model.priority),
            created_by_user_id=model.created_by_user_id,
            created_at=as_utc(model.created_at),
            service_item_id=model.service_item_id,
            service_catalog_id=model.service_catalog_id,
            department_id=model.department_id,
            unit_id=model.unit_id,
            assigned_to_user_id=model.assigned_to_user_id,
            sla_due_date=aware(model.sla_due_date),
            sla_policy_id=model.sla_policy_id,
            sla_business_hours_only=model.sla_business_hours_only,
            sla_clock_started_at=aware(model.sla_clock_started_at),
            sla_elapsed_minutes=model.sla_elapsed_minutes,
            escalation_level=model.escalation_level,
            escalated_to_role=model.escalated_to_role,
            resolved_at=aware(model.resolved_at),
            closed_at=aware(model.closed_at),
            updated_at=aware(model.updated_at),
            version=model.version,
        )

    @staticmethod
    def _to_approval(model: BusinessApprovalModel) -> BusinessApproval:
        return BusinessApproval(
            id=model.id,
            ticket_id=model.ticket_id,
            business_reviewer_id=model.business_reviewer_id,
            approval_status=ApprovalStatus(model.approval_status),
            approved_at=as_utc(model.approved_at) if model.approved_at else None,
            comments=model.comments,
        )


# ========== YAML provider ==========

class YAMLReferenceDataRepository(IReferenceDataRepository):
    """
    Reference data provider that loads from YAML.

    The whole file is validated on load, including overlap and timezone
    checks for every department, so a malformed file fails at startup.
    ``reload()`` keeps the previous data when the new file is invalid.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._business_hours: List[BusinessHoursConfig] = []
        self._holidays: List[Holiday] = []
        self._policies: List[SLAPolicy] = []
        self._apply(self._load_from_file())

    @property
    def path(self) -> Path:
        return self._path

    def _load_from_file(self) -> ReferenceDataDocument:
        """Load, parse and validate the YAML reference file."""
        if not self._path.exists():
            logger.warning(f"Reference data file not found: {self._path}, starting empty")
            return ReferenceDataDocument()

        try:
            with open(self._path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationException(
                f"Reference data file is not valid YAML: {self._path}",
                {"path": str(self._path)}
            ) from e

        try:
            document = ReferenceDataDocument.model_validate(data)
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid reference data in {self._path}: {e.error_count()} error(s)",
                {"path": str(self._path), "errors": e.errors(include_url=False)}
            ) from e

        return document

    def _apply(self, document: ReferenceDataDocument) -> None:
        business_hours = [dto.to_domain() for dto in document.business_hours]
        holidays = [dto.to_domain() for dto in document.holidays]
        policies = [dto.to_domain() for dto in document.sla_policies]

        # Raises ConfigurationException on overlaps or mixed timezones
        BusinessHoursCalendar(business_hours)

        with self._lock:
            self._business_hours = business_hours
            self._holidays = holidays
            self._policies = policies

        logger.info(
            "Reference data loaded",
            extra={
                "path": str(self._path),
                "business_hours": len(business_hours),
                "holidays": len(holidays),
                "policies": len(policies),
            }
        )

    def reload(self) -> bool:
        """Reload reference data from file."""
        try:
            self._apply(self._load_from_file())
            return True
        except ConfigurationException as e:
            logger.error(
                "Failed to reload reference data, keeping previous version",
                extra={"error": e.message, "path": str(self._path)}
            )
            return False

    async def get_business_hours(self, department_id: Optional[int]) -> List[BusinessHoursConfig]:
        with self._lock:
            return [c for c in self._business_hours if c.department_id == department_id and c.is_active]

    async def get_holidays(self, department_id: Optional[int]) -> List[Holiday]:
        with self._lock:
            return [
                h for h in self._holidays
                if h.is_active and (h.department_id is None or h.department_id == department_id)
            ]

    async def get_active_sla_policies(self) -> List[SLAPolicy]:
        with self._lock:
            return [p for p in self._policies if p.is_active]

