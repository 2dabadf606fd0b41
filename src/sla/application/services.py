"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain services and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from src.config import SLAState, TicketEventType, TicketStatus, settings
from src.core import ApplicationException, ConcurrencyConflict, InvalidTransition, ResourceNotFoundException
from src.shared.infrastructure.logging import get_logger, log_latency
from src.sla.domain import (
    BusinessApproval, BusinessHoursCalendar, BusinessHoursConfig, DueDateCalculator,
    DueDateResult, EscalationEngine, EscalationResult, Holiday, HolidayRegistry,
    SLAPolicy, SLAPolicyResolver, SLAStatusCalculator, SLAStatusSnapshot, Ticket,
    TicketContext, TicketEvent, TicketLifecycleStateMachine, TicketPatch, as_utc,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IReferenceDataRepository(ABC):
    """Interface for administrator-owned reference data."""

    @abstractmethod
    async def get_business_hours(self, department_id: Optional[int]) -> List[BusinessHoursConfig]:
        """Get the business hours configured for a department."""

    @abstractmethod
    async def get_holidays(self, department_id: Optional[int]) -> List[Holiday]:
        """Get global holidays plus those scoped to the department or its units."""

    @abstractmethod
    async def get_active_sla_policies(self) -> List[SLAPolicy]:
        """Get all active SLA policies."""


class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def load_ticket(self, ticket_id: int) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def load_approval(self, ticket_id: int) -> Optional[BusinessApproval]:
        """Get the business approval record of a ticket."""

    @abstractmethod
    async def save_ticket_transition(
        self,
        ticket_id: int,
        expected_version: int,
        patch: TicketPatch
    ) -> Ticket:
        """
        Atomically apply a patch if the stored version still matches.

        Raises:
            ConcurrencyConflict: the ticket was written by someone else
        """

    @abstractmethod
    async def list_active_tickets(self) -> List[Ticket]:
        """List tickets whose SLA may still escalate."""


# ========== Reference data cache ==========

@dataclass(frozen=True)
class ReferenceSnapshot:
    """Immutable view of the reference data one department needs."""

    department_id: Optional[int]
    calendar: BusinessHoursCalendar
    holidays: HolidayRegistry
    resolver: SLAPolicyResolver
    calculator: DueDateCalculator


class ReferenceDataCache:
    """
    TTL cache of per-department reference snapshots.

    Snapshots are rebuilt after ``ttl_seconds`` or after ``invalidate()``.
    Malformed reference data raises ConfigurationException when a snapshot
    is built and nothing is cached for that department.
    """

    def __init__(
        self,
        repository: IReferenceDataRepository,
        ttl_seconds: Optional[int] = None,
        max_lookahead_days: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self._repository = repository
        self._ttl = settings.reference_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._max_lookahead_days = max_lookahead_days or settings.max_lookahead_days
        self._clock = clock
        self._snapshots: Dict[Optional[int], Tuple[float, ReferenceSnapshot]] = {}
        self._policies: Optional[Tuple[float, SLAPolicyResolver]] = None
        self._lock = asyncio.Lock()

    async def snapshot(self, department_id: Optional[int]) -> ReferenceSnapshot:
        """Get (loading if needed) the reference snapshot for a department."""
        cached = self._snapshots.get(department_id)
        if cached and not self._expired(cached[0]):
            return cached[1]

        async with self._lock:
            cached = self._snapshots.get(department_id)
            if cached and not self._expired(cached[0]):
                return cached[1]

            with log_latency(logger, "reference_snapshot_load", department_id=department_id):
                resolver = await self._get_resolver()
                configs = await self._repository.get_business_hours(department_id)
                holidays = await self._repository.get_holidays(department_id)

                calendar = BusinessHoursCalendar(configs)
                registry = HolidayRegistry(holidays)
                snapshot = ReferenceSnapshot(
                    department_id=department_id,
                    calendar=calendar,
                    holidays=registry,
                    resolver=resolver,
                    calculator=DueDateCalculator(calendar, registry, self._max_lookahead_days),
                )

            self._snapshots[department_id] = (self._clock(), snapshot)
            logger.info(
                "Reference data loaded",
                extra={
                    "department_id": department_id,
                    "business_hours": len(configs),
                    "holidays": len(registry),
                    "policies": len(resolver),
                }
            )
            return snapshot

    def invalidate(self) -> None:
        """Drop every cached snapshot; the next access reloads."""
        self._snapshots.clear()
        self._policies = None
        logger.info("Reference data cache invalidated")

    def _expired(self, loaded_at: float) -> bool:
        return self._clock() - loaded_at >= self._ttl

    async def _get_resolver(self) -> SLAPolicyResolver:
        if self._policies and not self._expired(self._policies[0]):
            return self._policies[1]
        resolver = SLAPolicyResolver(await self._repository.get_active_sla_policies())
        self._policies = (self._clock(), resolver)
        return resolver


# ========== Application Services ==========

class SLAService:
    """
    Service for SLA calculations over cached reference data.

    Coordinates between domain logic and data access.
    """

    def __init__(
        self,
        cache: ReferenceDataCache,
        ticket_repository: Optional[ITicketRepository] = None,
        at_risk_threshold_percent: Optional[int] = None
    ):
        self._cache = cache
        self._ticket_repo = ticket_repository
        self._threshold = (
            settings.at_risk_threshold_percent
            if at_risk_threshold_percent is None else at_risk_threshold_percent
        )

    async def compute_due_date(
        self,
        start: datetime,
        duration_minutes: int,
        department_id: Optional[int],
        business_hours_only: bool,
        unit_id: Optional[int] = None
    ) -> DueDateResult:
        """
        Calculate an SLA due date.

        Raises:
            InvalidDuration: duration_minutes <= 0
            NoBusinessWindowFound: department has no usable business time
        """
        snapshot = await self._cache.snapshot(department_id)
        return snapshot.calculator.due_date(
            start, duration_minutes, department_id, business_hours_only, unit_id
        )

    async def resolve_sla_policy(self, context: TicketContext) -> SLAPolicy:
        """
        Get the most specific policy for a ticket context.

        Raises:
            PolicyNotFound: no active policy matches
        """
        snapshot = await self._cache.snapshot(context.department_id)
        return snapshot.resolver.resolve(context)

    async def business_minutes_between(
        self,
        start: datetime,
        end: datetime,
        department_id: Optional[int],
        business_hours_only: bool,
        unit_id: Optional[int] = None
    ) -> float:
        snapshot = await self._cache.snapshot(department_id)
        return snapshot.calculator.business_minutes_between(
            start, end, department_id, business_hours_only, unit_id
        )

    async def sla_status(self, ticket_id: int, now: datetime) -> Optional[SLAStatusSnapshot]:
        """
        Point-in-time SLA status of a ticket.

        Args:
            ticket_id: Ticket ID
            now: Evaluation time

        Returns:
            SLAStatusSnapshot, or None if the ticket has no SLA due date

        Raises:
            ResourceNotFoundException: unknown ticket
        """
        if self._ticket_repo is None:
            raise ValueError("Ticket repository not configured")

        ticket = await self._ticket_repo.load_ticket(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        if not ticket.has_sla:
            return None

        now = as_utc(now)
        due = as_utc(ticket.sla_due_date)
        snapshot = await self._cache.snapshot(ticket.department_id)
        calculator = snapshot.calculator
        business_hours_only = ticket.sla_business_hours_only

        met_at = as_utc(ticket.resolved_at) if ticket.resolved_at else None
        horizon = met_at or now

        remaining_minutes = max(0.0, (due - horizon).total_seconds() / 60)
        business_remaining = calculator.business_minutes_between(
            horizon, due, ticket.department_id, business_hours_only, ticket.unit_id
        )

        policy = snapshot.resolver.get(ticket.sla_policy_id)
        if policy is not None:
            budget = float(policy.resolution_time_minutes)
        else:
            budget = ticket.sla_elapsed_minutes + business_remaining
        percentage = 0.0 if budget <= 0 else max(0.0, min(100.0, business_remaining / budget * 100))

        is_overdue = horizon >= due if met_at is None else met_at > due
        if met_at is not None:
            state = SLAState.MET if met_at <= due else SLAState.BREACHED
        else:
            state = SLAStatusCalculator.classify(percentage, is_overdue, self._threshold)

        next_start = None
        if met_at is None and business_hours_only and not calculator.is_in_business_hours(
            now, ticket.department_id, ticket.unit_id
        ):
            next_start = calculator.next_business_start(now, ticket.department_id, ticket.unit_id)

        return SLAStatusSnapshot(
            ticket_id=ticket.id,
            due_date=due,
            state=state,
            remaining_minutes=remaining_minutes,
            business_minutes_remaining=business_remaining,
            percentage_remaining=percentage,
            is_overdue=is_overdue,
            next_business_start=next_start,
            met_at=met_at,
        )


@dataclass(frozen=True)
class TransitionResult:
    """Persisted result of a lifecycle transition."""

    ticket: Ticket
    previous_status: TicketStatus
    new_status: TicketStatus
    policy: Optional[SLAPolicy] = None
    sla: Optional[DueDateResult] = None
    sla_error: Optional[ApplicationException] = None
    attempts: int = 1

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket.id,
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
            "sla_policy_id": self.policy.id if self.policy else None,
            "sla": self.sla.to_dict() if self.sla else None,
            "sla_error": self.sla_error.message if self.sla_error else None,
            "attempts": self.attempts,
        }


class TicketLifecycleService:
    """
    Runs lifecycle transitions and escalations against the ticket store.

    Every write is version-checked. On ConcurrencyConflict the whole
    operation (reload, validate, recompute) is retried up to ``max_retries``
    times before the conflict is raised to the caller.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        cache: ReferenceDataCache,
        max_retries: Optional[int] = None
    ):
        self._ticket_repo = ticket_repository
        self._cache = cache
        self._max_retries = max(1, max_retries or settings.transition_max_retries)

    async def transition(self, ticket_id: int, event: TicketEvent) -> TransitionResult:
        """
        Apply a lifecycle event to a ticket.

        Raises:
            ResourceNotFoundException: unknown ticket
            InvalidTransition: event not applicable in the ticket's state
            ConcurrencyConflict: retries exhausted
        """
        for attempt in range(1, self._max_retries + 1):
            ticket = await self._load(ticket_id)

            approval = None
            if event.type in (TicketEventType.APPROVE, TicketEventType.REJECT):
                approval = await self._ticket_repo.load_approval(ticket_id)

            snapshot = await self._cache.snapshot(ticket.department_id)
            machine = TicketLifecycleStateMachine(snapshot.resolver, snapshot.calculator)

            try:
                outcome = machine.apply(ticket, event, approval)
            except InvalidTransition as e:
                logger.warning(
                    "Rejected ticket transition",
                    extra={"reason": e.message, **e.details}
                )
                raise

            try:
                saved = await self._ticket_repo.save_ticket_transition(
                    ticket.id, ticket.version, outcome.patch
                )
            except ConcurrencyConflict:
                logger.warning(
                    "Ticket transition conflict",
                    extra={"ticket_id": ticket_id, "event": event.type.value, "attempt": attempt}
                )
                if attempt == self._max_retries:
                    raise
                continue

            if outcome.sla_error is not None:
                logger.warning(
                    "Ticket transitioned without SLA due date",
                    extra={
                        "ticket_id": ticket_id,
                        "error": outcome.sla_error.message,
                        **outcome.sla_error.details,
                    }
                )

            logger.info(
                "Ticket transitioned",
                extra={
                    "ticket_id": ticket_id,
                    "event": event.type.value,
                    "from_status": outcome.previous_status.value,
                    "to_status": outcome.new_status.value,
                    "sla_due_date": saved.sla_due_date.isoformat() if saved.sla_due_date else None,
                    "attempt": attempt,
                }
            )

            return TransitionResult(
                ticket=saved,
                previous_status=outcome.previous_status,
                new_status=outcome.new_status,
                policy=outcome.policy,
                sla=outcome.sla,
                sla_error=outcome.sla_error,
                attempts=attempt,
            )

    async def check_escalation(self, ticket_id: int, now: datetime) -> Optional[EscalationResult]:
        """
        Apply the next crossed escalation level, if any.

        Returns:
            The applied EscalationResult, or None when nothing changed

        Raises:
            ResourceNotFoundException: unknown ticket
            ConcurrencyConflict: retries exhausted
        """
        for attempt in range(1, self._max_retries + 1):
            ticket = await self._load(ticket_id)
            if not ticket.is_active or ticket.sla_policy_id is None:
                return None

            snapshot = await self._cache.snapshot(ticket.department_id)
            policy = snapshot.resolver.get(ticket.sla_policy_id)
            if policy is None:
                logger.warning(
                    "SLA policy of ticket no longer active",
                    extra={"ticket_id": ticket_id, "sla_policy_id": ticket.sla_policy_id}
                )
                return None

            result = EscalationEngine(snapshot.calculator).next_escalation(ticket, policy, now)
            if result is None:
                return None

            machine = TicketLifecycleStateMachine(snapshot.resolver, snapshot.calculator)
            patch = machine.escalate(ticket, result, now)

            try:
                await self._ticket_repo.save_ticket_transition(ticket.id, ticket.version, patch)
            except ConcurrencyConflict:
                logger.warning(
                    "Ticket escalation conflict",
                    extra={"ticket_id": ticket_id, "attempt": attempt}
                )
                if attempt == self._max_retries:
                    raise
                continue

            logger.info("Ticket escalated", extra=result.to_dict())
            return result

    async def _load(self, ticket_id: int) -> Ticket:
        ticket = await self._ticket_repo.load_ticket(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket
