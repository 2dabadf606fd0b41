from __future__ import annotations

import pytest

from src.sla.application import ReferenceDataCache, SLAService, TicketLifecycleService
from src.sla.domain import BusinessHoursCalendar, DueDateCalculator, HolidayRegistry
from tests.fakes import InMemoryReferenceDataRepository, InMemoryTicketRepository, weekday_hours


@pytest.fixture
def office_hours():
    """Department 1: Monday-Friday 09:00-17:00 Asia/Jakarta."""
    return weekday_hours(department_id=1)


@pytest.fixture
def calendar(office_hours) -> BusinessHoursCalendar:
    return BusinessHoursCalendar(office_hours)


@pytest.fixture
def calculator(calendar) -> DueDateCalculator:
    return DueDateCalculator(calendar, HolidayRegistry([]))


@pytest.fixture
def reference_repo(office_hours) -> InMemoryReferenceDataRepository:
    return InMemoryReferenceDataRepository(business_hours=office_hours)


@pytest.fixture
def ticket_repo() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def cache(reference_repo) -> ReferenceDataCache:
    return ReferenceDataCache(reference_repo, ttl_seconds=1800, max_lookahead_days=3650)


@pytest.fixture
def lifecycle_service(ticket_repo, cache) -> TicketLifecycleService:
    return TicketLifecycleService(ticket_repo, cache, max_retries=3)


@pytest.fixture
def sla_service(ticket_repo, cache) -> SLAService:
    return SLAService(cache, ticket_repo, at_risk_threshold_percent=15)
