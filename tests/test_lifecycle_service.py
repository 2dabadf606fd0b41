"""Tests for lifecycle transitions and escalations through the ticket store."""

from __future__ import annotations

import asyncio

import pytest

from src.config import ApprovalStatus, Priority, TicketStatus
from src.core import ConcurrencyConflict, InvalidTransition, PolicyNotFound, ResourceNotFoundException
from src.sla.application import ReferenceDataCache, TicketLifecycleService, TransitionResult
from src.sla.domain import BusinessApproval, TicketEvent
from tests.fakes import ConflictingTicketRepository, jkt, make_policy, make_ticket

REVIEWER = 20
IT_HIGH = make_policy(
    3,
    name="IT High",
    department_id=1,
    priority=Priority.HIGH,
    resolution_time_minutes=480,
    escalation_matrix=[(1, 60, "team_lead"), (2, 120, "manager")],
)


def _pending(ticket_repo, ticket_id=1, **overrides):
    ticket_repo.add(
        make_ticket(ticket_id, **overrides),
        BusinessApproval(ticket_id=ticket_id, business_reviewer_id=REVIEWER),
    )


@pytest.fixture
def with_policies(reference_repo):
    reference_repo.policies.extend([make_policy(1, name="Default", resolution_time_minutes=2400), IT_HIGH])
    return reference_repo


async def test_approval_persists_due_date(with_policies, ticket_repo, lifecycle_service):
    _pending(ticket_repo)

    result = await lifecycle_service.transition(1, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10)))

    stored = ticket_repo.tickets[1]
    assert result.new_status == TicketStatus.OPEN
    assert result.attempts == 1
    assert stored.status == TicketStatus.OPEN
    assert stored.sla_policy_id == 3
    assert stored.sla_due_date == jkt(2026, 10, 20, 10)
    assert stored.version == 1
    assert ticket_repo.approvals[1].approval_status == ApprovalStatus.APPROVED


async def test_service_item_policy_used_on_approval(reference_repo, ticket_repo, lifecycle_service):
    reference_repo.policies.extend([
        make_policy(1, name="Global", resolution_time_minutes=2400),
        make_policy(4, name="Core Banking Access", service_item_id=101,
                    response_time_minutes=30, resolution_time_minutes=120),
    ])
    _pending(ticket_repo, service_catalog_id=10, service_item_id=101)

    result = await lifecycle_service.transition(1, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10)))

    assert result.policy.id == 4
    assert result.ticket.sla_due_date == jkt(2026, 10, 19, 12)


async def test_missing_policy_does_not_block_approval(ticket_repo, lifecycle_service):
    _pending(ticket_repo)

    result = await lifecycle_service.transition(1, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10)))

    assert result.new_status == TicketStatus.OPEN
    assert isinstance(result.sla_error, PolicyNotFound)
    assert result.ticket.sla_due_date is None
    assert result.to_dict()["sla_error"] is not None


async def test_unknown_ticket(lifecycle_service):
    with pytest.raises(ResourceNotFoundException):
        await lifecycle_service.transition(404, TicketEvent.close(jkt(2026, 10, 19, 10)))


async def test_invalid_transition_leaves_ticket_unchanged(with_policies, ticket_repo, lifecycle_service):
    _pending(ticket_repo)

    with pytest.raises(InvalidTransition):
        await lifecycle_service.transition(1, TicketEvent.resolve(jkt(2026, 10, 19, 10)))

    assert ticket_repo.tickets[1].status == TicketStatus.PENDING_APPROVAL
    assert ticket_repo.tickets[1].version == 0


async def test_backdated_resolve_rejected_and_ticket_stays_loadable(with_policies, ticket_repo, lifecycle_service):
    _pending(ticket_repo)
    await lifecycle_service.transition(1, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 9)))

    with pytest.raises(InvalidTransition):
        await lifecycle_service.transition(1, TicketEvent.resolve(jkt(2026, 10, 18, 9)))

    ticket = await ticket_repo.load_ticket(1)
    assert ticket.status == TicketStatus.OPEN
    assert ticket.resolved_at is None
    assert ticket.version == 1


async def test_conflict_retries_whole_transition(with_policies, cache):
    repo = ConflictingTicketRepository(conflicts=1)
    _pending(repo)
    service = TicketLifecycleService(repo, cache, max_retries=3)

    result = await service.transition(1, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10)))

    assert result.attempts == 2
    assert repo.tickets[1].status == TicketStatus.OPEN
    assert repo.approval_writes == 1


async def test_conflict_raised_when_retries_exhausted(with_policies, cache):
    repo = ConflictingTicketRepository(conflicts=5)
    _pending(repo)
    service = TicketLifecycleService(repo, cache, max_retries=3)

    with pytest.raises(ConcurrencyConflict):
        await service.transition(1, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10)))

    assert repo.tickets[1].status == TicketStatus.PENDING_APPROVAL
    assert repo.approval_writes == 0


async def test_simultaneous_approvals_apply_once(with_policies, ticket_repo, lifecycle_service):
    _pending(ticket_repo)
    event = TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10))

    results = await asyncio.gather(
        lifecycle_service.transition(1, event),
        lifecycle_service.transition(1, event),
        return_exceptions=True,
    )

    succeeded = [r for r in results if isinstance(r, TransitionResult)]
    failed = [r for r in results if isinstance(r, InvalidTransition)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert ticket_repo.approval_writes == 1
    assert ticket_repo.tickets[1].version == 1


async def test_full_lifecycle(with_policies, ticket_repo, lifecycle_service):
    _pending(ticket_repo)
    transition = lifecycle_service.transition

    await transition(1, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10)))
    await transition(1, TicketEvent.assign(7, jkt(2026, 10, 19, 10, 30), assigned_by=REVIEWER))
    await transition(1, TicketEvent.start_work(jkt(2026, 10, 19, 11), actor_id=7))
    resolved = await transition(1, TicketEvent.resolve(jkt(2026, 10, 19, 12), actor_id=7, comment="Fixed"))
    reopened = await transition(1, TicketEvent.reopen(jkt(2026, 10, 20, 9), comment="Still broken"))
    await transition(1, TicketEvent.resolve(jkt(2026, 10, 20, 10), actor_id=7))
    closed = await transition(1, TicketEvent.close(jkt(2026, 10, 20, 11)))

    assert resolved.ticket.sla_elapsed_minutes == pytest.approx(120)
    assert reopened.ticket.sla_due_date == jkt(2026, 10, 20, 15)
    assert closed.new_status == TicketStatus.CLOSED
    assert closed.ticket.sla_elapsed_minutes == pytest.approx(180)
    assert closed.ticket.version == 7
    assert [c.content for c in ticket_repo.comments] == ["Fixed", "Still broken"]
    assert len(ticket_repo.assignment_logs) == 1


async def test_check_escalation_applies_once(with_policies, ticket_repo, lifecycle_service):
    _pending(ticket_repo)
    await lifecycle_service.transition(1, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10)))

    assert await lifecycle_service.check_escalation(1, jkt(2026, 10, 19, 10, 30)) is None

    first = await lifecycle_service.check_escalation(1, jkt(2026, 10, 19, 11, 30))
    assert first.level == 1
    assert await lifecycle_service.check_escalation(1, jkt(2026, 10, 19, 11, 45)) is None

    second = await lifecycle_service.check_escalation(1, jkt(2026, 10, 19, 12, 5))
    assert second.level == 2
    assert second.previous_level == 1

    stored = ticket_repo.tickets[1]
    assert stored.escalation_level == 2
    assert stored.escalated_to_role == "manager"
    assert stored.status == TicketStatus.OPEN
    assert [log.assigned_role for log in ticket_repo.assignment_logs] == ["team_lead", "manager"]


async def test_check_escalation_skips_inactive_tickets(with_policies, ticket_repo, lifecycle_service):
    _pending(ticket_repo)
    assert await lifecycle_service.check_escalation(1, jkt(2026, 10, 21, 10)) is None

    ticket_repo.add(make_ticket(2, status=TicketStatus.OPEN, sla_policy_id=99,
                                sla_due_date=jkt(2026, 10, 19, 17),
                                sla_clock_started_at=jkt(2026, 10, 19, 9)))
    assert await lifecycle_service.check_escalation(2, jkt(2026, 10, 21, 10)) is None


async def test_check_escalation_unknown_ticket(lifecycle_service):
    with pytest.raises(ResourceNotFoundException):
        await lifecycle_service.check_escalation(404, jkt(2026, 10, 19, 10))


async def test_reference_data_loaded_once_per_department(with_policies, ticket_repo, cache: ReferenceDataCache,
                                                         lifecycle_service):
    _pending(ticket_repo, 1)
    _pending(ticket_repo, 2)

    await lifecycle_service.transition(1, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10)))
    await lifecycle_service.transition(2, TicketEvent.approve(REVIEWER, jkt(2026, 10, 19, 10)))

    assert with_policies.loads == 1
