"""
Ticket Lifecycle
================

Explicit transition table for tickets and the SLA clock effects of each
transition.

The state machine never writes anything: it turns (ticket, event) into a
``TicketPatch`` that the repository applies as one atomic, version-checked
write.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.config import ApprovalStatus, TicketEventType, TicketStatus
from src.core import (
    ApplicationException, InvalidDuration, InvalidTransition,
    NoBusinessWindowFound, PolicyNotFound,
)
from src.sla.domain.calculator import DueDateCalculator
from src.sla.domain.entities import (
    AssignmentLog, BusinessApproval, Comment, SLAPolicy, Ticket,
)
from src.sla.domain.policies import SLAPolicyResolver
from src.sla.domain.value_objects import DueDateResult, EscalationResult, as_utc


TRANSITIONS: Dict[TicketStatus, Dict[TicketEventType, TicketStatus]] = {
    TicketStatus.PENDING_APPROVAL: {
        TicketEventType.APPROVE: TicketStatus.OPEN,
        TicketEventType.REJECT: TicketStatus.REJECTED,
    },
    TicketStatus.OPEN: {
        TicketEventType.ASSIGN: TicketStatus.ASSIGNED,
        TicketEventType.RESOLVE: TicketStatus.RESOLVED,
    },
    TicketStatus.ASSIGNED: {
        TicketEventType.START_WORK: TicketStatus.IN_PROGRESS,
        TicketEventType.RESOLVE: TicketStatus.RESOLVED,
    },
    TicketStatus.IN_PROGRESS: {
        TicketEventType.RESOLVE: TicketStatus.RESOLVED,
    },
    TicketStatus.RESOLVED: {
        TicketEventType.REOPEN: TicketStatus.IN_PROGRESS,
        TicketEventType.CLOSE: TicketStatus.CLOSED,
    },
    TicketStatus.CLOSED: {},
    TicketStatus.REJECTED: {},
}

# SLA failures that leave an approved ticket without a due date
SLA_SOFT_ERRORS = (PolicyNotFound, InvalidDuration, NoBusinessWindowFound)


def allowed_events(status: TicketStatus) -> List[TicketEventType]:
    return list(TRANSITIONS.get(status, {}))


def next_status(ticket_id: Any, status: TicketStatus, event_type: TicketEventType) -> TicketStatus:
    """Look up the target state, raising InvalidTransition for unmodeled pairs."""
    target = TRANSITIONS.get(status, {}).get(event_type)
    if target is None:
        raise InvalidTransition(ticket_id, status.value, event_type.value)
    return target


@dataclass(frozen=True)
class TicketEvent:
    """A request to move a ticket through its lifecycle."""

    type: TicketEventType
    at: datetime
    actor_user_id: Optional[int] = None
    assignee_user_id: Optional[int] = None
    comment: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "at", as_utc(self.at))
        if self.type == TicketEventType.ASSIGN and self.assignee_user_id is None:
            raise ValueError("assign events require assignee_user_id")

    @classmethod
    def approve(cls, reviewer_id: int, at: datetime, comment: Optional[str] = None) -> "TicketEvent":
        return cls(TicketEventType.APPROVE, at, actor_user_id=reviewer_id, comment=comment)

    @classmethod
    def reject(cls, reviewer_id: int, at: datetime, comment: Optional[str] = None) -> "TicketEvent":
        return cls(TicketEventType.REJECT, at, actor_user_id=reviewer_id, comment=comment)

    @classmethod
    def assign(cls, assignee_id: int, at: datetime, assigned_by: Optional[int] = None) -> "TicketEvent":
        return cls(TicketEventType.ASSIGN, at, actor_user_id=assigned_by, assignee_user_id=assignee_id)

    @classmethod
    def start_work(cls, at: datetime, actor_id: Optional[int] = None) -> "TicketEvent":
        return cls(TicketEventType.START_WORK, at, actor_user_id=actor_id)

    @classmethod
    def resolve(cls, at: datetime, actor_id: Optional[int] = None, comment: Optional[str] = None) -> "TicketEvent":
        return cls(TicketEventType.RESOLVE, at, actor_user_id=actor_id, comment=comment)

    @classmethod
    def reopen(cls, at: datetime, actor_id: Optional[int] = None, comment: Optional[str] = None) -> "TicketEvent":
        return cls(TicketEventType.REOPEN, at, actor_user_id=actor_id, comment=comment)

    @classmethod
    def close(cls, at: datetime, actor_id: Optional[int] = None) -> "TicketEvent":
        return cls(TicketEventType.CLOSE, at, actor_user_id=actor_id)


@dataclass
class TicketPatch:
    """Everything one transition writes, applied together or not at all."""

    fields: Dict[str, Any] = field(default_factory=dict)
    approval: Optional[BusinessApproval] = None
    assignment_logs: List[AssignmentLog] = field(default_factory=list)
    comments: List[Comment] = field(default_factory=list)

    def apply_to(self, ticket: Ticket) -> Ticket:
        """Return the patched ticket with its version bumped."""
        return replace(ticket, **self.fields, version=ticket.version + 1)


@dataclass(frozen=True)
class TransitionOutcome:
    """Planned result of a transition, before it is persisted."""

    previous_status: TicketStatus
    new_status: TicketStatus
    patch: TicketPatch
    policy: Optional[SLAPolicy] = None
    sla: Optional[DueDateResult] = None
    sla_error: Optional[ApplicationException] = None


class TicketLifecycleStateMachine:
    """
    Applies lifecycle events to tickets.

    Approval is the only place the SLA clock starts; resolve stops it and
    reopen restarts it with the remaining resolution minutes.
    """

    def __init__(self, resolver: SLAPolicyResolver, calculator: DueDateCalculator):
        self._resolver = resolver
        self._calculator = calculator

    def apply(
        self,
        ticket: Ticket,
        event: TicketEvent,
        approval: Optional[BusinessApproval] = None
    ) -> TransitionOutcome:
        """
        Plan the transition of ``ticket`` for ``event``.

        Raises:
            InvalidTransition: the event does not apply to the ticket's state,
                or its time precedes the timestamps it would follow
        """
        target = next_status(ticket.id, ticket.status, event.type)
        self._check_chronology(ticket, event)
        patch = TicketPatch(fields={"status": target, "updated_at": event.at})

        if event.comment and event.type not in (TicketEventType.APPROVE, TicketEventType.REJECT):
            patch.comments.append(Comment(
                ticket_id=ticket.id,
                content=event.comment,
                author_user_id=event.actor_user_id,
                created_at=event.at,
            ))

        handler = getattr(self, f"_on_{event.type.value}")
        policy, sla, error = handler(ticket, event, approval, patch)

        return TransitionOutcome(
            previous_status=ticket.status,
            new_status=target,
            patch=patch,
            policy=policy,
            sla=sla,
            sla_error=error,
        )

    def escalate(self, ticket: Ticket, result: EscalationResult, at: datetime) -> TicketPatch:
        """Patch recording an escalation; the ticket status is unchanged."""
        return TicketPatch(
            fields={
                "escalation_level": result.level,
                "escalated_to_role": result.assign_to_role,
                "updated_at": as_utc(at),
            },
            assignment_logs=[AssignmentLog(
                ticket_id=ticket.id,
                reason=f"SLA escalation to level {result.level}",
                assigned_role=result.assign_to_role,
                created_at=as_utc(at),
            )],
        )

    # ========== Event handlers ==========

    def _on_approve(self, ticket, event, approval, patch):
        approval = self._check_review(ticket, event, approval)
        patch.approval = replace(
            approval,
            approval_status=ApprovalStatus.APPROVED,
            approved_at=event.at,
            comments=event.comment or approval.comments,
        )

        policy = sla = error = None
        try:
            policy = self._resolver.resolve(ticket.context)
            sla = self._calculator.due_date(
                event.at,
                policy.resolution_time_minutes,
                ticket.department_id,
                policy.business_hours_only,
                ticket.unit_id,
            )
        except SLA_SOFT_ERRORS as e:
            error = e

        patch.fields.update(
            sla_policy_id=policy.id if policy else None,
            sla_business_hours_only=policy.business_hours_only if policy else True,
            sla_due_date=sla.due_date if sla else None,
            sla_clock_started_at=event.at if sla else None,
            sla_elapsed_minutes=0.0,
            escalation_level=0,
            escalated_to_role=None,
        )
        return policy, sla, error

    def _on_reject(self, ticket, event, approval, patch):
        approval = self._check_review(ticket, event, approval)
        patch.approval = replace(
            approval,
            approval_status=ApprovalStatus.REJECTED,
            approved_at=None,
            comments=event.comment or approval.comments,
        )
        return None, None, None

    def _on_assign(self, ticket, event, approval, patch):
        patch.fields["assigned_to_user_id"] = event.assignee_user_id
        patch.assignment_logs.append(AssignmentLog(
            ticket_id=ticket.id,
            reason="assigned",
            assigned_to_user_id=event.assignee_user_id,
            assigned_by_user_id=event.actor_user_id,
            created_at=event.at,
        ))
        return None, None, None

    def _on_start_work(self, ticket, event, approval, patch):
        return None, None, None

    def _on_resolve(self, ticket, event, approval, patch):
        patch.fields["resolved_at"] = event.at
        if ticket.is_sla_clock_running:
            patch.fields["sla_elapsed_minutes"] = ticket.sla_elapsed_minutes + (
                self._calculator.business_minutes_between(
                    ticket.sla_clock_started_at,
                    event.at,
                    ticket.department_id,
                    ticket.sla_business_hours_only,
                    ticket.unit_id,
                )
            )
            patch.fields["sla_clock_started_at"] = None
        return None, None, None

    def _on_reopen(self, ticket, event, approval, patch):
        patch.fields["resolved_at"] = None
        if not ticket.has_sla:
            return None, None, None

        patch.fields["sla_clock_started_at"] = event.at
        policy = self._resolver.get(ticket.sla_policy_id)
        if policy is None:
            return None, None, None

        remaining = policy.resolution_time_minutes - ticket.sla_elapsed_minutes
        if remaining <= 0:
            # Already breached; the original due date stands
            return policy, None, None

        try:
            sla = self._calculator.due_date(
                event.at,
                math.ceil(remaining),
                ticket.department_id,
                ticket.sla_business_hours_only,
                ticket.unit_id,
            )
        except NoBusinessWindowFound as e:
            return policy, None, e

        patch.fields["sla_due_date"] = sla.due_date
        return policy, sla, None

    def _on_close(self, ticket, event, approval, patch):
        patch.fields["closed_at"] = event.at
        return None, None, None

    @staticmethod
    def _check_chronology(ticket: Ticket, event: TicketEvent) -> None:
        earliest = [("ticket creation", ticket.created_at)]
        if event.type == TicketEventType.RESOLVE and ticket.is_sla_clock_running:
            earliest.append(("SLA clock start", ticket.sla_clock_started_at))
        if event.type in (TicketEventType.REOPEN, TicketEventType.CLOSE) and ticket.resolved_at:
            earliest.append(("resolution", ticket.resolved_at))

        for label, instant in earliest:
            if event.at < as_utc(instant):
                raise InvalidTransition(
                    ticket.id, ticket.status.value, event.type.value,
                    f"event time is before {label}"
                )

    @staticmethod
    def _check_review(
        ticket: Ticket,
        event: TicketEvent,
        approval: Optional[BusinessApproval]
    ) -> BusinessApproval:
        if approval is None:
            raise InvalidTransition(
                ticket.id, ticket.status.value, event.type.value,
                "ticket has no business approval record"
            )
        if not approval.is_pending:
            raise InvalidTransition(
                ticket.id, ticket.status.value, event.type.value,
                f"business approval is already {approval.approval_status.value}"
            )
        if (approval.business_reviewer_id is not None
                and event.actor_user_id != approval.business_reviewer_id):
            raise InvalidTransition(
                ticket.id, ticket.status.value, event.type.value,
                "actor is not the assigned business reviewer"
            )
        return approval
