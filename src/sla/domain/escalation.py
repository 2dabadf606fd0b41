"""
Escalation Engine
=================

Compares elapsed SLA time against a policy's escalation matrix.
"""

from datetime import datetime
from typing import Optional

from src.sla.domain.calculator import DueDateCalculator
from src.sla.domain.entities import SLAPolicy, Ticket
from src.sla.domain.value_objects import EscalationResult, as_utc


class EscalationEngine:
    """
    Determines the next escalation level for a ticket.

    Elapsed time honours the policy's ``business_hours_only`` flag and the
    engine never proposes a level at or below the one already applied.
    """

    def __init__(self, calculator: DueDateCalculator):
        self._calculator = calculator

    def elapsed_minutes(self, ticket: Ticket, policy: SLAPolicy, now: datetime) -> float:
        """SLA minutes accrued by the ticket up to ``now``."""
        elapsed = ticket.sla_elapsed_minutes
        if ticket.sla_clock_started_at is None:
            return elapsed

        end = as_utc(now)
        if ticket.resolved_at is not None:
            end = min(end, as_utc(ticket.resolved_at))

        return elapsed + self._calculator.business_minutes_between(
            ticket.sla_clock_started_at,
            end,
            ticket.department_id,
            policy.business_hours_only,
            ticket.unit_id,
        )

    def next_escalation(
        self,
        ticket: Ticket,
        policy: SLAPolicy,
        now: datetime
    ) -> Optional[EscalationResult]:
        """
        Highest crossed escalation level not yet applied to the ticket.

        Returns:
            EscalationResult, or None when nothing new has been crossed
        """
        if not policy.escalation_matrix:
            return None

        elapsed = self.elapsed_minutes(ticket, policy, now)

        crossed = None
        for row in policy.escalation_matrix:
            if row.time_minutes > elapsed:
                break
            if crossed is None or row.level > crossed.level:
                crossed = row

        if crossed is None or crossed.level <= ticket.escalation_level:
            return None

        return EscalationResult(
            ticket_id=ticket.id,
            level=crossed.level,
            assign_to_role=crossed.assign_to_role,
            previous_level=ticket.escalation_level,
            elapsed_minutes=elapsed,
            threshold_minutes=crossed.time_minutes,
        )
