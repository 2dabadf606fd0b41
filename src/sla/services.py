"""
SLA Sweep Services
==================

Periodic escalation sweep and Slack notification.

The sweeper is what the scheduler runs: it walks every active ticket,
applies any newly crossed escalation level through the lifecycle service
and notifies the channels configured on the ticket's SLA policy.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from src.config import NotificationEvent, settings
from src.core import ApplicationException
from src.shared.infrastructure.logging import get_context_logger, log_latency
from src.sla.application import ITicketRepository, ReferenceDataCache, TicketLifecycleService
from src.sla.domain import EscalationResult, SLAPolicy, Ticket, as_utc
from src.sla.infrastructure.external import SlackClient, SlackMessage


class EscalationSweeper:
    """
    Evaluates escalations for all active tickets.

    This service:
    1. Lists active tickets that carry an SLA policy
    2. Applies the next crossed escalation level (version-checked)
    3. Detects due dates passed since the previous sweep
    4. Sends Slack notifications per policy notification rules
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        lifecycle_service: TicketLifecycleService,
        cache: ReferenceDataCache,
        slack_client: Optional[SlackClient] = None,
        interval_seconds: Optional[int] = None
    ):
        self._ticket_repo = ticket_repository
        self._lifecycle = lifecycle_service
        self._cache = cache
        self._slack_client = slack_client
        if interval_seconds is None:
            interval_seconds = settings.escalation_sweep_interval
        self._interval = timedelta(seconds=interval_seconds)
        self._last_sweep_at: Optional[datetime] = None

    async def run(self) -> dict:
        """Scheduler entry point."""
        return await self.sweep(datetime.now(timezone.utc))

    async def sweep(self, now: datetime) -> dict:
        """
        Run one escalation sweep.

        Errors on individual tickets are logged and counted; they do not
        stop the sweep.

        Returns:
            Summary of the sweep
        """
        now = as_utc(now)
        logger = get_context_logger(__name__, correlation_id=str(uuid4()))
        since = self._last_sweep_at or (now - self._interval)

        escalated = breached = notifications = errors = 0

        with log_latency(logger, "escalation_sweep"):
            tickets = await self._ticket_repo.list_active_tickets()

            for ticket in tickets:
                try:
                    result = await self._lifecycle.check_escalation(ticket.id, now)
                    policy = await self._policy_for(ticket)
                except ApplicationException as e:
                    errors += 1
                    logger.error(
                        f"Escalation check failed for ticket {ticket.id}: {e.message}",
                        extra={"error_type": type(e).__name__}
                    )
                    continue

                if result is not None:
                    escalated += 1
                    if policy is not None:
                        notifications += await self._notify_escalation(ticket, policy, result)

                if ticket.sla_due_date is not None and since < as_utc(ticket.sla_due_date) <= now:
                    breached += 1
                    if policy is not None:
                        notifications += await self._notify_breach(ticket, policy, result)

        self._last_sweep_at = now

        summary = {
            "tickets_evaluated": len(tickets),
            "escalated": escalated,
            "breached": breached,
            "notifications_sent": notifications,
            "errors": errors,
        }
        logger.info("Escalation sweep completed", extra=summary)
        return summary

    async def _policy_for(self, ticket: Ticket) -> Optional[SLAPolicy]:
        snapshot = await self._cache.snapshot(ticket.department_id)
        return snapshot.resolver.get(ticket.sla_policy_id)

    async def _notify_escalation(self, ticket: Ticket, policy: SLAPolicy, result: EscalationResult) -> int:
        message = SlackMessage(
            ticket_id=ticket.id,
            title=ticket.title,
            priority=ticket.priority.value,
            event=NotificationEvent.ESCALATION.value,
            policy_name=policy.name,
            due_date=ticket.sla_due_date.isoformat() if ticket.sla_due_date else None,
            escalation_level=result.level,
            assign_to_role=result.assign_to_role,
            elapsed_minutes=result.elapsed_minutes,
        )
        return await self._send(message, policy.channels_for(NotificationEvent.ESCALATION))

    async def _notify_breach(
        self,
        ticket: Ticket,
        policy: SLAPolicy,
        escalation: Optional[EscalationResult] = None
    ) -> int:
        # ticket is the pre-sweep snapshot; an escalation applied this sweep is newer
        if escalation is not None:
            level, role = escalation.level, escalation.assign_to_role
        else:
            level, role = ticket.escalation_level, ticket.escalated_to_role
        message = SlackMessage(
            ticket_id=ticket.id,
            title=ticket.title,
            priority=ticket.priority.value,
            event=NotificationEvent.BREACH.value,
            policy_name=policy.name,
            due_date=ticket.sla_due_date.isoformat(),
            escalation_level=level,
            assign_to_role=role,
        )
        return await self._send(message, policy.channels_for(NotificationEvent.BREACH))

    async def _send(self, message: SlackMessage, channels) -> int:
        if self._slack_client is None:
            return 0
        sent = 0
        for channel in channels:
            if await self._slack_client.send(message, channel=channel):
                sent += 1
        return sent
