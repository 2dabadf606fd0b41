"""
SLA Engine Module
=================

Bounded Context for ticket SLA computation, lifecycle and escalation.

Responsibilities:
- Resolve the most specific SLA policy for a ticket
- Calculate due dates over department business hours and holidays
- Drive the ticket lifecycle; business approval starts the SLA clock
- Escalate tickets through the policy escalation matrix
- Notify Slack channels on escalation and breach
- Hot-reload YAML reference data via watchdog
"""

__version__ = "1.0.0"
