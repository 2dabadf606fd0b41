"""
SLA Policy Resolution
=====================

Selects the single most specific active policy for a ticket.

Ranking (most specific first):
    1. service item set
    2. service catalog set
    3. department set
    4. priority set
then newest ``created_at`` and highest id as final tie-breakers.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from src.core import PolicyNotFound
from src.sla.domain.entities import SLAPolicy
from src.sla.domain.value_objects import TicketContext, as_utc

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def policy_specificity(policy: SLAPolicy) -> Tuple[int, int, int, int]:
    """Which scoping fields are set, in ranking order."""
    return (
        int(policy.service_item_id is not None),
        int(policy.service_catalog_id is not None),
        int(policy.department_id is not None),
        int(policy.priority is not None),
    )


def policy_rank(policy: SLAPolicy) -> tuple:
    """Sort key where a greater value means a better match."""
    created_at = as_utc(policy.created_at) if policy.created_at else _OLDEST
    return policy_specificity(policy) + (created_at, policy.id)


def rank_policies(policies: Iterable[SLAPolicy], context: TicketContext) -> List[SLAPolicy]:
    """Active policies matching the context, best first."""
    candidates = [p for p in policies if p.is_active and p.matches(context)]
    return sorted(candidates, key=policy_rank, reverse=True)


class SLAPolicyResolver:
    """Resolves policies from an in-memory set of loaded SLA policies."""

    def __init__(self, policies: Iterable[SLAPolicy]):
        self._policies: List[SLAPolicy] = [p for p in policies if p.is_active]
        self._by_id: Dict[int, SLAPolicy] = {p.id: p for p in self._policies}

    def __len__(self) -> int:
        return len(self._policies)

    def candidates(self, context: TicketContext) -> List[SLAPolicy]:
        return rank_policies(self._policies, context)

    def resolve(self, context: TicketContext) -> SLAPolicy:
        """
        Get the most specific policy for a ticket context.

        Raises:
            PolicyNotFound: no active policy matches
        """
        ranked = self.candidates(context)
        if not ranked:
            raise PolicyNotFound(context.to_dict())
        return ranked[0]

    def get(self, policy_id: Optional[int]) -> Optional[SLAPolicy]:
        if policy_id is None:
            return None
        return self._by_id.get(policy_id)
