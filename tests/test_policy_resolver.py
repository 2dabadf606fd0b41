"""Tests for SLA policy resolution and ranking."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.config import Priority
from src.core import PolicyNotFound
from src.sla.domain import SLAPolicyResolver, TicketContext, policy_specificity, rank_policies
from tests.fakes import make_policy

CONTEXT = TicketContext(
    priority=Priority.HIGH,
    department_id=1,
    service_catalog_id=10,
    service_item_id=101,
)


def _scoped_policies():
    return [
        make_policy(1, name="global"),
        make_policy(2, name="priority", priority=Priority.HIGH),
        make_policy(3, name="department", department_id=1),
        make_policy(4, name="catalog", service_catalog_id=10),
        make_policy(5, name="item", service_item_id=101),
    ]


def test_service_item_policy_wins_over_global():
    resolver = SLAPolicyResolver([
        make_policy(1, name="global", resolution_time_minutes=2400),
        make_policy(2, name="item", service_item_id=101, response_time_minutes=30, resolution_time_minutes=120),
    ])

    policy = resolver.resolve(CONTEXT)

    assert policy.id == 2
    assert policy.resolution_time_minutes == 120


def test_ranking_order():
    ranked = rank_policies(_scoped_policies(), CONTEXT)
    assert [p.name for p in ranked] == ["item", "catalog", "department", "priority", "global"]


def test_combined_scope_beats_single_scope():
    resolver = SLAPolicyResolver([
        make_policy(1, department_id=1),
        make_policy(2, department_id=1, priority=Priority.HIGH),
    ])
    assert resolver.resolve(CONTEXT).id == 2


def test_mismatched_scope_excluded():
    resolver = SLAPolicyResolver([
        make_policy(1, name="global"),
        make_policy(2, department_id=2),
        make_policy(3, service_item_id=101, priority=Priority.URGENT),
    ])
    assert resolver.resolve(CONTEXT).id == 1


def test_inactive_policies_ignored():
    resolver = SLAPolicyResolver([
        make_policy(1, name="global"),
        make_policy(2, service_item_id=101, is_active=False),
    ])

    assert resolver.resolve(CONTEXT).id == 1
    assert resolver.get(2) is None
    assert len(resolver) == 1


def test_tie_broken_by_newest_then_highest_id():
    older = make_policy(1, department_id=1, created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
    newer = make_policy(2, department_id=1, created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
    assert SLAPolicyResolver([newer, older]).resolve(CONTEXT).id == 2

    same_a = make_policy(7, department_id=1, created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
    same_b = make_policy(9, department_id=1, created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
    assert SLAPolicyResolver([same_b, same_a]).resolve(CONTEXT).id == 9


def test_missing_created_at_sorts_oldest():
    undated = make_policy(9, department_id=1)
    dated = make_policy(2, department_id=1, created_at=datetime(2020, 1, 1))
    assert SLAPolicyResolver([undated, dated]).resolve(CONTEXT).id == 2


def test_no_candidate_raises_policy_not_found():
    resolver = SLAPolicyResolver([make_policy(1, department_id=2)])

    with pytest.raises(PolicyNotFound) as exc:
        resolver.resolve(CONTEXT)

    assert exc.value.details["department_id"] == 1
    assert exc.value.details["priority"] == "high"


def test_policy_specificity():
    assert policy_specificity(make_policy(1)) == (0, 0, 0, 0)
    assert policy_specificity(make_policy(1, service_item_id=1, priority=Priority.LOW)) == (1, 0, 0, 1)


def test_response_time_cannot_exceed_resolution():
    with pytest.raises(ValueError):
        make_policy(1, response_time_minutes=600, resolution_time_minutes=480)
