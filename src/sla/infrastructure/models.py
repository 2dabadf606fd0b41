"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA engine.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.config import ApprovalStatus, Priority, TicketStatus
from src.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Reference data ==========

class BusinessHoursConfigModel(Base):
    """
    Database model for a weekly business window.

    Maps to the 'business_hours' table.
    """
    __tablename__ = "business_hours"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    department_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Sunday
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Asia/Jakarta")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class HolidayModel(Base):
    """
    Database model for a holiday exclusion.

    Maps to the 'holidays' table. Rows with neither department nor unit
    are global.
    """
    __tablename__ = "holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    department_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    unit_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SLAPolicyModel(Base):
    """
    Database model for an SLA policy.

    Maps to the 'sla_policies' table. The escalation matrix and the
    notification rules are stored as JSON lists.
    """
    __tablename__ = "sla_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scope (null matches any)
    department_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    service_catalog_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    service_item_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    priority: Mapped[Optional[Priority]] = mapped_column(String(20), nullable=True)

    # Targets
    response_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    business_hours_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    escalation_matrix: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notification_rules: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ========== Workflow ==========

class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table. ``version`` is the optimistic lock.
    """
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    status: Mapped[TicketStatus] = mapped_column(
        String(30), nullable=False, default=TicketStatus.PENDING_APPROVAL, index=True
    )
    priority: Mapped[Priority] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM)

    created_by_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_to_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    service_item_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    service_catalog_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    department_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    unit_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # SLA tracking
    sla_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_policy_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sla_policies.id"), nullable=True)
    sla_business_hours_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sla_clock_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_elapsed_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalated_to_role: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class BusinessApprovalModel(Base):
    """
    Database model for the business approval gate of a ticket.

    Maps to the 'business_approvals' table.
    """
    __tablename__ = "business_approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey("tickets.id"), nullable=False, unique=True)
    business_reviewer_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        String(20), nullable=False, default=ApprovalStatus.PENDING
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class AssignmentLogModel(Base):
    """Maps to the append-only 'assignment_logs' table."""
    __tablename__ = "assignment_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey("tickets.id"), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    assigned_to_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    assigned_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    assigned_role: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class CommentModel(Base):
    """Maps to the 'ticket_comments' table."""
    __tablename__ = "ticket_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey("tickets.id"), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
