"""System log, activity and background job models."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from settlement_engine.models.base import Base, TimestampMixin


class SystemLog(Base, TimestampMixin):
    """Structured log entry about gateway traffic."""

    __tablename__ = "system_log"

    CATEGORY_GATEWAY_RESPONSE = 1
    CATEGORY_MAIL = 2
    CATEGORY_WEBHOOK = 3

    EVENT_GATEWAY_SUCCESS = 21
    EVENT_GATEWAY_FAILURE = 22
    EVENT_GATEWAY_ERROR = 23

    TYPE_STUB = 300
    TYPE_STRIPE = 301
    TYPE_CHECKOUT = 304

    system_log_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=True,
    )
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    event_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    log: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class Activity(Base, TimestampMixin):
    """Activity feed row for a client."""

    __tablename__ = "activity"

    CREATE_PAYMENT = 10
    PAID_INVOICE = 54

    activity_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=True,
    )
    invoice_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoice.invoice_id"),
        nullable=True,
    )
    payment_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment.payment_id"),
        nullable=True,
    )
    activity_type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class QueuedJob(Base, TimestampMixin):
    """Outbox row for a side effect that runs after the request."""

    __tablename__ = "queued_job"

    queued_job_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[str] = mapped_column(String, nullable=False, default="default")
    name: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String, nullable=False, default="queued")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'done', 'failed')",
            name="queued_job_status_check",
        ),
    )
