"""Settlement observability metrics.

Metric Categories:
- Payment metrics: payments by status, amounts settled and refunded
- Hash metrics: consumed and open payment hashes
- Job metrics: queued, done and failed background jobs, plus one
  job.failure.<name> counter per job name

Usage:
    collector = SettlementMetricsCollector(session)
    metrics = collector.collect_all()

    # For Prometheus export
    print(metrics.to_prometheus())

    # For JSON export
    print(metrics.to_json())
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from settlement_engine.models import Payment, PaymentHash, PaymentStatus, QueuedJob


@dataclass
class Counter:
    """A counter metric (monotonically increasing)."""

    name: str
    value: int
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


@dataclass
class Gauge:
    """A gauge metric (can go up or down)."""

    name: str
    value: float | int | Decimal
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


@dataclass
class SettlementMetrics:
    """Collection of settlement metrics."""

    payments_by_status: list[Counter]
    payments_amount_total: Gauge
    payments_refunded_total: Gauge
    hashes_consumed: Counter
    hashes_open: Gauge
    jobs_by_status: list[Counter]
    job_failures: list[Counter]
    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def metrics(self) -> list[Counter | Gauge]:
        """All metrics in a flat list."""
        return [
            *self.payments_by_status,
            self.payments_amount_total,
            self.payments_refunded_total,
            self.hashes_consumed,
            self.hashes_open,
            *self.jobs_by_status,
            *self.job_failures,
        ]

    def counter(self, name: str, **labels: str) -> int:
        """Value of a counter by name and labels (0 if absent)."""
        for metric in self.metrics():
            if isinstance(metric, Counter) and metric.name == name and metric.labels == labels:
                return metric.value
        return 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "collected_at": self.collected_at.isoformat(),
            "metrics": [self._metric_to_dict(m) for m in self.metrics()],
        }

    def _metric_to_dict(self, metric: Counter | Gauge) -> dict[str, Any]:
        return {
            "name": metric.name,
            "value": float(metric.value) if isinstance(metric.value, Decimal) else metric.value,
            "labels": metric.labels,
            "help": metric.help_text,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    def to_prometheus(self) -> str:
        """Convert to Prometheus text format."""
        lines: list[str] = []
        seen: set[str] = set()

        for metric in self.metrics():
            name = metric.name.replace(".", "_")
            labels = ""
            if metric.labels:
                label_parts = [f'{k}="{v}"' for k, v in metric.labels.items()]
                labels = "{" + ",".join(label_parts) + "}"

            value = float(metric.value) if isinstance(metric.value, Decimal) else metric.value

            if name not in seen:
                seen.add(name)
                if metric.help_text:
                    lines.append(f"# HELP {name} {metric.help_text}")
                metric_type = "counter" if isinstance(metric, Counter) else "gauge"
                lines.append(f"# TYPE {name} {metric_type}")
            lines.append(f"{name}{labels} {value}")

        return "\n".join(lines)


class SettlementMetricsCollector:
    """Collects metrics from the tenant database."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def collect_all(self) -> SettlementMetrics:
        """Collect all metrics."""
        return SettlementMetrics(
            payments_by_status=self._count_payments_by_status(),
            payments_amount_total=self._sum_payments(Payment.amount, "settlement_payments_amount"),
            payments_refunded_total=self._sum_payments(
                Payment.refunded, "settlement_payments_refunded"
            ),
            hashes_consumed=self._count_consumed_hashes(),
            hashes_open=self._gauge_open_hashes(),
            jobs_by_status=self._count_jobs_by_status(),
            job_failures=self._count_job_failures(),
        )

    def _count_payments_by_status(self) -> list[Counter]:
        rows = dict(
            self._session.execute(
                select(Payment.status, func.count()).group_by(Payment.status)
            ).all()
        )
        return [
            Counter(
                name="settlement_payments_total",
                value=int(rows.get(status.value, 0)),
                labels={"status": status.value},
                help_text="Payments recorded by status",
            )
            for status in PaymentStatus
        ]

    def _sum_payments(self, column: Any, name: str) -> Gauge:
        total = self._session.scalar(
            select(func.coalesce(func.sum(column), 0)).where(
                Payment.status == PaymentStatus.COMPLETED.value
            )
        )
        return Gauge(
            name=name,
            value=Decimal(str(total or 0)),
            help_text="Sum over completed payments",
        )

    def _count_consumed_hashes(self) -> Counter:
        count = self._session.scalar(
            select(func.count())
            .select_from(PaymentHash)
            .where(PaymentHash.payment_id.is_not(None))
        )
        return Counter(
            name="settlement_hashes_consumed_total",
            value=int(count or 0),
            help_text="Payment hashes settled by a payment",
        )

    def _gauge_open_hashes(self) -> Gauge:
        count = self._session.scalar(
            select(func.count())
            .select_from(PaymentHash)
            .where(PaymentHash.payment_id.is_(None))
        )
        return Gauge(
            name="settlement_hashes_open",
            value=int(count or 0),
            help_text="Payment hashes not yet settled",
        )

    def _count_jobs_by_status(self) -> list[Counter]:
        rows = dict(
            self._session.execute(
                select(QueuedJob.status, func.count()).group_by(QueuedJob.status)
            ).all()
        )
        return [
            Counter(
                name="settlement_jobs_total",
                value=int(rows.get(status, 0)),
                labels={"status": status},
                help_text="Background jobs by status",
            )
            for status in ("queued", "done", "failed")
        ]

    def _count_job_failures(self) -> list[Counter]:
        rows = self._session.execute(
            select(QueuedJob.name, func.count())
            .where(QueuedJob.status == "failed")
            .group_by(QueuedJob.name)
            .order_by(QueuedJob.name)
        ).all()
        return [
            Counter(
                name=f"job.failure.{name}",
                value=int(count),
                help_text=f"Jobs '{name}' that exhausted their attempts",
            )
            for name, count in rows
        ]
