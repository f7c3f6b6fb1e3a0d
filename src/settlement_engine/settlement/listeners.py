"""Event listeners and the activity jobs they enqueue.

Listeners run synchronously inside the emitting transaction and only
enqueue work. The job handlers run later on a worker, possibly on
another thread, so they select the tenant recorded on the payload
before reading anything.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from settlement_engine.database import select_tenant
from settlement_engine.models import Activity, Invoice, Payment
from settlement_engine.settlement.events.emitter import EventEmitter
from settlement_engine.settlement.events.types import InvoiceWasPaid, PaymentWasCreated
from settlement_engine.settlement.jobs import (
    INVOICE_PAID_ACTIVITY,
    PAYMENT_CREATED_ACTIVITY,
    PAYMENT_FAILURE_MAIL,
    SYSTEM_LOG,
    JobQueue,
    JobWorker,
)
from settlement_engine.settlement.notifications import Mailer, PaymentFailureMailer
from settlement_engine.settlement.system_log import write_system_log

logger = logging.getLogger(__name__)


class PdfToucher(Protocol):
    """Hook that refreshes the rendered document of an invoice."""

    def touch(self, invoice: Invoice) -> None:
        """Mark the invoice PDF for regeneration."""
        ...


class TimestampPdfToucher:
    """Marks invoice PDFs stale by stamping pdf_touched_at."""

    def touch(self, invoice: Invoice) -> None:
        invoice.pdf_touched_at = datetime.now(timezone.utc)


class ActivityListeners:
    """Subscribes to settlement events and enqueues activity jobs."""

    def __init__(self, queue: JobQueue):
        self.queue = queue

    def register(self, emitter: EventEmitter) -> None:
        """Attach the listeners to an emitter."""
        emitter.on(InvoiceWasPaid, self.on_invoice_paid)
        emitter.on(PaymentWasCreated, self.on_payment_created)

    def on_invoice_paid(self, event: InvoiceWasPaid) -> None:
        self.queue.enqueue(
            INVOICE_PAID_ACTIVITY,
            {
                "tenant_id": event.metadata.tenant_id,
                "company_id": event.metadata.company_id,
                "invoice_id": event.invoice_id,
                "payment_id": event.payment_id,
                "client_id": event.client_id,
                "amount": event.amount,
            },
            tenant_id=event.metadata.tenant_id,
        )

    def on_payment_created(self, event: PaymentWasCreated) -> None:
        self.queue.enqueue(
            PAYMENT_CREATED_ACTIVITY,
            {
                "tenant_id": event.metadata.tenant_id,
                "company_id": event.metadata.company_id,
                "payment_id": event.payment_id,
                "client_id": event.client_id,
                "amount": event.amount,
                "invoice_ids": list(event.invoice_ids),
            },
            tenant_id=event.metadata.tenant_id,
        )


class InvoicePaidActivity:
    """Job handler: activity row for a paid invoice, then touch its PDF.

    A PDF failure is cosmetic; it is logged and the job still succeeds.
    """

    def __init__(self, pdf: PdfToucher | None = None):
        self.pdf = pdf or TimestampPdfToucher()

    def __call__(self, db: Session, payload: dict[str, Any]) -> None:
        select_tenant(payload["tenant_id"])

        invoice = db.get(Invoice, UUID(payload["invoice_id"]))
        if invoice is None:
            logger.warning("Paid invoice %s no longer exists", payload["invoice_id"])
            return

        db.add(
            Activity(
                company_id=invoice.company_id,
                client_id=invoice.client_id,
                invoice_id=invoice.invoice_id,
                payment_id=UUID(payload["payment_id"]),
                activity_type_id=Activity.PAID_INVOICE,
                notes=f"Invoice {invoice.number} paid {payload['amount']}",
            )
        )
        db.flush()

        try:
            with db.begin_nested():
                self.pdf.touch(invoice)
                db.flush()
        except Exception:
            logger.exception("Failed to touch PDF of invoice %s", invoice.invoice_id)


class PaymentCreatedActivity:
    """Job handler: activity row for a created payment."""

    def __call__(self, db: Session, payload: dict[str, Any]) -> None:
        select_tenant(payload["tenant_id"])

        payment = db.get(Payment, UUID(payload["payment_id"]))
        if payment is None:
            logger.warning("Created payment %s no longer exists", payload["payment_id"])
            return

        db.add(
            Activity(
                company_id=payment.company_id,
                client_id=payment.client_id,
                payment_id=payment.payment_id,
                activity_type_id=Activity.CREATE_PAYMENT,
                notes=f"Payment {payment.number or payment.payment_id} created",
            )
        )
        db.flush()


def default_worker(mailer: Mailer, pdf: PdfToucher | None = None) -> JobWorker:
    """Worker with handlers for every settlement job."""
    worker = JobWorker()
    worker.register(PAYMENT_FAILURE_MAIL, PaymentFailureMailer(mailer))
    worker.register(SYSTEM_LOG, write_system_log)
    worker.register(INVOICE_PAID_ACTIVITY, InvoicePaidActivity(pdf))
    worker.register(PAYMENT_CREATED_ACTIVITY, PaymentCreatedActivity())
    return worker
