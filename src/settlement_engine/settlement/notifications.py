"""Client notifications about failed payments.

The workflow only enqueues a notice. Rendering and delivering mail is
the job of a Mailer implementation; LoggingMailer just logs.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_engine.models import Client, ClientContact, Company, QueuedJob
from settlement_engine.settlement.jobs import PAYMENT_FAILURE_MAIL, JobQueue

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    """Protocol for outbound mail delivery."""

    def send(self, to: list[str], subject: str, body: str) -> None:
        """Deliver one message."""
        ...


class LoggingMailer:
    """Mailer that records messages in the log and in memory."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    def send(self, to: list[str], subject: str, body: str) -> None:
        self.sent.append({"to": list(to), "subject": subject, "body": body})
        logger.info("Mail to %s: %s", ", ".join(to), subject)


class PaymentFailureNotifier:
    """Enqueues failure notices for clients."""

    def __init__(self, queue: JobQueue):
        self.queue = queue

    def send_payment_failure_notice(
        self,
        client: Client,
        error_text: str,
        company: Company,
        gateway_raw_data: dict[str, Any] | None,
    ) -> QueuedJob:
        """Queue a failure mail for the client's contacts."""
        return self.queue.enqueue(
            PAYMENT_FAILURE_MAIL,
            {
                "client_id": client.client_id,
                "company_id": company.company_id,
                "error": error_text,
                "gateway_data": gateway_raw_data or {},
            },
        )


class PaymentFailureMailer:
    """Job handler that mails a payment failure notice."""

    def __init__(self, mailer: Mailer):
        self.mailer = mailer

    def __call__(self, db: Session, payload: dict[str, Any]) -> None:
        client = db.get(Client, UUID(payload["client_id"]))
        if client is None:
            logger.warning("Payment failure mail for unknown client %s", payload["client_id"])
            return

        recipients = [
            email
            for email in db.scalars(
                select(ClientContact.email).where(
                    ClientContact.client_id == client.client_id,
                    ClientContact.email.is_not(None),
                )
            )
            if email
        ]
        if not recipients:
            logger.warning(
                "Client %s has no contact email; failure notice dropped", client.client_id
            )
            return

        company = db.get(Company, UUID(payload["company_id"]))
        company_name = company.name if company else ""
        subject = f"Payment failed for {company_name}".strip()
        body = (
            f"Hello {client.name},\n\n"
            f"Your payment could not be processed: {payload['error']}\n"
        )
        self.mailer.send(recipients, subject, body)
