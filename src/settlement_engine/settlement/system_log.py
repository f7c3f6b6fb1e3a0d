"""Structured system log entries for gateway traffic."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from settlement_engine.models import Client, QueuedJob, SystemLog
from settlement_engine.settlement.jobs import SYSTEM_LOG, JobQueue

logger = logging.getLogger(__name__)


class SystemLogger:
    """Enqueues system log entries."""

    def __init__(self, queue: JobQueue):
        self.queue = queue

    def record_system_log(
        self,
        context: dict[str, Any],
        category: int,
        event_type: int,
        gateway_log_type: int,
        client: Client,
    ) -> QueuedJob:
        """Queue a structured log entry tagged with the gateway log type."""
        return self.queue.enqueue(
            SYSTEM_LOG,
            {
                "company_id": client.company_id,
                "client_id": client.client_id,
                "category_id": category,
                "event_id": event_type,
                "type_id": gateway_log_type,
                "log": context,
            },
        )


def write_system_log(db: Session, payload: dict[str, Any]) -> None:
    """Job handler that writes the system_log row."""
    db.add(
        SystemLog(
            company_id=UUID(payload["company_id"]),
            client_id=UUID(payload["client_id"]) if payload.get("client_id") else None,
            category_id=int(payload["category_id"]),
            event_id=int(payload["event_id"]),
            type_id=int(payload["type_id"]),
            log=payload.get("log") or {},
        )
    )
    db.flush()
    logger.debug(
        "System log %s/%s written for client %s",
        payload["category_id"],
        payload["event_id"],
        payload.get("client_id"),
    )
