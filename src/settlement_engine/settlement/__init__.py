"""Payment settlement package.

This package contains:
- Settlement workflow (charge, record payment, fees, failure funnel)
- Payment hashes and gateway token storage
- Invoice ledger bookkeeping
- Gateway driver adapters and registry
- Domain events, listeners and background jobs
"""

from settlement_engine.settlement.config import (
    FeeConfig,
    NumberingConfig,
    SettlementConfig,
)
from settlement_engine.settlement.errors import (
    GatewayError,
    GatewayHttpError,
    GatewayTimeout,
    HashAlreadySettled,
    PaymentFailed,
    PersistenceError,
    SettlementError,
    TenantNotFound,
    ValidationError,
)
from settlement_engine.settlement.ids import decode_id, decode_ids, encode_id
from settlement_engine.settlement.jobs import JobQueue, JobWorker, WorkerResult
from settlement_engine.settlement.ledger import InvoiceLedger
from settlement_engine.settlement.listeners import (
    ActivityListeners,
    InvoicePaidActivity,
    PaymentCreatedActivity,
    PdfToucher,
    TimestampPdfToucher,
    default_worker,
)
from settlement_engine.settlement.metrics import (
    SettlementMetrics,
    SettlementMetricsCollector,
)
from settlement_engine.settlement.notifications import (
    LoggingMailer,
    Mailer,
    PaymentFailureMailer,
    PaymentFailureNotifier,
)
from settlement_engine.settlement.numbering import PaymentNumbering
from settlement_engine.settlement.payment_hash import PaymentHashService
from settlement_engine.settlement.state_machine import (
    InvalidTransitionError,
    SettlementStateMachine,
    SettlementStatus,
)
from settlement_engine.settlement.system_log import SystemLogger, write_system_log
from settlement_engine.settlement.tokens import GatewayTokenStore
from settlement_engine.settlement.workflow import (
    Err,
    Ok,
    SettlementResult,
    SettlementWorkflow,
)

__all__ = [
    # Configuration
    "FeeConfig",
    "NumberingConfig",
    "SettlementConfig",
    # Errors
    "GatewayError",
    "GatewayHttpError",
    "GatewayTimeout",
    "HashAlreadySettled",
    "InvalidTransitionError",
    "PaymentFailed",
    "PersistenceError",
    "SettlementError",
    "TenantNotFound",
    "ValidationError",
    # Ids
    "decode_id",
    "decode_ids",
    "encode_id",
    # Jobs
    "JobQueue",
    "JobWorker",
    "WorkerResult",
    "default_worker",
    # Listeners
    "ActivityListeners",
    "InvoicePaidActivity",
    "PaymentCreatedActivity",
    "PdfToucher",
    "TimestampPdfToucher",
    # Notifications and logging
    "LoggingMailer",
    "Mailer",
    "PaymentFailureMailer",
    "PaymentFailureNotifier",
    "SystemLogger",
    "write_system_log",
    # Services
    "GatewayTokenStore",
    "InvoiceLedger",
    "PaymentHashService",
    "PaymentNumbering",
    # Metrics
    "SettlementMetrics",
    "SettlementMetricsCollector",
    # Workflow
    "Err",
    "Ok",
    "SettlementResult",
    "SettlementStateMachine",
    "SettlementStatus",
    "SettlementWorkflow",
]
