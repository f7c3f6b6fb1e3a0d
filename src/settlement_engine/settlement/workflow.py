"""Settlement workflow - turns a gateway charge into a recorded payment.

Flow for one attempt (settle()):
1. Validate the payment hash (owner, signature, not yet consumed)
2. Add the speculative gateway fee line to the fee invoice
3. Charge through the gateway driver
4. On decline, timeout or driver error: unwind fees, log, notify
5. On success: confirm the fee and create the payment atomically

create_payment() is the transactional core. Its steps run in this
order inside one savepoint, and the events it emits are only delivered
if the savepoint commits:
1. Resolve the paying contact
2. Build the Payment row
3. Persist it and claim the hash (at most one payment per hash)
4. Sync invoice attachments, InvoiceWasPaid per newly linked invoice
5. Apply the payment to invoice and client balances
6. Emit PaymentWasCreated
7. Re-apply numbering
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, NoReturn, Union
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_engine.database import current_tenant
from settlement_engine.models import (
    Client,
    ClientContact,
    ClientGatewayToken,
    CompanyGateway,
    Invitation,
    Invoice,
    Payment,
    PaymentHash,
    Paymentable,
    PaymentStatus,
    SystemLog,
)
from settlement_engine.settlement.config import SettlementConfig
from settlement_engine.settlement.errors import (
    GatewayError,
    GatewayHttpError,
    HashAlreadySettled,
    PaymentFailed,
    PersistenceError,
    SettlementError,
    ValidationError,
)
from settlement_engine.settlement.events.emitter import EventEmitter
from settlement_engine.settlement.events.types import (
    EventMetadata,
    GatewayFeeConfirmed,
    GatewayFeesUnwound,
    InvoiceWasPaid,
    PaymentAttemptFailed,
    PaymentWasCreated,
)
from settlement_engine.settlement.jobs import JobQueue
from settlement_engine.settlement.ledger import InvoiceLedger
from settlement_engine.settlement.notifications import PaymentFailureNotifier
from settlement_engine.settlement.numbering import PaymentNumbering
from settlement_engine.settlement.payment_hash import PaymentHashService
from settlement_engine.settlement.providers.base import (
    AuthorizationResult,
    ChargeContext,
    GatewayDriver,
    PurchaseResult,
    RefundResult,
)
from settlement_engine.settlement.providers.registry import DriverRegistry
from settlement_engine.settlement.schemas import GatewayTokenData, PaymentData, parse
from settlement_engine.settlement.state_machine import (
    SettlementStateMachine,
    SettlementStatus,
)
from settlement_engine.settlement.system_log import SystemLogger
from settlement_engine.settlement.tokens import GatewayTokenStore

logger = logging.getLogger(__name__)

FEE_ADJUSTMENT_NOTE = "Gateway fee adjustment"


@dataclass(frozen=True)
class Ok:
    """Successful settlement."""

    payment: Payment
    status: SettlementStatus = SettlementStatus.RECONCILED

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed settlement; error says why."""

    error: SettlementError
    status: SettlementStatus = SettlementStatus.FAILED

    @property
    def ok(self) -> bool:
        return False


SettlementResult = Union[Ok, Err]


class SettlementWorkflow:
    """Settles payments for one client through one company gateway.

    Collaborators are passed in explicitly. The driver is resolved from
    the registry once a payment method is chosen.

    Usage:
        workflow = SettlementWorkflow(
            db, company_gateway, client,
            registry=registry, emitter=emitter, queue=JobQueue(db),
        )
        workflow.set_payment_method(GatewayType.CREDIT_CARD)
        result = workflow.settle(payment_hash)
        if result.ok:
            print(result.payment.number)
    """

    def __init__(
        self,
        db: Session,
        company_gateway: CompanyGateway,
        client: Client,
        *,
        registry: DriverRegistry,
        emitter: EventEmitter,
        queue: JobQueue,
        ledger: InvoiceLedger | None = None,
        config: SettlementConfig | None = None,
        invitation: Invitation | None = None,
        auth_contact: ClientContact | None = None,
        hashes: PaymentHashService | None = None,
    ):
        self.db = db
        self.company_gateway = company_gateway
        self.client = client
        self.registry = registry
        self.emitter = emitter
        self.queue = queue
        self.config = config or SettlementConfig()
        self.ledger = ledger or InvoiceLedger(db, self.config.fees)
        self.invitation = invitation
        self.auth_contact = auth_contact
        self.hashes = hashes or PaymentHashService(db)

        self.tokens = GatewayTokenStore(db, emitter)
        self.numbering = PaymentNumbering(db, self.config.numbering)
        self.notifier = PaymentFailureNotifier(queue)
        self.system_logger = SystemLogger(queue)

        self.driver: GatewayDriver | None = None
        self.payment_method: int | None = None
        self.payment_hash: PaymentHash | None = None
        self.state = SettlementStateMachine()
        self.correlation_id = uuid4()

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def set_payment_method(self, method_type_id: int) -> SettlementWorkflow:
        """Choose the payment method and resolve its driver."""
        self.driver = self.registry.resolve(self.company_gateway, method_type_id)
        self.payment_method = int(method_type_id)
        return self

    def set_payment_hash(self, payment_hash: PaymentHash) -> SettlementWorkflow:
        self.payment_hash = payment_hash
        return self

    def get_contact(self) -> ClientContact | None:
        """Contact paying: invitation contact, else portal user, else none."""
        if self.invitation is not None and self.invitation.client_contact_id:
            return self.invitation.contact
        if self.auth_contact is not None:
            return self.auth_contact
        return None

    def _require_driver(self) -> GatewayDriver:
        if self.driver is None:
            raise ValidationError("No payment method selected")
        return self.driver

    def _require_hash(self, payment_hash: PaymentHash | None = None) -> PaymentHash:
        if payment_hash is not None:
            self.payment_hash = payment_hash
        if self.payment_hash is None:
            raise ValidationError("No payment hash set")
        return self.payment_hash

    def _metadata(self) -> EventMetadata:
        return EventMetadata.create(
            tenant_id=current_tenant(),
            company_id=self.client.company_id,
            correlation_id=self.correlation_id,
        )

    # -------------------------------------------------------------------------
    # Gateway operations
    # -------------------------------------------------------------------------

    def authorize(self, data: dict[str, Any]) -> AuthorizationResult:
        """Authorize the selected payment method with the gateway."""
        driver = self._require_driver()
        return driver.authorize(self.payment_method, data)  # type: ignore[arg-type]

    def purchase(self, amount: Decimal, attended: bool = True) -> PurchaseResult:
        """Charge an amount for the current payment hash.

        Raises GatewayError (or a subclass) when the gateway fails to
        answer; a declined charge is returned with success=False.
        """
        return self._charge(amount, attended, token=None)

    def _charge(
        self,
        amount: Decimal,
        attended: bool,
        token: ClientGatewayToken | None,
    ) -> PurchaseResult:
        driver = self._require_driver()
        payment_hash = self._require_hash()
        context = ChargeContext(
            client_id=self.client.client_id,
            payment_hash=payment_hash.hash,
            currency=self.client.get_currency(),
            token=token.token if token is not None else None,
            metadata=payment_hash.gateway_data,
        )
        logger.info(
            "Charging %s %s for hash %s via %s (attended=%s)",
            amount,
            context.currency,
            payment_hash.hash,
            driver.gateway_key,
            attended,
        )
        return driver.purchase(amount, attended, context=context)

    def refund(
        self,
        payment: Payment,
        amount: Decimal | None = None,
        attended: bool = False,
    ) -> RefundResult:
        """Refund part or all of a payment through its gateway."""
        driver = self._require_driver()
        if not driver.capabilities().refundable:
            raise ValidationError(f"Gateway '{driver.gateway_key}' does not support refunds")
        if not payment.transaction_reference:
            raise ValidationError("Payment has no gateway transaction reference")

        amount = payment.refundable if amount is None else Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Refund amount must be positive")
        if amount > payment.refundable:
            raise ValidationError(
                f"Refund of {amount} exceeds refundable amount {payment.refundable}"
            )

        result = driver.refund(payment.transaction_reference, amount, attended)
        if not result.success:
            logger.warning(
                "Refund of %s on payment %s rejected: %s",
                amount,
                payment.payment_id,
                result.message,
            )
            return result

        payment.refunded = payment.refunded + amount
        self.db.flush()
        logger.info("Refunded %s on payment %s", amount, payment.payment_id)
        return result

    def token_billing(
        self,
        token: ClientGatewayToken | None,
        payment_hash: PaymentHash,
    ) -> SettlementResult:
        """Charge a stored token without the client present."""
        driver = self._require_driver()
        if not driver.capabilities().token_billing:
            return Err(ValidationError(f"Gateway '{driver.gateway_key}' cannot bill tokens"))

        token = token or self.tokens.default_token(self.client)
        if token is None:
            return Err(ValidationError("Client has no stored payment method"))
        if token.client_id != self.client.client_id:
            return Err(ValidationError("Token belongs to another client"))

        return self.settle(payment_hash, attended=False, token=token)

    def store_gateway_token(
        self, data: GatewayTokenData | dict[str, Any]
    ) -> ClientGatewayToken:
        """Store a token returned by the gateway for this client."""
        data = parse(GatewayTokenData, data)
        return self.tokens.store_token(
            self.client,
            self.company_gateway,
            data.payment_method_id,
            data.token,
            data.payment_meta,
            make_default=data.make_default,
        )

    # -------------------------------------------------------------------------
    # Hash and fee handling
    # -------------------------------------------------------------------------

    def validate_hash(self, payment_hash: PaymentHash) -> None:
        """Reject hashes that cannot be settled by this workflow."""
        if payment_hash.client_id != self.client.client_id:
            raise ValidationError("Payment hash belongs to another client")
        if self.config.verify_signatures and not self.hashes.verify(payment_hash):
            raise ValidationError("Payment hash signature mismatch")
        if payment_hash.is_consumed:
            raise HashAlreadySettled(payment_hash.hash)
        if payment_hash.fee_total < 0:
            raise ValidationError("Payment hash fee total is negative")
        for entry in payment_hash.invoices():
            if Decimal(str(entry["amount"])) < 0:
                raise ValidationError("Payment hash carries a negative invoice amount")
        self._check_balances(payment_hash)

    def _check_balances(self, payment_hash: PaymentHash) -> None:
        """Reject hashes asking for more than an invoice still owes.

        Runs before the charge. A pending fee line is excluded from the
        balance because the fee delta is collected on top of it.
        """
        invoices = {invoice.invoice_id: invoice for invoice in self._hash_invoices(payment_hash)}
        for invoice_id in payment_hash.invoice_ids():
            invoice = invoices.get(invoice_id)
            if invoice is None:
                raise ValidationError(f"Unknown invoice {invoice_id} in payment hash")
            requested = payment_hash.invoice_amount(invoice_id)
            available = invoice.balance - self.ledger.unpaid_fee_total(invoice)
            if requested > available:
                raise ValidationError(
                    f"Payment of {requested} exceeds balance {available} "
                    f"of invoice {invoice.number}"
                )

    def charge_amount(self, payment_hash: PaymentHash) -> Decimal:
        """Amount to collect for a hash."""
        if self.config.fees.include_fee_in_amount:
            return payment_hash.invoice_total + payment_hash.fee_total
        return payment_hash.invoice_total

    def _fee_invoice(self, payment_hash: PaymentHash) -> Invoice | None:
        invoice_id = payment_hash.fee_invoice_id
        if invoice_id is None:
            ids = payment_hash.invoice_ids()
            invoice_id = ids[0] if ids else None
        return self.db.get(Invoice, invoice_id) if invoice_id else None

    def _hash_invoices(self, payment_hash: PaymentHash) -> list[Invoice]:
        ids = payment_hash.invoice_ids()
        if not ids:
            return []
        found = {
            invoice.invoice_id: invoice
            for invoice in self.db.scalars(
                select(Invoice).where(
                    Invoice.invoice_id.in_(ids),
                    Invoice.client_id == self.client.client_id,
                )
            )
        }
        return [found[i] for i in ids if i in found]

    def apply_gateway_fee(self, payment_hash: PaymentHash | None = None) -> Decimal:
        """Add the hash's fee as a speculative line on the fee invoice."""
        payment_hash = self._require_hash(payment_hash)
        fee = payment_hash.fee_total or Decimal("0")
        if fee <= 0:
            return Decimal("0")

        invoice = self._fee_invoice(payment_hash)
        if invoice is None:
            raise ValidationError("Payment hash has a fee but no invoice to carry it")

        if not self.ledger.add_gateway_fee(invoice, fee):
            return Decimal("0")
        self.db.flush()
        logger.info("Added speculative fee %s to invoice %s", fee, invoice.number)
        return fee

    def confirm_gateway_fee(self, payment_hash: PaymentHash | None = None) -> Decimal:
        """Mark speculative fees paid and charge them to the client balance.

        Safe to repeat: once the fee line is toggled there is nothing left
        to confirm and no balance moves.
        """
        payment_hash = self._require_hash(payment_hash)
        if not payment_hash.fee_total or payment_hash.fee_total <= 0:
            return Decimal("0")

        confirmed = Decimal("0")
        for invoice in self._hash_invoices(payment_hash):
            toggled = self.ledger.toggle_fees_paid(invoice)
            if not toggled:
                continue

            self.ledger.update_balance(
                invoice.client,
                toggled,
                invoice=invoice,
                notes=FEE_ADJUSTMENT_NOTE,
            )
            confirmed += toggled
            self.emitter.emit(
                GatewayFeeConfirmed(
                    metadata=self._metadata(),
                    invoice_id=invoice.invoice_id,
                    client_id=invoice.client_id,
                    fee_amount=toggled,
                )
            )

        if confirmed:
            self.db.flush()
            logger.info("Confirmed gateway fee %s for hash %s", confirmed, payment_hash.hash)
        return confirmed

    def unwind_gateway_fees(self, payment_hash: PaymentHash | None = None) -> Decimal:
        """Strip unpaid speculative fee lines from every hash invoice."""
        payment_hash = self._require_hash(payment_hash)
        invoices = self._hash_invoices(payment_hash)

        removed = Decimal("0")
        for invoice in invoices:
            removed += self.ledger.remove_unpaid_gateway_fees(invoice)

        if removed:
            self.db.flush()
            self.emitter.emit(
                GatewayFeesUnwound(
                    metadata=self._metadata(),
                    payment_hash=payment_hash.hash,
                    invoice_ids=tuple(invoice.invoice_id for invoice in invoices),
                    fee_removed=removed,
                )
            )
        return removed

    # -------------------------------------------------------------------------
    # Payment creation
    # -------------------------------------------------------------------------

    def attach_invoices(
        self,
        payment: Payment,
        allocations: Mapping[UUID, Decimal],
    ) -> list[Invoice]:
        """Make the payment's invoice set exactly `allocations`.

        Links not in the new set are removed, new links are added and
        existing ones get the new amount. InvoiceWasPaid is emitted for
        newly linked invoices only. Returns the newly linked invoices.
        """
        invoices: dict[UUID, Invoice] = {}
        if allocations:
            invoices = {
                invoice.invoice_id: invoice
                for invoice in self.db.scalars(
                    select(Invoice).where(
                        Invoice.invoice_id.in_(list(allocations)),
                        Invoice.client_id == payment.client_id,
                    )
                )
            }
            missing = [str(i) for i in allocations if i not in invoices]
            if missing:
                raise ValidationError(f"Unknown invoices for payment: {', '.join(missing)}")

        current = {link.invoice_id: link for link in payment.paymentables}

        for invoice_id, link in current.items():
            if invoice_id not in allocations:
                payment.paymentables.remove(link)

        added: list[Invoice] = []
        for invoice_id, amount in allocations.items():
            link = current.get(invoice_id)
            if link is not None:
                link.amount = amount
                continue
            payment.paymentables.append(Paymentable(invoice_id=invoice_id, amount=amount))
            added.append(invoices[invoice_id])

        self.db.flush()

        for invoice in added:
            self.emitter.emit(
                InvoiceWasPaid(
                    metadata=self._metadata(),
                    invoice_id=invoice.invoice_id,
                    payment_id=payment.payment_id,
                    client_id=invoice.client_id,
                    amount=allocations[invoice.invoice_id],
                )
            )

        self.numbering.apply_number(payment)
        return added

    def _allocations(self, payment_hash: PaymentHash, amount: Decimal) -> dict[UUID, Decimal]:
        ids = payment_hash.invoice_ids()
        if not ids:
            return {}

        invoice_total = payment_hash.invoice_total
        fee_total = payment_hash.fee_total or Decimal("0")
        if amount not in (invoice_total, invoice_total + fee_total):
            raise ValidationError(
                f"Payment amount {amount} does not match invoice total {invoice_total}"
                f" (fee {fee_total})"
            )

        allocations = {invoice_id: payment_hash.invoice_amount(invoice_id) for invoice_id in ids}
        fee_delta = amount - invoice_total
        if fee_delta:
            fee_invoice_id = payment_hash.fee_invoice_id or ids[0]
            allocations[fee_invoice_id] = allocations.get(fee_invoice_id, Decimal("0")) + fee_delta
        return allocations

    def create_payment(
        self,
        data: PaymentData | dict[str, Any],
        status: PaymentStatus | str = PaymentStatus.COMPLETED,
    ) -> Payment:
        """Record the payment for the current hash.

        All writes happen in one savepoint; on any error nothing is kept
        and no events are delivered.

        Raises:
            HashAlreadySettled: the hash is consumed (possibly concurrently)
            ValidationError: amount or invoice set do not match the hash
            PersistenceError: a storage write failed
        """
        payment_hash = self._require_hash()
        data = parse(PaymentData, data)
        if payment_hash.is_consumed:
            raise HashAlreadySettled(payment_hash.hash)

        allocations = self._allocations(payment_hash, data.amount)

        try:
            with self.db.begin_nested(), self.emitter.batch():
                contact = self.get_contact()

                payment = Payment(
                    company_id=self.client.company_id,
                    client_id=self.client.client_id,
                    company_gateway_id=self.company_gateway.company_gateway_id,
                    client_contact_id=contact.client_contact_id if contact else None,
                    status=PaymentStatus(status).value,
                    amount=data.amount,
                    applied=Decimal("0"),
                    refunded=Decimal("0"),
                    currency=self.client.get_currency(),
                    type_id=data.payment_type,
                    transaction_reference=data.payment_method,
                    date=datetime.now(timezone.utc),
                )
                self.db.add(payment)
                self.db.flush()

                self.hashes.claim(payment_hash, payment.payment_id)

                self.attach_invoices(payment, allocations)

                for link in list(payment.paymentables):
                    invoice = self.db.get(Invoice, link.invoice_id)
                    self.ledger.apply_payment(invoice, payment, link.amount)
                self.db.flush()

                self.emitter.emit(
                    PaymentWasCreated(
                        metadata=self._metadata(),
                        payment_id=payment.payment_id,
                        client_id=payment.client_id,
                        company_gateway_id=payment.company_gateway_id,
                        amount=payment.amount,
                        currency=payment.currency,
                        payment_hash=payment_hash.hash,
                        invoice_ids=tuple(allocations),
                    )
                )

                self.numbering.apply_number(payment)
                self.db.flush()
        except SQLAlchemyError as exc:
            self.db.expire(payment_hash, ["payment_id"])
            logger.exception("Failed to persist payment for hash %s", payment_hash.hash)
            raise PersistenceError(f"Could not record payment: {exc}") from exc
        except SettlementError:
            # Reload the claim; the savepoint may have undone it
            self.db.expire(payment_hash, ["payment_id"])
            raise

        logger.info(
            "Created payment %s (%s) of %s %s for hash %s",
            payment.payment_id,
            payment.number,
            payment.amount,
            payment.currency,
            payment_hash.hash,
        )
        return payment

    # -------------------------------------------------------------------------
    # Failure funnel
    # -------------------------------------------------------------------------

    def process_internally_failed_payment(self, error: Exception) -> NoReturn:
        """Log, notify and raise PaymentFailed for a gateway failure.

        The mail and system log jobs are committed before the error is
        raised, so they survive the caller rolling back.
        """
        driver = self._require_driver()

        if isinstance(error, GatewayHttpError):
            body = error.body
            if isinstance(body, dict):
                message = str(body.get("message") or json.dumps(body, default=str))
            else:
                message = str(body or error.message)
            code = error.code
            event_type = SystemLog.EVENT_GATEWAY_FAILURE
        elif isinstance(error, SettlementError):
            message = error.message
            code = error.code
            event_type = SystemLog.EVENT_GATEWAY_FAILURE
        else:
            message = str(error) or type(error).__name__
            code = PaymentFailed.code
            event_type = SystemLog.EVENT_GATEWAY_ERROR

        gateway_data = self.payment_hash.gateway_data if self.payment_hash else {}

        logger.warning(
            "Payment failed for client %s via %s: %s",
            self.client.client_id,
            driver.gateway_key,
            message,
        )

        self.notifier.send_payment_failure_notice(
            self.client,
            message,
            self.client.company,
            gateway_data,
        )
        self.system_logger.record_system_log(
            {
                "server_response": message,
                "code": code,
                "payment_hash": self.payment_hash.hash if self.payment_hash else None,
                "data": gateway_data,
            },
            SystemLog.CATEGORY_GATEWAY_RESPONSE,
            event_type,
            driver.system_log_type,
            self.client,
        )
        self.emitter.emit(
            PaymentAttemptFailed(
                metadata=self._metadata(),
                client_id=self.client.client_id,
                payment_hash=self.payment_hash.hash if self.payment_hash else "",
                gateway_key=driver.gateway_key,
                error_message=message,
                error_code=code,
            )
        )

        self.db.commit()
        self.state.fail()
        raise PaymentFailed(message, code)

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def settle(
        self,
        payment_hash: PaymentHash,
        *,
        attended: bool = True,
        token: ClientGatewayToken | None = None,
    ) -> SettlementResult:
        """Run one complete settlement attempt for a hash."""
        self.state = SettlementStateMachine()
        self.set_payment_hash(payment_hash)

        try:
            self._require_driver()
            self.validate_hash(payment_hash)
            self.apply_gateway_fee(payment_hash)
        except SettlementError as exc:
            logger.warning("Payment hash %s rejected: %s", payment_hash.hash, exc.message)
            self.state.fail()
            return Err(exc)
        self.state.transition(SettlementStatus.AUTHORIZED)

        try:
            result = self._charge(self.charge_amount(payment_hash), attended, token)
            if not result.success:
                raise GatewayError(result.message or "Payment declined", result.code)
        except Exception as exc:
            self.unwind_gateway_fees(payment_hash)
            try:
                self.process_internally_failed_payment(exc)
            except PaymentFailed as failed:
                return Err(failed)
        self.state.transition(SettlementStatus.CAPTURED)

        try:
            with self.db.begin_nested(), self.emitter.batch():
                self.confirm_gateway_fee(payment_hash)
                payment = self.create_payment(
                    PaymentData(
                        amount=result.amount,
                        payment_type=result.payment_type,
                        payment_method=result.transaction_reference,
                    )
                )
        except SQLAlchemyError as exc:
            return self._unrecorded(
                result, payment_hash, PersistenceError(f"Could not confirm gateway fee: {exc}")
            )
        except SettlementError as exc:
            return self._unrecorded(result, payment_hash, exc)

        self.state.transition(SettlementStatus.RECONCILED)
        return Ok(payment)

    def _unrecorded(
        self,
        result: PurchaseResult,
        payment_hash: PaymentHash,
        error: SettlementError,
    ) -> Err:
        """Leave a reconciliation record for a charge with no payment.

        The speculative fee is stripped so the invoice matches its state
        before the attempt, and a system log entry carries the gateway
        reference. The client is not notified; the charge went through.
        """
        logger.error(
            "Charge %s captured but payment not recorded for hash %s: %s",
            result.transaction_reference,
            payment_hash.hash,
            error.message,
        )
        driver = self._require_driver()
        try:
            self.unwind_gateway_fees(payment_hash)
            self.system_logger.record_system_log(
                {
                    "server_response": error.message,
                    "code": error.code,
                    "payment_hash": payment_hash.hash,
                    "transaction_reference": result.transaction_reference,
                    "amount": str(result.amount),
                    "data": payment_hash.gateway_data,
                },
                SystemLog.CATEGORY_GATEWAY_RESPONSE,
                SystemLog.EVENT_GATEWAY_FAILURE,
                driver.system_log_type,
                self.client,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Could not record unreconciled charge %s", result.transaction_reference
            )
        self.state.fail()
        return Err(error)
