"""Pytest fixtures for settlement engine tests."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from settlement_engine.database import (
    DEFAULT_TENANT,
    clear_tenant,
    enable_sqlite_savepoints,
    register_tenant,
    unregister_tenant,
)
from settlement_engine.models import (
    Base,
    Client,
    ClientContact,
    Company,
    CompanyGateway,
    Invoice,
    LineItemType,
    PaymentHash,
)
from settlement_engine.settlement.events import DomainEvent, EventEmitter
from settlement_engine.settlement.jobs import JobQueue
from settlement_engine.settlement.payment_hash import PaymentHashService
from settlement_engine.settlement.providers import DriverRegistry, GatewayType, StubGateway
from settlement_engine.settlement.workflow import SettlementWorkflow

TEST_KEY = "test-app-key"


def make_engine() -> Engine:
    """In-memory SQLite engine shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Create test database engine registered as the default tenant."""
    engine = make_engine()
    register_tenant(DEFAULT_TENANT, engine=engine)

    yield engine

    unregister_tenant(DEFAULT_TENANT)
    clear_tenant()
    engine.dispose()


@pytest.fixture
def session(engine: Engine) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session = Session(engine, autoflush=False, expire_on_commit=False)
    yield session
    session.close()


@pytest.fixture
def company(session: Session) -> Company:
    """Create a test company."""
    company = Company(name="Acme Corp", currency="USD")
    session.add(company)
    session.flush()
    return company


@pytest.fixture
def client(session: Session, company: Company) -> Client:
    """Create a test client owing 100.00."""
    client = Client(
        company_id=company.company_id,
        name="Globex",
        balance=Decimal("100.00"),
        paid_to_date=Decimal("0"),
    )
    session.add(client)
    session.flush()
    return client


@pytest.fixture
def contact(session: Session, client: Client) -> ClientContact:
    """Create a test contact for the client."""
    contact = ClientContact(
        client_id=client.client_id,
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
    )
    session.add(contact)
    session.flush()
    return contact


@pytest.fixture
def company_gateway(session: Session, company: Company) -> CompanyGateway:
    """Create a stub gateway configuration."""
    company_gateway = CompanyGateway(
        company_id=company.company_id,
        gateway_key="stub",
        label="Stub Gateway",
    )
    session.add(company_gateway)
    session.flush()
    return company_gateway


@pytest.fixture
def make_invoice(session: Session, client: Client) -> Callable[..., Invoice]:
    """Factory for invoices of the test client."""

    def _make(number: str, amount: str = "100.00") -> Invoice:
        invoice = Invoice(
            company_id=client.company_id,
            client_id=client.client_id,
            number=number,
            amount=Decimal(amount),
            balance=Decimal(amount),
            paid_to_date=Decimal("0"),
            line_items=[
                {
                    "type_id": LineItemType.PRODUCT.value,
                    "product_key": "Consulting",
                    "cost": amount,
                    "quantity": 1,
                }
            ],
        )
        session.add(invoice)
        session.flush()
        return invoice

    return _make


@pytest.fixture
def invoice(make_invoice: Callable[..., Invoice]) -> Invoice:
    """INV-1 with a balance of 100.00."""
    return make_invoice("INV-1")


@pytest.fixture
def hashes(session: Session) -> PaymentHashService:
    """Payment hash service with a fixed key."""
    return PaymentHashService(session, key=TEST_KEY)


@pytest.fixture
def make_hash(
    hashes: PaymentHashService, client: Client
) -> Callable[..., PaymentHash]:
    """Factory for payment hashes of the test client."""

    def _make(
        allocations: list[tuple[Invoice, str]],
        fee: str = "0",
        gateway_data: dict[str, Any] | None = None,
    ) -> PaymentHash:
        return hashes.create(
            client=client,
            invoices=[
                {"invoice_id": inv.invoice_id, "amount": Decimal(amount)}
                for inv, amount in allocations
            ],
            fee_total=Decimal(fee),
            gateway_data=gateway_data,
        )

    return _make


@pytest.fixture
def payment_hash(make_hash: Callable[..., PaymentHash], invoice: Invoice) -> PaymentHash:
    """Hash for INV-1: 100.00 plus a 3.00 gateway fee."""
    return make_hash([(invoice, "100.00")], fee="3.00", gateway_data={"source": "portal"})


@pytest.fixture
def gateway() -> StubGateway:
    """Stub driver instance handed out by the registry."""
    return StubGateway()


@pytest.fixture
def registry(gateway: StubGateway) -> DriverRegistry:
    """Registry resolving the stub gateway."""
    registry = DriverRegistry()
    registry.register(
        "stub",
        lambda company_gateway: gateway,
        [GatewayType.CREDIT_CARD, GatewayType.BANK_TRANSFER],
    )
    return registry


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def events(emitter: EventEmitter) -> list[DomainEvent]:
    """Every event delivered by the emitter."""
    received: list[DomainEvent] = []
    emitter.on_all(received.append)
    return received


@pytest.fixture
def queue(session: Session) -> JobQueue:
    return JobQueue(session, max_attempts=3)


@pytest.fixture
def workflow(
    session: Session,
    company_gateway: CompanyGateway,
    client: Client,
    contact: ClientContact,
    registry: DriverRegistry,
    emitter: EventEmitter,
    queue: JobQueue,
    hashes: PaymentHashService,
) -> SettlementWorkflow:
    """Workflow for the test client, paying by credit card."""
    workflow = SettlementWorkflow(
        session,
        company_gateway,
        client,
        registry=registry,
        emitter=emitter,
        queue=queue,
        hashes=hashes,
        auth_contact=contact,
    )
    return workflow.set_payment_method(GatewayType.CREDIT_CARD)
