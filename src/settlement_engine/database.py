"""Database connection, session management and tenant selection.

Each tenant owns an isolated database. The current tenant is held in
thread-local storage; sessions opened through get_session() bind to the
engine of whichever tenant is selected. Work triggered asynchronously
(queued jobs, event listeners) must call select_tenant() with the tenant
that produced it before touching any data.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from settlement_engine.config import get_settings

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


DEFAULT_TENANT = "default"

# Thread-local storage for tenant context
_thread_locals = threading.local()

_registry_lock = threading.Lock()
_tenant_urls: dict[str, str] = {}
_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker[Session]] = {}


class TenantNotFound(Exception):
    """Raised when selecting a tenant that was never registered."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant '{tenant_id}' is not registered")


def enable_sqlite_savepoints(engine: Engine) -> None:
    """Let pysqlite honour SAVEPOINT by emitting BEGIN ourselves."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        engine = create_engine(url, echo=False)
        enable_sqlite_savepoints(engine)
        return engine
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def register_tenant(
    tenant_id: str,
    database_url: str | None = None,
    *,
    engine: Engine | None = None,
) -> None:
    """Register a tenant database by URL or with a ready-made engine."""
    if database_url is None and engine is None:
        raise ValueError("database_url or engine is required")

    with _registry_lock:
        if engine is not None:
            _engines[tenant_id] = engine
            _session_factories.pop(tenant_id, None)
        else:
            _tenant_urls[tenant_id] = database_url  # type: ignore[assignment]
            _engines.pop(tenant_id, None)
            _session_factories.pop(tenant_id, None)


def unregister_tenant(tenant_id: str) -> None:
    """Forget a tenant; its engine is disposed if we created it."""
    with _registry_lock:
        engine = _engines.pop(tenant_id, None)
        url = _tenant_urls.pop(tenant_id, None)
        _session_factories.pop(tenant_id, None)
    if engine is not None and url is not None:
        engine.dispose()


def is_registered(tenant_id: str) -> bool:
    """Check whether a tenant can be selected."""
    return (
        tenant_id == DEFAULT_TENANT
        or tenant_id in _engines
        or tenant_id in _tenant_urls
    )


def select_tenant(tenant_id: str) -> None:
    """Switch all subsequent data access on this thread to a tenant."""
    if not is_registered(tenant_id):
        raise TenantNotFound(tenant_id)
    _thread_locals.tenant_id = tenant_id


def current_tenant() -> str:
    """Get the tenant selected on this thread."""
    return getattr(_thread_locals, "tenant_id", DEFAULT_TENANT)


def clear_tenant() -> None:
    """Reset the thread back to the default tenant."""
    _thread_locals.tenant_id = DEFAULT_TENANT


@contextmanager
def tenant_scope(tenant_id: str) -> Generator[None, None, None]:
    """Select a tenant for the duration of a block."""
    previous = current_tenant()
    select_tenant(tenant_id)
    try:
        yield
    finally:
        _thread_locals.tenant_id = previous


def get_engine(tenant_id: str | None = None) -> Engine:
    """Get (creating on first use) the engine of a tenant."""
    tenant_id = tenant_id or current_tenant()
    with _registry_lock:
        engine = _engines.get(tenant_id)
        if engine is not None:
            return engine

        if tenant_id == DEFAULT_TENANT:
            url = _tenant_urls.get(tenant_id, get_settings().database_url)
        elif tenant_id in _tenant_urls:
            url = _tenant_urls[tenant_id]
        else:
            raise TenantNotFound(tenant_id)

        engine = _build_engine(url)
        _engines[tenant_id] = engine
        return engine


def session_factory(tenant_id: str | None = None) -> sessionmaker[Session]:
    """Get the session factory bound to a tenant's engine."""
    tenant_id = tenant_id or current_tenant()
    factory = _session_factories.get(tenant_id)
    if factory is None:
        factory = sessionmaker(
            get_engine(tenant_id),
            class_=Session,
            expire_on_commit=False,
            autoflush=False,
        )
        _session_factories[tenant_id] = factory
    return factory


def init_db(tenant_id: str | None = None) -> Engine:
    """Create all tables in a tenant database."""
    from settlement_engine.models import Base

    engine = get_engine(tenant_id)
    Base.metadata.create_all(engine)
    return engine


@contextmanager
def get_session(tenant_id: str | None = None) -> Generator[Session, None, None]:
    """Get a database session for the selected tenant."""
    factory = session_factory(tenant_id)
    with factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
