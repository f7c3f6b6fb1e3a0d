"""Gateway token store - reusable payment methods per client.

A client has at most one default token. The first token stored for a
client becomes the default; later tokens only take the default when
asked to. Default-flag changes lock the client row so two concurrent
stores for one client cannot both end up default.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_engine.database import current_tenant
from settlement_engine.models import Client, ClientGatewayToken, CompanyGateway
from settlement_engine.settlement.errors import PersistenceError, ValidationError
from settlement_engine.settlement.events.emitter import EventEmitter
from settlement_engine.settlement.events.types import EventMetadata, GatewayTokenStored

logger = logging.getLogger(__name__)


class GatewayTokenStore:
    """Persists gateway tokens and maintains the default flag."""

    def __init__(self, db: Session, emitter: EventEmitter | None = None):
        self.db = db
        self.emitter = emitter

    def store_token(
        self,
        client: Client,
        company_gateway: CompanyGateway,
        method_type_id: int,
        token: str,
        meta: dict[str, Any] | None = None,
        make_default: bool = False,
    ) -> ClientGatewayToken:
        """Store a token for a client.

        Args:
            client: Token owner
            company_gateway: Gateway that issued the token
            method_type_id: GatewayType of the stored method
            token: Gateway token value
            meta: Display data (brand, last4, expiry)
            make_default: Move the default flag to this token

        Raises:
            ValidationError: empty token or gateway of another company
            PersistenceError: the write failed
        """
        if not token:
            raise ValidationError("Gateway token must not be empty")
        if company_gateway.company_id != client.company_id:
            raise ValidationError("Gateway does not belong to the client's company")

        try:
            with self.db.begin_nested():
                self._lock_client(client)

                existing = self.db.scalar(
                    select(func.count())
                    .select_from(ClientGatewayToken)
                    .where(ClientGatewayToken.client_id == client.client_id)
                )
                is_default = make_default or existing == 0
                if is_default:
                    self._clear_defaults(client)

                record = ClientGatewayToken(
                    company_id=client.company_id,
                    client_id=client.client_id,
                    company_gateway_id=company_gateway.company_gateway_id,
                    gateway_type_id=int(method_type_id),
                    token=token,
                    meta=dict(meta or {}),
                    is_default=is_default,
                )
                self.db.add(record)
                self.db.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to store gateway token for client %s", client.client_id)
            raise PersistenceError(f"Could not store gateway token: {exc}") from exc

        logger.info(
            "Stored gateway token %s for client %s (default=%s)",
            record.client_gateway_token_id,
            client.client_id,
            is_default,
        )

        if self.emitter is not None:
            self.emitter.emit(
                GatewayTokenStored(
                    metadata=EventMetadata.create(
                        tenant_id=current_tenant(),
                        company_id=client.company_id,
                    ),
                    client_id=client.client_id,
                    client_gateway_token_id=record.client_gateway_token_id,
                    company_gateway_id=company_gateway.company_gateway_id,
                    is_default=is_default,
                )
            )
        return record

    def default_token(self, client: Client) -> ClientGatewayToken | None:
        """The client's default token, if any."""
        return self.db.scalars(
            select(ClientGatewayToken).where(
                ClientGatewayToken.client_id == client.client_id,
                ClientGatewayToken.is_default.is_(True),
            )
        ).first()

    def set_default(self, token: ClientGatewayToken) -> ClientGatewayToken:
        """Move the default flag to an existing token."""
        if token.is_default:
            return token

        client = self.db.get(Client, token.client_id)
        if client is None:
            raise ValidationError(f"Token {token.client_gateway_token_id} has no client")

        try:
            with self.db.begin_nested():
                self._lock_client(client)
                self._clear_defaults(client)
                token.is_default = True
                self.db.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to move default token for client %s", client.client_id)
            raise PersistenceError(f"Could not update default token: {exc}") from exc
        return token

    def tokens_for(self, client: Client) -> list[ClientGatewayToken]:
        """All tokens of a client, default first."""
        return list(
            self.db.scalars(
                select(ClientGatewayToken)
                .where(ClientGatewayToken.client_id == client.client_id)
                .order_by(
                    ClientGatewayToken.is_default.desc(),
                    ClientGatewayToken.created_at,
                )
            )
        )

    def _lock_client(self, client: Client) -> None:
        # Serializes default-flag changes per client
        self.db.scalars(
            select(Client.client_id)
            .where(Client.client_id == client.client_id)
            .with_for_update()
        ).one()

    def _clear_defaults(self, client: Client) -> None:
        self.db.execute(
            update(ClientGatewayToken)
            .where(
                ClientGatewayToken.client_id == client.client_id,
                ClientGatewayToken.is_default.is_(True),
            )
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )
