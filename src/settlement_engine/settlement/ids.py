"""Opaque identifiers for the API boundary.

Internal code works on raw UUIDs. Anything leaving the service carries an
opaque id: the UUID bytes plus a truncated HMAC tag, base64url encoded.
Decoding rejects ids whose tag does not match the application key.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from typing import Iterable
from uuid import UUID

from settlement_engine.config import get_settings
from settlement_engine.settlement.errors import ValidationError

_TAG_BYTES = 6


def _tag(body: bytes, key: str) -> bytes:
    return hmac.new(key.encode(), body, hashlib.sha256).digest()[:_TAG_BYTES]


def encode_id(raw_id: UUID, key: str | None = None) -> str:
    """Encode a raw id for external use."""
    key = key or get_settings().app_key
    body = raw_id.bytes
    return base64.urlsafe_b64encode(body + _tag(body, key)).rstrip(b"=").decode()


def decode_id(opaque_id: str, key: str | None = None) -> UUID:
    """Decode an opaque id, raising ValidationError if it was tampered with."""
    key = key or get_settings().app_key
    padded = opaque_id + "=" * (-len(opaque_id) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode())
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"Malformed id '{opaque_id}'") from exc

    if len(raw) != 16 + _TAG_BYTES:
        raise ValidationError(f"Malformed id '{opaque_id}'")

    body, tag = raw[:16], raw[16:]
    if not hmac.compare_digest(tag, _tag(body, key)):
        raise ValidationError(f"Unknown id '{opaque_id}'")
    return UUID(bytes=body)


def decode_ids(opaque_ids: Iterable[str], key: str | None = None) -> list[UUID]:
    """Decode a list of opaque ids."""
    return [decode_id(opaque_id, key) for opaque_id in opaque_ids]
