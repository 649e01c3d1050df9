"""Signed URL primitives for delivered media.

Contract:
- Token covers: file, resource id, issue timestamp, validity window,
  adjusted format and client id
- Signature scheme: HMAC-SHA256(client_secret, canonical string) -> hex
- Canonical string: every field newline-terminated, in exactly that order.
  Changing the order invalidates every URL issued before.
- A URL is expired once ``issued_at + valid_for`` lies in the past
"""
from __future__ import annotations

import hmac
import time
from collections.abc import Callable
from dataclasses import dataclass
from hashlib import sha256

from media_delivery.delivery_config import DeliveryConfig
from media_delivery.exceptions import UnknownClient


@dataclass(frozen=True)
class SigningContext:
    file: str
    resource_id: str | int
    issued_at: int
    valid_for: int
    adjusted_format: str
    client_id: str
    client_secret: bytes


def canonical_string(ctx: SigningContext) -> str:
    fields = (
        ctx.file,
        ctx.resource_id,
        ctx.issued_at,
        ctx.valid_for,
        ctx.adjusted_format,
        ctx.client_id,
    )
    return "".join(f"{value}\n" for value in fields)


def _secret_bytes(secret: bytes | str) -> bytes:
    if isinstance(secret, str):
        return secret.encode("utf-8")
    return bytes(secret)


def sign(ctx: SigningContext) -> str:
    msg = canonical_string(ctx).encode("utf-8")
    return hmac.new(_secret_bytes(ctx.client_secret), msg, sha256).hexdigest()


def verify(ctx: SigningContext, candidate: str | None) -> bool:
    """Recompute the signature for ``ctx`` and compare in constant time."""
    expected = sign(ctx)
    return hmac.compare_digest(str(candidate or "").encode("utf-8"), expected.encode("utf-8"))


def is_expired(issued_at: int, valid_for: int, now: float) -> bool:
    return (int(issued_at) + int(valid_for)) < now


def time_and_duration(
    duration: int, clock: Callable[[], float] = time.time
) -> tuple[int, int]:
    """Return the ``(issued_at, valid_for)`` pair for a URL issued now."""
    return int(clock()), int(duration)


class SignatureCodec:
    """Signs and verifies against the configured client credentials."""

    def __init__(self, config: DeliveryConfig):
        self.config = config

    def client_secret(self, client_id: str | None) -> bytes:
        client = self.config.clients.get(client_id) if client_id is not None else None
        if client is None:
            raise UnknownClient(client_id)
        return client.secret

    def has_client(self, client_id: str | None) -> bool:
        return client_id is not None and client_id in self.config.clients

    def sign(self, ctx: SigningContext) -> str:
        return sign(ctx)

    def verify(self, ctx: SigningContext, candidate: str | None) -> bool:
        return verify(ctx, candidate)

    def is_expired(self, issued_at: int, valid_for: int, now: float) -> bool:
        return is_expired(issued_at, valid_for, now)
