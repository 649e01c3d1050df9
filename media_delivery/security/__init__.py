"""Security helpers package (signed URLs).

Exposes helpers to sign and verify time-limited media URLs.
"""

from .signed_media import (
    SignatureCodec,
    SigningContext,
    canonical_string,
    is_expired,
    sign,
    verify,
)

__all__ = [
    "SignatureCodec",
    "SigningContext",
    "canonical_string",
    "is_expired",
    "sign",
    "verify",
]
