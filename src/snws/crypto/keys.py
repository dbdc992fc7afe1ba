"""HMAC-SHA256 primitives and day-scoped signing key derivation.

    signing_key = HMAC(HMAC(SCHEME + secret, "yyyyMMdd"), "<scheme>_request")

The key depends only on the secret and the UTC calendar day of the date, so
a client and a server derive the same key independently for a whole day.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac

from ..auth.errors import CryptoProviderError

KEY_DAY_FORMAT = "%Y%m%d"

BytesOrStr = Union[bytes, str]


def _b(v: BytesOrStr) -> bytes:
    return v.encode("utf-8") if isinstance(v, str) else v


def hmac_sha256(key: BytesOrStr, msg: BytesOrStr) -> bytes:
    try:
        h = crypto_hmac.HMAC(_b(key), hashes.SHA256())
    except UnsupportedAlgorithm as e:  # pragma: no cover - depends on backend build
        raise CryptoProviderError("HMAC-SHA256 not available from crypto backend") from e
    h.update(_b(msg))
    return h.finalize()


def hmac_sha256_hex(key: BytesOrStr, msg: BytesOrStr) -> str:
    return hmac_sha256(key, msg).hex()


def key_day(date: datetime) -> str:
    """UTC calendar day of date as yyyyMMdd. Naive datetimes are taken as UTC."""
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    return date.astimezone(timezone.utc).strftime(KEY_DAY_FORMAT)


def compute_signing_key(scheme_name: str, signing_key_literal: str, secret: str, date: datetime) -> bytes:
    if secret is None or date is None:
        raise ValueError("The secret and date arguments must not be None.")
    return hmac_sha256(hmac_sha256(scheme_name + secret, key_day(date)), signing_key_literal)
