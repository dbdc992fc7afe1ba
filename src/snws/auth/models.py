from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel


@dataclass(frozen=True)
class Credential:
    """A token (or account) identifier bound to a secret.

    A precomputed signing key, when present, is preferred over the secret at
    signing time; it is only valid together with the date it was derived for.
    """
    identifier: str
    secret: Optional[str] = field(default=None, repr=False)
    signing_key: Optional[bytes] = field(default=None, repr=False)
    signing_date: Optional[datetime] = None

    def __post_init__(self):
        if not self.identifier:
            raise ValueError("The identifier argument must not be empty.")
        if self.secret is None and self.signing_key is None:
            raise ValueError("One of secret or signing_key is required.")
        if self.signing_key is not None:
            if len(self.signing_key) != 32:
                raise ValueError("signing_key must be 32 bytes")
            if self.signing_date is None:
                raise ValueError("signing_date is required with signing_key")


@dataclass(frozen=True)
class RequestDescriptor:
    """Everything the canonical message is computed from.

    Header names are lowercase; each maps to its values in request order.
    Query parameters are (key, value) pairs in insertion order, duplicates allowed.
    """
    verb: str
    path: str
    date: datetime
    query_params: Tuple[Tuple[str, str], ...] = ()
    headers: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    content_sha256: Optional[bytes] = None

    def header_values(self, name: str) -> Tuple[str, ...]:
        return self.headers.get(name.lower(), ())

    def header_value(self, name: str) -> Optional[str]:
        vals = self.header_values(name)
        return vals[0] if vals else None


def normalize_headers(headers) -> Dict[str, Tuple[str, ...]]:
    """Lowercase names; accept a mapping of str or sequence values, or (name, value) pairs."""
    out: Dict[str, List[str]] = {}
    items: Sequence = headers.items() if hasattr(headers, "items") else headers
    for k, v in items:
        if v is None:
            continue
        vals = [v] if isinstance(v, str) else list(v)
        out.setdefault(k.lower(), []).extend(vals)
    return {k: tuple(v) for k, v in out.items()}


class AuthResult(BaseModel):
    present: bool
    verified: bool
    scheme: Optional[str] = None
    credential_id: Optional[str] = None
    signed_headers: List[str] = []
    failure_reason: Optional[str] = None
    date_skew_ms: Optional[int] = None
    key_age_days: Optional[int] = None
