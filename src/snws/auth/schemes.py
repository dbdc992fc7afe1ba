"""Authorization scheme descriptors.

A scheme fixes the header token, the HMAC domain separator used when deriving
signing keys, and whether the canonical message carries a query-string line.
The builder and verifier are generic over these descriptors.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"

DATE_HEADER = "date"
SN_DATE_HEADER = "x-sn-date"
HOST_HEADER = "host"
SN_HEADER_PREFIX = "x-sn-"

# Integrity-related headers that must be signed whenever present
INTEGRITY_HEADERS = ("content-type", "content-md5", "digest")


@dataclass(frozen=True)
class Scheme:
    name: str
    signing_key_literal: str
    includes_query: bool = True
    date_header: str = DATE_HEADER
    alt_date_header: str = SN_DATE_HEADER
    header_prefix: str = SN_HEADER_PREFIX
    requires_host: bool = True
    min_signed_headers: int = 2
    timestamp_format: str = TIMESTAMP_FORMAT

    @property
    def algorithm(self) -> str:
        return f"{self.name}-HMAC-SHA256"

    def with_literal(self, literal: str) -> "Scheme":
        return replace(self, signing_key_literal=literal)


SNWS2 = Scheme(name="SNWS2", signing_key_literal="snws2_request")
SNS = Scheme(
    name="SNS",
    signing_key_literal="sns_request",
    includes_query=False,
    requires_host=False,
    min_signed_headers=1,
    timestamp_format="%Y%m%d%H%M%SZ",
)

_REGISTRY: Dict[str, Scheme] = {s.name: s for s in (SNWS2, SNS)}


def register_scheme(scheme: Scheme) -> Scheme:
    _REGISTRY[scheme.name] = scheme
    return scheme


def scheme_for_name(name: str) -> Scheme | None:
    return _REGISTRY.get(name)


def scheme_from_config(cfg) -> Scheme:
    """Resolve the configured scheme, applying a literal override if set."""
    base = scheme_for_name(cfg.scheme_name) or Scheme(
        name=cfg.scheme_name, signing_key_literal=cfg.signing_key_literal
    )
    if cfg.signing_key_literal and cfg.signing_key_literal != base.signing_key_literal:
        return base.with_literal(cfg.signing_key_literal)
    return base
