"""Authorization header value parsing and formatting.

    <SCHEME> Credential=<id>,SignedHeaders=<name>[;<name>...],Signature=<64 hex>
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .errors import AuthSyntaxError
from .schemes import scheme_for_name

COMPONENT_CREDENTIAL = "Credential"
COMPONENT_SIGNED_HEADERS = "SignedHeaders"
COMPONENT_SIGNATURE = "Signature"

SIGNATURE_HEX_LENGTH = 64
_HEX_RE = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class SignatureEnvelope:
    scheme: str
    credential_id: str
    signed_header_names: Tuple[str, ...]
    signature_hex: str

    def header_value(self) -> str:
        return format_authorization(self.scheme, self.credential_id, self.signed_header_names, self.signature_hex)


def format_authorization(scheme: str, credential_id: str, signed_header_names, signature_hex: str) -> str:
    names = ";".join(signed_header_names)
    return (
        f"{scheme} {COMPONENT_CREDENTIAL}={credential_id},"
        f"{COMPONENT_SIGNED_HEADERS}={names},"
        f"{COMPONENT_SIGNATURE}={signature_hex}"
    )


def split_scheme(header: Optional[str]) -> Tuple[Optional[str], str]:
    """Return (scheme, rest); scheme is None when the value has no scheme token."""
    if not header:
        return None, ""
    header = header.strip()
    sep = header.find(" ")
    if sep < 1 or sep + 1 >= len(header):
        return None, header
    return header[:sep], header[sep + 1:].strip()


def _components(rest: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for part in rest.split(","):
        if "=" not in part:
            continue
        k, v = part.split("=", 1)
        k = k.strip()
        if k:
            out[k] = v.strip()
    return out


def parse_authorization(header: Optional[str]) -> SignatureEnvelope:
    scheme, rest = split_scheme(header)
    if not scheme:
        raise AuthSyntaxError("Invalid authorization header syntax (missing scheme)")
    comps = _components(rest)

    cred = comps.get(COMPONENT_CREDENTIAL)
    if not cred:
        raise AuthSyntaxError(f"Invalid {COMPONENT_CREDENTIAL} value")

    sig = comps.get(COMPONENT_SIGNATURE)
    if not sig or len(sig) != SIGNATURE_HEX_LENGTH or not _HEX_RE.match(sig):
        raise AuthSyntaxError(f"Invalid {COMPONENT_SIGNATURE} value")

    names_raw = comps.get(COMPONENT_SIGNED_HEADERS) or ""
    names = sorted({n.strip().lower() for n in names_raw.split(";") if n.strip()})
    known = scheme_for_name(scheme)
    min_names = known.min_signed_headers if known else 2
    if len(names) < min_names:
        # SNWS2 needs host plus a date header; SNS only the date
        raise AuthSyntaxError(f"Invalid {COMPONENT_SIGNED_HEADERS} value")

    return SignatureEnvelope(
        scheme=scheme,
        credential_id=cred,
        signed_header_names=tuple(names),
        signature_hex=sig.lower(),
    )
