"""Canonical request message construction.

Shared by the client builder and the server verifier; both sides must produce
byte-identical output for the same request:

    VERB
    PATH
    canonical query string          (omitted by schemes without a query line)
    name:value                      (one line per value, names ascending)
    name;name;...
    hex(SHA-256(body))
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

from ..crypto.digest import EMPTY_SHA256_HEX, sha256_hex
from ..crypto.keys import hmac_sha256_hex
from .errors import AuthSyntaxError, MissingRequiredHeaderError
from .models import RequestDescriptor
from .schemes import HOST_HEADER, INTEGRITY_HEADERS, TIMESTAMP_FORMAT, Scheme

_MULTI_SPACE = re.compile(r" {2,}")


def utc(date: datetime) -> datetime:
    if date.tzinfo is None:
        return date.replace(tzinfo=timezone.utc)
    return date.astimezone(timezone.utc)


def http_date(date: datetime) -> str:
    """IMF-fixdate, e.g. 'Tue, 25 Apr 2017 14:30:00 GMT'."""
    return format_datetime(utc(date).replace(microsecond=0), usegmt=True)


def parse_http_date(value: str) -> datetime:
    try:
        d = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError) as e:
        raise AuthSyntaxError(f"Invalid date header value: {value!r}") from e
    if d is None:  # pragma: no cover - older interpreters return None
        raise AuthSyntaxError(f"Invalid date header value: {value!r}")
    return utc(d)


def timestamp(date: datetime, fmt: str = TIMESTAMP_FORMAT) -> str:
    return utc(date).strftime(fmt)


def uri_encode(value: str) -> str:
    # unreserved: A-Z a-z 0-9 _ - . ~ ; everything else is %XX of its UTF-8 bytes
    return quote(value, safe="-_.~")


def canonical_query_string(params: Iterable[Tuple[str, str]]) -> str:
    grouped: Dict[str, List[str]] = {}
    for k, v in params:
        grouped.setdefault(k, []).append("" if v is None else v)
    pairs = []
    for key in sorted(grouped):
        for val in grouped[key]:
            pairs.append(f"{uri_encode(key)}={uri_encode(val)}")
    return "&".join(pairs)


def canonical_header_value(value: Optional[str]) -> str:
    if not value:
        return ""
    return _MULTI_SPACE.sub(" ", value.strip())


def sorted_header_names(names: Iterable[str]) -> List[str]:
    return sorted({n.lower() for n in names if n})


def canonical_host(
    host: Optional[str],
    server_name: Optional[str] = None,
    server_port: Optional[int] = None,
    forwarded_port: Optional[str] = None,
    forwarded_proto: Optional[str] = None,
) -> str:
    """Host value as the client would have signed it.

    Absent host: serverName[:port], port 80 omitted. Host without a port:
    append the proxy's forwarded port (or 443 for forwarded https) unless 80.
    """
    value = (host or "").strip()
    if not value:
        if not server_name:
            return ""
        if server_port and server_port != 80:
            return f"{server_name}:{server_port}"
        return server_name
    if ":" in value:
        return value
    port = (forwarded_port or "").strip()
    if not port and (forwarded_proto or "").strip().lower() == "https":
        port = "443"
    if port and port != "80":
        value = f"{value}:{port}"
    return value


def _append_headers(lines: List[str], descriptor: RequestDescriptor, names: Sequence[str]) -> None:
    for name in names:
        vals = descriptor.header_values(name)
        if not vals:
            lines.append("")
            continue
        for v in vals:
            lines.append(f"{name}:{canonical_header_value(v)}")


def content_sha256_hex(descriptor: RequestDescriptor) -> str:
    digest = descriptor.content_sha256
    return digest.hex() if digest else EMPTY_SHA256_HEX


def canonical_request_message(scheme: Scheme, descriptor: RequestDescriptor, header_names: Sequence[str]) -> str:
    names = sorted_header_names(header_names)
    lines: List[str] = [descriptor.verb, descriptor.path]
    if scheme.includes_query:
        lines.append(canonical_query_string(descriptor.query_params))
    if not names:
        lines.extend(["", ""])
    else:
        _append_headers(lines, descriptor, names)
        lines.append(";".join(names))
    lines.append(content_sha256_hex(descriptor))
    return "\n".join(lines)


def signature_data(scheme: Scheme, date: datetime, canonical_message: str) -> str:
    return f"{scheme.algorithm}\n{timestamp(date, scheme.timestamp_format)}\n{sha256_hex(canonical_message.encode('utf-8'))}"


def compute_signature(signing_key: bytes, sig_data: str) -> str:
    return hmac_sha256_hex(signing_key, sig_data)


def date_header_name(scheme: Scheme, signed_names: Iterable[str]) -> str:
    """The single date-equivalent header among signed_names."""
    names = {n.lower() for n in signed_names}
    has_std = scheme.date_header in names
    has_alt = scheme.alt_date_header in names
    if has_std and has_alt:
        raise AuthSyntaxError(
            f"Only one of the '{scheme.date_header}' or '{scheme.alt_date_header}' headers may be signed"
        )
    if not (has_std or has_alt):
        raise MissingRequiredHeaderError(
            scheme.date_header,
            f"One of the '{scheme.date_header}' or '{scheme.alt_date_header}' HTTP headers must be included in SignedHeaders",
        )
    return scheme.date_header if has_std else scheme.alt_date_header


def check_required_headers(scheme: Scheme, signed_names: Iterable[str], present_names: Iterable[str]) -> None:
    """Enforce the signed-header policy shared by signer and verifier."""
    signed = {n.lower() for n in signed_names}
    if scheme.requires_host and HOST_HEADER not in signed:
        raise MissingRequiredHeaderError(HOST_HEADER)
    date_header_name(scheme, signed)
    prefix = scheme.header_prefix.lower()
    for name in present_names:
        lc = name.lower()
        must_include = lc.startswith(prefix) or lc in INTEGRITY_HEADERS
        if must_include and lc not in signed:
            raise MissingRequiredHeaderError(lc)
