"""Server-side Authorization verification.

    parse -> required headers -> content digest -> canonical message
          -> recompute with 7-day key lookback -> date skew

RequestAuthorization binds a parsed header to one live request and exposes
the recomputation; verify_request() runs the whole sequence and raises from
snws.auth.errors on rejection.
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from ..cache.content import ContentDigestCache
from ..crypto.digest import parse_digest_header
from ..crypto.keys import compute_signing_key
from ..utils.ct import ct_eq
from ..utils.logging import get_logger
from .canonical import (
    canonical_host,
    canonical_request_message,
    check_required_headers,
    compute_signature,
    date_header_name,
    parse_http_date,
    signature_data,
)
from .envelope import SignatureEnvelope, parse_authorization
from .errors import (
    AuthSyntaxError,
    ClockSkewExceededError,
    ContentDigestMismatchError,
    SignatureMismatchError,
    UnknownCredentialError,
)
from .models import AuthResult, RequestDescriptor
from .schemes import HOST_HEADER, Scheme, scheme_for_name

log = get_logger(__name__)

DEFAULT_LOOKBACK_DAYS = 7
DEFAULT_MAX_CLOCK_SKEW_MS = 15 * 60 * 1000

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Digest header algorithm token -> cache digest name
_DIGEST_ALGORITHMS = {"sha-256": "sha256", "sha-512": "sha512", "sha": "sha1", "md5": "md5"}


@dataclass
class RequestView:
    """What the verifier needs from a live transport request.

    headers maps lowercase names to their values in arrival order. form_params
    holds decoded url-encoded form fields of a POST; when present they are
    signed as query parameters and the body digest is not.
    """
    method: str
    path: str
    query_params: Tuple[Tuple[str, str], ...] = ()
    headers: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    server_name: Optional[str] = None
    server_port: Optional[int] = None
    content: Optional[ContentDigestCache] = None
    form_params: Tuple[Tuple[str, str], ...] = ()

    def header(self, name: str) -> Optional[str]:
        vals = self.headers.get(name.lower())
        return vals[0] if vals else None

    @property
    def is_form_post(self) -> bool:
        ctype = (self.header("content-type") or "").split(";", 1)[0].strip().lower()
        return self.method.upper() == "POST" and ctype == FORM_CONTENT_TYPE


def _decode_md5(value: str) -> bytes:
    v = value.strip()
    if len(v) == 32:
        try:
            return bytes.fromhex(v)
        except ValueError:
            pass
    try:
        return base64.b64decode(v.encode(), validate=True)
    except (binascii.Error, ValueError):
        raise AuthSyntaxError("Invalid Content-MD5 header value") from None


class RequestAuthorization:
    """A parsed Authorization header bound to the request it arrived on."""

    def __init__(
        self,
        envelope: SignatureEnvelope,
        request: RequestView,
        scheme: Optional[Scheme] = None,
        explicit_host: Optional[str] = None,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    ):
        self.envelope = envelope
        self.request = request
        self.scheme = scheme or scheme_for_name(envelope.scheme)
        if self.scheme is None:
            raise AuthSyntaxError(f"Unsupported authorization scheme: {envelope.scheme}")
        if lookback_days < 1:
            raise ValueError("lookback_days must be at least 1")
        self.lookback_days = lookback_days

        check_required_headers(self.scheme, envelope.signed_header_names, request.headers.keys())
        date_name = date_header_name(self.scheme, envelope.signed_header_names)
        date_value = request.header(date_name)
        if not date_value:
            raise AuthSyntaxError(f"Missing {date_name} header value")
        self.date = parse_http_date(date_value)

        self._validate_content_digest()
        self.descriptor = self._descriptor(explicit_host)
        self.canonical_message = canonical_request_message(self.scheme, self.descriptor, envelope.signed_header_names)
        self.signature_data = signature_data(self.scheme, self.date, self.canonical_message)

    @property
    def identifier(self) -> str:
        return self.envelope.credential_id

    @property
    def signature(self) -> str:
        return self.envelope.signature_hex

    @property
    def signed_header_names(self) -> Tuple[str, ...]:
        return self.envelope.signed_header_names

    def _descriptor(self, explicit_host: Optional[str]) -> RequestDescriptor:
        req = self.request
        headers = dict(req.headers)
        host = explicit_host or canonical_host(
            req.header(HOST_HEADER),
            server_name=req.server_name,
            server_port=req.server_port,
            forwarded_port=req.header("x-forwarded-port"),
            forwarded_proto=req.header("x-forwarded-proto"),
        )
        if host:
            headers[HOST_HEADER] = (host,)
        params = tuple(req.query_params)
        digest = None
        if req.content is not None:
            req.content.complete()
            if req.content.byte_count > 0:
                # a non-empty form post signs its fields, never the body hash
                if req.is_form_post:
                    params = params + tuple(req.form_params)
                else:
                    digest = req.content.digest("sha256")
        elif req.form_params:
            params = params + tuple(req.form_params)
        return RequestDescriptor(
            verb=req.method,
            path=req.path,
            date=self.date,
            query_params=params,
            headers=headers,
            content_sha256=digest,
        )

    def _validate_content_digest(self) -> None:
        """Signed Content-MD5 / Digest headers must describe the actual body."""
        content = self.request.content
        if content is None:
            return
        md5_value = self.request.header("content-md5")
        if md5_value is not None:
            if not ct_eq(_decode_md5(md5_value), content.digest("md5")):
                raise ContentDigestMismatchError("Content-MD5 header value does not match")
        digest_value = self.request.header("digest")
        if digest_value is not None:
            try:
                claimed = parse_digest_header(digest_value)
            except (ValueError, binascii.Error):
                raise AuthSyntaxError("Invalid Digest header value") from None
            for alg, expected in claimed.items():
                name = _DIGEST_ALGORITHMS.get(alg)
                if name is None:
                    continue
                if not ct_eq(expected, content.digest(name)):
                    raise ContentDigestMismatchError(f"Digest {alg} value does not match")

    def find_signature(self, secret: str) -> Tuple[str, Optional[int]]:
        """Return (signature, key age in days) for the first lookback day that matches.

        The signature data always uses the claimed date; only the signing key
        day moves back. With no match the day-0 signature and None are returned.
        """
        first = None
        for i in range(self.lookback_days):
            key = compute_signing_key(
                self.scheme.name, self.scheme.signing_key_literal, secret, self.date - timedelta(days=i)
            )
            computed = compute_signature(key, self.signature_data)
            if first is None:
                first = computed
            if ct_eq(computed, self.signature):
                return computed, i
        return first, None

    def compute_signature_digest(self, secret: str) -> str:
        return self.find_signature(secret)[0]

    def date_skew_ms(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return int(abs((now - self.date).total_seconds()) * 1000)

    def is_date_valid(self, max_skew_ms: int = DEFAULT_MAX_CLOCK_SKEW_MS, now: Optional[datetime] = None) -> bool:
        return self.date_skew_ms(now) <= max_skew_ms


SecretLookup = Callable[[str], Optional[str]]


def verify_request(
    header: str,
    request: RequestView,
    lookup: SecretLookup,
    *,
    max_clock_skew_ms: int = DEFAULT_MAX_CLOCK_SKEW_MS,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    explicit_host: Optional[str] = None,
    expected_scheme: Optional[Scheme] = None,
    now: Optional[datetime] = None,
) -> AuthResult:
    """Verify header against request, returning a verified AuthResult or raising."""
    envelope = parse_authorization(header)
    scheme = expected_scheme or scheme_for_name(envelope.scheme)
    if scheme is None or scheme.name != envelope.scheme:
        raise AuthSyntaxError(f"Unsupported authorization scheme: {envelope.scheme}")
    auth = RequestAuthorization(
        envelope, request, scheme=scheme, explicit_host=explicit_host, lookback_days=lookback_days
    )
    log.debug(f"canonical request:\n{auth.canonical_message}")
    log.debug(f"signature data:\n{auth.signature_data}")

    secret = lookup(auth.identifier)
    if secret is None:
        raise UnknownCredentialError(f"Unknown credential: {auth.identifier}")
    _, age = auth.find_signature(secret)
    if age is None:
        raise SignatureMismatchError("Bad signature")

    skew = auth.date_skew_ms(now)
    if skew > max_clock_skew_ms:
        raise ClockSkewExceededError(skew, max_clock_skew_ms)

    return AuthResult(
        present=True,
        verified=True,
        scheme=scheme.name,
        credential_id=auth.identifier,
        signed_headers=list(auth.signed_header_names),
        date_skew_ms=skew,
        key_age_days=age,
    )
