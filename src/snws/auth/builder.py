"""Client-side Authorization header builder.

Usage:

    auth = (
        AuthorizationBuilder("test-token-id")
        .host("localhost")
        .path("/api/test")
        .date(when)
        .build("test-token-secret")
    )

The builder signs every header it holds (host and the date header are always
present) plus any names added with signed_http_headers(). It is mutable and
meant for one caller at a time; reset() starts a fresh request but keeps a
saved signing key.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..crypto.keys import compute_signing_key
from .canonical import (
    canonical_request_message,
    compute_signature,
    http_date,
    signature_data,
    sorted_header_names,
    utc,
)
from .envelope import format_authorization
from .models import Credential, RequestDescriptor, normalize_headers
from .schemes import HOST_HEADER, SNWS2, Scheme

DEFAULT_HOST = "localhost"

ParamsLike = Union[Mapping[str, object], Iterable[Tuple[str, str]], None]


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _param_pairs(params: ParamsLike) -> Tuple[Tuple[str, str], ...]:
    if not params:
        return ()
    items = params.items() if hasattr(params, "items") else params
    out: List[Tuple[str, str]] = []
    for k, v in items:
        if isinstance(v, (list, tuple)):
            out.extend((k, "" if x is None else str(x)) for x in v)
        else:
            out.append((k, "" if v is None else str(v)))
    return tuple(out)


def build_authorization(
    scheme: Scheme,
    descriptor: RequestDescriptor,
    credential: Credential,
    header_names: Optional[Sequence[str]] = None,
) -> str:
    """Return the Authorization header value for descriptor signed by credential.

    A precomputed signing key on the credential is used in preference to its
    secret. header_names defaults to every header in the descriptor.
    """
    names = sorted_header_names(descriptor.headers.keys() if header_names is None else header_names)
    if credential.signing_key is not None:
        key = credential.signing_key
    else:
        key = compute_signing_key(scheme.name, scheme.signing_key_literal, credential.secret, descriptor.date)
    canonical = canonical_request_message(scheme, descriptor, names)
    sig = compute_signature(key, signature_data(scheme, descriptor.date, canonical))
    return format_authorization(scheme.name, credential.identifier, names, sig)


class AuthorizationBuilder:
    def __init__(self, identifier: str, scheme: Scheme = SNWS2, default_host: Optional[str] = None):
        if not identifier:
            raise ValueError("The identifier argument must not be empty.")
        self.identifier = identifier
        self.scheme = scheme
        if default_host is None and scheme.requires_host:
            default_host = DEFAULT_HOST
        self.default_host = default_host
        self._signing_key: Optional[bytes] = None
        self._signing_key_date: Optional[datetime] = None
        self._use_sn_date = False
        self.reset()

    # -- request state -------------------------------------------------

    def reset(self) -> "AuthorizationBuilder":
        self._descriptor = RequestDescriptor(verb="GET", path="/", date=_now())
        self._signed_names: Tuple[str, ...] = ()
        if self.default_host:
            self.host(self.default_host)
        return self.date(None)

    @property
    def descriptor(self) -> RequestDescriptor:
        return self._descriptor

    @property
    def request_date(self) -> datetime:
        return self._descriptor.date

    def _update(self, **changes) -> "AuthorizationBuilder":
        self._descriptor = replace(self._descriptor, **changes)
        return self

    def _date_header(self) -> str:
        return self.scheme.alt_date_header if self._use_sn_date else self.scheme.date_header

    def date(self, when: Optional[datetime]) -> "AuthorizationBuilder":
        d = _now() if when is None else utc(when).replace(microsecond=0)
        self._update(date=d)
        return self.header(self._date_header(), http_date(d))

    def verb(self, verb: str) -> "AuthorizationBuilder":
        if verb is None:
            raise ValueError("The verb argument must not be None.")
        return self._update(verb=verb)

    method = verb

    def path(self, path: str) -> "AuthorizationBuilder":
        if path is None:
            raise ValueError("The path argument must not be None.")
        return self._update(path=path)

    def host(self, host: str) -> "AuthorizationBuilder":
        return self.header(HOST_HEADER, host)

    def content_type(self, value: str) -> "AuthorizationBuilder":
        return self.header("content-type", value)

    def content_md5(self, value: str) -> "AuthorizationBuilder":
        return self.header("content-md5", value)

    def digest(self, value: str) -> "AuthorizationBuilder":
        return self.header("digest", value)

    def header(self, name: str, *values: str) -> "AuthorizationBuilder":
        """Set (replace) a header; several values produce several canonical lines."""
        if not name or not values or any(v is None for v in values):
            raise ValueError("The header name and value arguments must not be None or empty.")
        lc = name.lower()
        headers = dict(self._descriptor.headers)
        # setting either date header makes it the one that is signed
        if lc == self.scheme.alt_date_header:
            self._use_sn_date = True
            headers.pop(self.scheme.date_header, None)
        elif lc == self.scheme.date_header:
            self._use_sn_date = False
            headers.pop(self.scheme.alt_date_header, None)
        headers[lc] = tuple(values)
        return self._update(headers=headers)

    def headers(self, headers) -> "AuthorizationBuilder":
        """Replace all headers. The date header is kept when headers lack one."""
        new = normalize_headers(headers or {})
        if self.scheme.date_header not in new and self.scheme.alt_date_header not in new:
            new[self._date_header()] = (http_date(self._descriptor.date),)
        return self._update(headers=new)

    def header_values(self, name: str) -> Tuple[str, ...]:
        return self._descriptor.header_values(name)

    def header_value(self, name: str) -> Optional[str]:
        return self._descriptor.header_value(name)

    @property
    def uses_sn_date(self) -> bool:
        return self._use_sn_date

    def use_sn_date(self, enabled: bool = True) -> "AuthorizationBuilder":
        """Carry the request date in the alternate date header instead of Date."""
        self._use_sn_date = enabled
        want, discard = (
            (self.scheme.alt_date_header, self.scheme.date_header)
            if enabled
            else (self.scheme.date_header, self.scheme.alt_date_header)
        )
        headers: Dict[str, Tuple[str, ...]] = dict(self._descriptor.headers)
        if discard in headers:
            moved = headers.pop(discard)
            headers.setdefault(want, moved)
        return self._update(headers=headers)

    def query_params(self, params: ParamsLike) -> "AuthorizationBuilder":
        return self._update(query_params=_param_pairs(params))

    parameter_map = query_params

    def content_sha256(self, digest: Optional[bytes]) -> "AuthorizationBuilder":
        copy = bytes(digest[:32]) if digest is not None and len(digest) >= 32 else None
        return self._update(content_sha256=copy)

    def signed_http_headers(self, names: Optional[Iterable[str]]) -> "AuthorizationBuilder":
        self._signed_names = tuple(n.lower() for n in (names or ()) if n)
        return self

    def sorted_header_names(self) -> List[str]:
        return sorted_header_names(list(self._descriptor.headers.keys()) + list(self._signed_names))

    # -- signing key ---------------------------------------------------

    def compute_signing_key(self, secret: str, when: Optional[datetime] = None) -> bytes:
        return compute_signing_key(
            self.scheme.name, self.scheme.signing_key_literal, secret, when or self._descriptor.date
        )

    def save_signing_key(self, secret: str) -> "AuthorizationBuilder":
        self._signing_key = self.compute_signing_key(secret)
        self._signing_key_date = self._descriptor.date
        return self

    def signing_key(self, key: bytes, when: Optional[datetime] = None) -> "AuthorizationBuilder":
        self._signing_key = bytes(key)
        self._signing_key_date = when
        return self

    def signing_key_hex(self) -> Optional[str]:
        return self._signing_key.hex() if self._signing_key is not None else None

    @property
    def signing_key_date(self) -> Optional[datetime]:
        return self._signing_key_date

    # -- output --------------------------------------------------------

    def compute_canonical_request_message(self, header_names: Optional[Sequence[str]] = None) -> str:
        names = self.sorted_header_names() if header_names is None else sorted_header_names(header_names)
        return canonical_request_message(self.scheme, self._descriptor, names)

    def compute_signature_data(self, canonical_message: Optional[str] = None) -> str:
        if canonical_message is None:
            canonical_message = self.compute_canonical_request_message()
        return signature_data(self.scheme, self._descriptor.date, canonical_message)

    def _key_for(self, secret: Optional[str]) -> bytes:
        if secret is not None:
            return self.compute_signing_key(secret)
        if self._signing_key is None:
            raise ValueError("A secret is required when no signing key has been saved.")
        return self._signing_key

    def build_signature(self, secret: Optional[str] = None) -> str:
        return compute_signature(self._key_for(secret), self.compute_signature_data())

    def build(self, secret: Optional[str] = None) -> str:
        """Authorization header value; without a secret the saved signing key is used."""
        names = self.sorted_header_names()
        key = self._key_for(secret)
        canonical = canonical_request_message(self.scheme, self._descriptor, names)
        sig = compute_signature(key, signature_data(self.scheme, self._descriptor.date, canonical))
        return format_authorization(self.scheme.name, self.identifier, names, sig)

    def build_for(self, credential: Credential) -> str:
        if credential.signing_key is not None:
            self.signing_key(credential.signing_key, credential.signing_date)
            return self.build()
        return self.build(credential.secret)
