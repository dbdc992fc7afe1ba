"""httpx integration: sign outgoing requests.

    with httpx.Client(auth=SignatureAuth("token-id", "secret")) as c:
        c.get("https://example.com/api/test")
"""
from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Iterable, Optional
from urllib.parse import parse_qsl

import httpx

from .builder import AuthorizationBuilder
from .canonical import parse_http_date
from .models import Credential
from .schemes import INTEGRITY_HEADERS, SNWS2, Scheme
from .verifier import FORM_CONTENT_TYPE


def request_path(request: httpx.Request) -> str:
    return request.url.raw_path.decode("ascii").split("?", 1)[0] or "/"


class SignatureAuth(httpx.Auth):
    requires_request_body = True

    def __init__(
        self,
        identifier: str,
        secret: Optional[str] = None,
        *,
        signing_key: Optional[bytes] = None,
        signing_date: Optional[datetime] = None,
        scheme: Scheme = SNWS2,
        use_sn_date: bool = False,
        signed_headers: Iterable[str] = (),
    ):
        self.credential = Credential(identifier, secret=secret, signing_key=signing_key, signing_date=signing_date)
        self.scheme = scheme
        self.use_sn_date = use_sn_date
        self.signed_headers = tuple(h.lower() for h in signed_headers)

    def auth_flow(self, request: httpx.Request):
        self.sign(request)
        yield request

    def builder_for(self, request: httpx.Request) -> AuthorizationBuilder:
        """A builder loaded with request, filling in Host and the date header on request as needed."""
        scheme = self.scheme
        b = AuthorizationBuilder(self.credential.identifier, scheme=scheme, default_host="")
        b.use_sn_date(self.use_sn_date or scheme.alt_date_header in request.headers)

        date_name = scheme.alt_date_header if b.uses_sn_date else scheme.date_header
        existing = request.headers.get(date_name)
        if existing:
            b.date(parse_http_date(existing))
            b.header(date_name, existing)
        else:
            b.date(None)
            request.headers[date_name] = b.header_value(date_name)

        if "host" not in request.headers:
            port = request.url.port
            request.headers["host"] = request.url.host if port in (None, 80) else f"{request.url.host}:{port}"
        if scheme.requires_host or "host" in self.signed_headers:
            b.host(request.headers["host"])

        b.method(request.method).path(request_path(request))

        params = list(request.url.params.multi_items())
        body = request.content
        ctype = (request.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
        if request.method.upper() == "POST" and ctype == FORM_CONTENT_TYPE and body:
            params.extend(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
        elif body:
            b.content_sha256(hashlib.sha256(body).digest())
        b.query_params(params)

        prefix = scheme.header_prefix
        for name in {k.lower() for k in request.headers.keys()}:
            if name.startswith(prefix) or name in INTEGRITY_HEADERS or name in self.signed_headers:
                if name in (scheme.date_header, scheme.alt_date_header):
                    continue
                b.header(name, *request.headers.get_list(name))
        return b

    def sign(self, request: httpx.Request) -> str:
        value = self.builder_for(request).build_for(self.credential)
        request.headers["Authorization"] = value
        return value
