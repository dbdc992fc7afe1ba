"""Signature verification & enforcement middleware.

A plain ASGI middleware rather than BaseHTTPMiddleware: the request body is
pulled from receive() into a ContentDigestCache (which may spool to disk) and
then replayed chunk by chunk to the wrapped app.
"""
from __future__ import annotations

from typing import Optional
from urllib.parse import parse_qsl

from starlette.requests import ClientDisconnect, Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..cache.content import ContentDigestCache
from ..config import AuthConfig, load_config
from ..obs.prom import observe_auth
from ..utils.logging import get_logger
from .credentials import CredentialDirectory, load_directory
from .envelope import split_scheme
from .errors import AuthenticationError, BodyTooLargeError
from .models import AuthResult, normalize_headers
from .schemes import scheme_from_config
from .verifier import RequestView, verify_request

log = get_logger(__name__)

AUTH_STATE_KEY = "auth_result"


def _raw_path(scope: Scope) -> str:
    raw = scope.get("raw_path")
    if raw:
        return raw.decode("latin-1").split("?", 1)[0]
    return scope.get("path", "/")


async def _read_body(receive: Receive, cache: ContentDigestCache) -> None:
    while True:
        message = await receive()
        if message["type"] == "http.request":
            cache.feed(message.get("body", b""))
            if not message.get("more_body", False):
                break
        elif message["type"] == "http.disconnect":
            raise ClientDisconnect()
    cache.complete()


class _BodyReplay:
    """receive() replacement that yields the cached body, then defers to the real one."""

    def __init__(self, cache: ContentDigestCache, receive: Receive):
        self._receive = receive
        self._chunk_size = cache.chunk_size
        self._stream = cache.body_stream()
        self._pending = self._stream.read(self._chunk_size)
        self._done = False

    async def __call__(self) -> Message:
        if self._done:
            return await self._receive()
        chunk = self._pending
        self._pending = self._stream.read(self._chunk_size)
        more = bool(self._pending)
        if not more:
            self.close()
        return {"type": "http.request", "body": chunk, "more_body": more}

    def close(self) -> None:
        if not self._done:
            self._done = True
            self._stream.close()


class SignatureAuthMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        directory: Optional[CredentialDirectory] = None,
        config: Optional[AuthConfig] = None,
    ):
        self.app = app
        self._directory = directory
        self._config = config

    @property
    def config(self) -> AuthConfig:
        return self._config or load_config()

    @property
    def directory(self) -> CredentialDirectory:
        if self._directory is None:
            self._directory = load_directory()
        return self._directory

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        cfg = self.config
        if scope.get("path") in cfg.public_paths:
            await self.app(scope, receive, send)
            return

        scheme = scheme_from_config(cfg)
        request = Request(scope)
        state = scope.setdefault("state", {})
        header = request.headers.get("authorization")
        header_scheme, _ = split_scheme(header)
        challenge = {"WWW-Authenticate": scheme.name}

        # 1. No credentials for our scheme
        if header_scheme != scheme.name:
            result = AuthResult(present=False, verified=False, failure_reason="missing_authorization")
            observe_auth(scheme=scheme.name, verified=False, reason=result.failure_reason)
            if cfg.advisory:
                state[AUTH_STATE_KEY] = result.model_dump()
                await self.app(scope, receive, send)
                return
            response = JSONResponse({"error": "authorization_required"}, status_code=401, headers=challenge)
            await response(scope, receive, send)
            return

        # 2. Cache the body (digests + replayable stream)
        cache = ContentDigestCache(content_type=request.headers.get("content-type"), config=cfg)
        replay: Optional[_BodyReplay] = None
        try:
            try:
                await _read_body(receive, cache)
            except BodyTooLargeError as e:
                observe_auth(scheme=scheme.name, verified=False, reason=e.reason)
                log.warning(f"auth rejected path={scope.get('path')} reason={e.reason} limit={e.limit}")
                await JSONResponse({"error": e.reason}, status_code=e.status_code)(scope, receive, send)
                return
            except ClientDisconnect:
                log.info(f"client disconnected during body read path={scope.get('path')}")
                return

            # 3. Verify
            view = self._request_view(scope, request, cache)
            try:
                result = verify_request(
                    header,
                    view,
                    self.directory.lookup,
                    max_clock_skew_ms=cfg.max_clock_skew_ms,
                    lookback_days=cfg.lookback_days,
                    explicit_host=cfg.explicit_host,
                    expected_scheme=scheme,
                )
            except AuthenticationError as e:
                observe_auth(scheme=scheme.name, verified=False, reason=e.reason)
                log.info(f"auth rejected path={scope.get('path')} reason={e.reason} detail={e}")
                result = AuthResult(present=True, verified=False, scheme=scheme.name, failure_reason=e.reason)
                if not cfg.advisory:
                    await JSONResponse(e.to_dict(), status_code=e.status_code, headers=challenge)(scope, receive, send)
                    return
            else:
                observe_auth(scheme=scheme.name, verified=True, key_age_days=result.key_age_days)
                log.info(
                    f"auth ok path={scope.get('path')} credential={result.credential_id} "
                    f"skew_ms={result.date_skew_ms} key_age_days={result.key_age_days}"
                )

            # 4. Hand the untouched body downstream
            state[AUTH_STATE_KEY] = result.model_dump()
            replay = _BodyReplay(cache, receive)
            await self.app(scope, replay, send)
        finally:
            if replay is not None:
                replay.close()
            cache.delete()

    def _request_view(self, scope: Scope, request: Request, cache: ContentDigestCache) -> RequestView:
        server = scope.get("server") or (None, None)
        query = tuple(parse_qsl(scope.get("query_string", b"").decode("latin-1"), keep_blank_values=True))
        view = RequestView(
            method=scope["method"],
            path=_raw_path(scope),
            query_params=query,
            headers=normalize_headers(request.headers.items()),
            server_name=server[0],
            server_port=server[1],
            content=cache,
        )
        if view.is_form_post and cache.byte_count:
            body = cache.read_body().decode("utf-8", errors="replace")
            view.form_params = tuple(parse_qsl(body, keep_blank_values=True))
        return view
