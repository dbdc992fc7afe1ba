from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .auth.credentials import CredentialDirectory
from .auth.middleware import AUTH_STATE_KEY, SignatureAuthMiddleware
from .config import AuthConfig
from .crypto.digest import sha256_hex
from .obs.prom import prometheus_latest

load_dotenv()

_NO_AUTH = {"present": False, "verified": False, "failure_reason": "no_auth"}


def build_app(directory: Optional[CredentialDirectory] = None, config: Optional[AuthConfig] = None) -> FastAPI:
    app = FastAPI(title="SNWS request authentication")
    app.add_middleware(SignatureAuthMiddleware, directory=directory, config=config)

    @app.get("/__health")
    async def health():
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics():
        body, content_type = prometheus_latest()
        return Response(content=body, media_type=content_type)

    @app.get("/protected")
    async def protected(request: Request):
        result = getattr(request.state, AUTH_STATE_KEY, _NO_AUTH)
        return JSONResponse({"ok": True, "auth": result})

    @app.post("/protected")
    async def protected_post(request: Request):
        # body arrives intact after the middleware digested it
        body = await request.body()
        result = getattr(request.state, AUTH_STATE_KEY, _NO_AUTH)
        return JSONResponse({"ok": True, "auth": result, "body_bytes": len(body), "body_sha256": sha256_hex(body)})

    return app


app = build_app()
