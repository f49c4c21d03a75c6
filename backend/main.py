# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
FastAPI application.

Responsibilities
----------------
* Instantiate the FastAPI app and its long-lived services (audit logger,
  lockout, rate limiter, blob store, re-auth gate) on ``app.state``.
* Register CORS and request-logging middleware.
* Translate :class:`core.errors.VaultError` into JSON responses.
* Mount the feature routers (auth, keys, notes, files, admin).
* Expose a /health endpoint for container liveness checks.
"""

import time

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from auth.router import router as auth_router
from admin.router import router as admin_router
from files.router import router as files_router
from keys.router import router as keys_router
from notes.router import router as notes_router
from core.config import settings
from core.errors import VaultError
from core.logger import logger
from core.security import get_client_ip
from database import SessionLocal
from services.audit import AuditLogger
from services.blob_store import LocalBlobStore
from services.lockout import AccountLockout
from services.rate_limit import RateLimiter
from services.reauth import ReAuthGate

app = FastAPI(title="Personal Vault", version="1.0.0")

# ---------------------------------------------------------------------------
# Services – built once, injected through Depends(get_*)
# ---------------------------------------------------------------------------


def build_services(application: FastAPI) -> None:
    state = application.state
    state.audit = AuditLogger(SessionLocal)
    state.lockout = AccountLockout(state.audit)
    state.rate_limiter = RateLimiter()
    state.blob_store = LocalBlobStore(
        settings.blob_storage_dir, settings.secret_key, settings.signed_url_expire_seconds,
    )
    state.reauth_gate = ReAuthGate(state.lockout, state.rate_limiter, state.audit, state.blob_store)


build_services(app)

# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


# ---------------------------------------------------------------------------
# Request-logging middleware
# ---------------------------------------------------------------------------
# Logs every inbound request: method, path, client IP, status, latency.
# Bodies are never echoed – they carry passwords and ciphertext.  Blob paths
# are trimmed so signed tokens don't end up in the log.


class _RequestLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, client IP, response status and latency (ms)."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        path = request.url.path
        if path.startswith("/files/blob/"):
            path = "/files/blob/<token>"

        logger.info(
            "%s %s | client=%s status=%d latency=%.1fms",
            request.method,
            path,
            get_client_ip(request),
            response.status_code,
            elapsed_ms,
        )
        return response


app.add_middleware(_RequestLogMiddleware)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@app.exception_handler(VaultError)
async def _vault_error_handler(request: Request, exc: VaultError):
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(auth_router)
app.include_router(keys_router)
app.include_router(notes_router)
app.include_router(files_router)
app.include_router(admin_router)

# ---------------------------------------------------------------------------
# Lifecycle + health check
# ---------------------------------------------------------------------------


@app.on_event("startup")
async def _on_startup():
    logger.info("Personal Vault service starting up")


@app.on_event("shutdown")
async def _on_shutdown():
    logger.info("Personal Vault service shutting down")


@app.get("/health")
def health():
    return {"status": "ok"}
