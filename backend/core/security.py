# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Server-side security primitives and auth guards.

Content encryption never happens here: the server only ever sees ciphertext
produced by the ``cipher`` package on the client.

Responsibilities
----------------
1. Password hashing / verification          (passlib argon2, pbkdf2 legacy)
2. Bounded verification                     (worker pool + timeout)
3. JWT creation / decoding                  (PyJWT / HS256, role claim)
4. FastAPI dependency guards                (get_current_principal,
                                             require_capability, require_admin)
5. Request context                          (client IP, user agent)
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as _FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Optional

import jwt as _jwt        # PyJWT
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from core.config import settings
from core.errors import PermissionDenied, VerificationTimeout
from core.logger import logger
from core.roles import Capability, Role, resolve_role
from database import get_db

# ---------------------------------------------------------------------------
# 1.  Password hashing
# ---------------------------------------------------------------------------
# argon2 is memory-hard, which is what a vault secret needs.  pbkdf2_sha256
# stays in the context so hashes written by the older pure-Python setup still
# verify; ``needs_update`` flags them for re-hashing on the next login.
# ---------------------------------------------------------------------------

pwd_context = CryptContext(
    schemes=["argon2", "pbkdf2_sha256"],
    deprecated="auto",
    argon2__memory_cost=settings.argon2_memory_cost,
    argon2__time_cost=settings.argon2_time_cost,
    argon2__parallelism=settings.argon2_parallelism,
)


def hash_password(plain: str) -> str:
    """
    Hash a plaintext secret with argon2.

    Returns
    -------
    password_hash : str   Full passlib hash string  e.g. "$argon2id$v=19$..."
    """
    return pwd_context.hash(plain)


def verify_password(plain: str, stored_hash: Optional[str]) -> bool:
    """
    Constant-time verification of *plain* against a stored hash.

    A missing or unrecognised hash verifies as False instead of raising.
    """
    if not plain or not stored_hash:
        return False
    try:
        return pwd_context.verify(plain, stored_hash)
    except (ValueError, TypeError):
        logger.warning("Unrecognised password hash format – treated as mismatch")
        return False


# ---------------------------------------------------------------------------
# 2.  Bounded verification
# ---------------------------------------------------------------------------

_verify_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="pw-verify")


def verify_password_bounded(plain: str, stored_hash: Optional[str],
                            timeout: Optional[float] = None) -> bool:
    """
    :func:`verify_password` with an upper bound on wall-clock time.

    Raises :class:`VerificationTimeout` when the hash does not finish within
    *timeout* seconds (``external_call_timeout_seconds`` by default).  The
    caller must treat that as a failed attempt.
    """
    timeout = settings.external_call_timeout_seconds if timeout is None else timeout
    future = _verify_pool.submit(verify_password, plain, stored_hash)
    try:
        return future.result(timeout=timeout)
    except _FutureTimeout:
        future.cancel()
        logger.warning("Password verification exceeded %.1fs – denying", timeout)
        raise VerificationTimeout()


# ---------------------------------------------------------------------------
# 3.  JWT – session and recovery tokens
# ---------------------------------------------------------------------------

TOKEN_PURPOSE_ACCESS = "access"
TOKEN_PURPOSE_RECOVERY = "recovery"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None,
                        purpose: str = TOKEN_PURPOSE_ACCESS) -> str:
    """
    Sign a JWT with HS256.

    *data* should contain at minimum: sub (username), user_id, role.
    ``exp`` and ``purpose`` claims are added automatically.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode["exp"] = expire
    to_encode["purpose"] = purpose
    return _jwt.encode(to_encode, settings.secret_key, algorithm="HS256")


def create_recovery_token(user_id: int) -> str:
    """Short-lived token proving the security questions were answered."""
    return create_access_token(
        {"user_id": user_id},
        expires_delta=timedelta(minutes=settings.recovery_token_expire_minutes),
        purpose=TOKEN_PURPOSE_RECOVERY,
    )


def decode_access_token(token: str, purpose: str = TOKEN_PURPOSE_ACCESS) -> dict:
    """
    Decode and verify a JWT.  Raises HTTP 401 on any failure (expired,
    bad signature, malformed, or issued for another purpose).
    """
    try:
        payload = _jwt.decode(token, settings.secret_key, algorithms=["HS256"])
    except (_jwt.ExpiredSignatureError, _jwt.InvalidTokenError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    if payload.get("purpose") != purpose:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


# ---------------------------------------------------------------------------
# 4.  FastAPI dependency guards
# ---------------------------------------------------------------------------

# The tokenUrl here is only used by the auto-generated OpenAPI docs;
# the actual login endpoint is POST /auth/login (JSON body).
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


@dataclass(frozen=True)
class Principal:
    """The authenticated account plus the role its session was unlocked with."""

    user: object
    role: Role

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return resolve_role(self.role)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


def get_current_principal(
    token: str = Depends(oauth2_scheme),
    db=Depends(get_db),
) -> Principal:
    """
    Dependency: decode the JWT, load the User row, verify the account is
    active, and pair it with the session's role claim.

    Raises 401 if the token is invalid or the user is gone/disabled.
    """
    payload = decode_access_token(token)

    # Lazy import to avoid circular dependency at module load time
    from models.user import User  # noqa: E402

    user = db.query(User).filter(User.id == payload.get("user_id")).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    # Sharing a new Secondary secret or revoking it ends every Secondary
    # session issued under the previous one
    if role == Role.SECONDARY and (
        not user.view_password_hash
        or payload.get("secondary_epoch") != user.secondary_epoch
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return Principal(user=user, role=role)


def get_current_user(principal: Principal = Depends(get_current_principal)):
    """Dependency: the User row of the current session, whatever its role."""
    return principal.user


def require_capability(capability: Capability):
    """
    Dependency factory: the current session must hold *capability*.

        @router.delete("/{id}")
        def delete(principal=Depends(require_capability(Capability.DELETE))): ...
    """

    def _guard(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.can(capability):
            logger.info(
                "Capability %s denied for user_id=%s role=%s",
                capability.value, principal.user.id, principal.role.value,
            )
            raise PermissionDenied()
        return principal

    return _guard


def require_admin(principal: Principal = Depends(get_current_principal)):
    """
    Dependency: operator accounts only, and only from a Primary session.
    Raises 403 otherwise.
    """
    if principal.user.account_type != "admin" or principal.role != Role.PRIMARY:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal.user


# ---------------------------------------------------------------------------
# 5.  Request context
# ---------------------------------------------------------------------------


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address from the request.
    Checks X-Forwarded-For header first (for proxies), then falls back to client host.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For can contain multiple IPs, take the first (original client)
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"


@dataclass(frozen=True)
class RequestContext:
    ip: str
    user_agent: str


def get_request_context(request: Request) -> RequestContext:
    """Dependency: IP and user agent, recorded with every security event."""
    return RequestContext(
        ip=get_client_ip(request),
        user_agent=(request.headers.get("User-Agent") or "unknown")[:512],
    )
