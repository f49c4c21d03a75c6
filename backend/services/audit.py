# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Security audit trail.

:class:`AuditLogger` is built once in ``main.py`` and stored on
``app.state.audit``; handlers receive it through :func:`get_audit`.

Writes are best-effort: each record is committed in its own session on a
small worker pool, bounded by a timeout, and any failure is logged and
dropped.  Auditing can never turn a successful operation into a failed one.

Callers must commit their own request session before recording – on SQLite
a pending write in the request session would block the audit session.
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as _FutureTimeout
from typing import Callable, Optional

from fastapi import Request

from core.config import settings
from core.logger import logger, security_logger
from models.audit_log import AuditLog

# action → risk level; anything unlisted is "low"
_RISK_LEVELS = {
    "login_failure": "medium",
    "reauth_failure": "medium",
    "download_denied": "medium",
    "preview_denied": "medium",
    "rate_limited": "medium",
    "backup_code_login": "medium",
    "two_factor_disabled": "high",
    "account_locked": "high",
    "locked_attempt": "high",
    "unusual_activity": "high",
    "secondary_secret_on_reauth": "high",
    "infected_file_blocked": "high",
    "recovery_verified": "high",
    "admin_unlock": "high",
}

# Actions that are alerts in their own right
_ALWAYS_CRITICAL = {"recovery_failed_repeatedly"}


def assess_risk(action: str, success: bool = True) -> str:
    if action in _ALWAYS_CRITICAL:
        return "critical"
    level = _RISK_LEVELS.get(action, "low")
    if not success and level == "low":
        return "medium"
    return level


class AuditLogger:
    def __init__(self, session_factory: Callable, timeout: Optional[float] = None):
        self._session_factory = session_factory
        self._timeout = timeout
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="audit")

    def _write(self, row: AuditLog) -> None:
        db = self._session_factory()
        try:
            db.add(row)
            db.commit()
        finally:
            db.close()

    def record(
        self,
        action: str,
        user_id: Optional[int] = None,
        resource: Optional[str] = None,
        detail: Optional[str] = None,
        request_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        success: bool = True,
        ctx=None,
    ) -> bool:
        """
        Append one audit row.  Returns False when the write was dropped.

        *ctx* is a ``RequestContext``; its ip / user agent fill in whatever
        was not passed explicitly.  The write gets at most
        ``external_call_timeout_seconds``; a slower sink is given up on.
        """
        if ctx is not None:
            request_ip = request_ip or ctx.ip
            user_agent = user_agent or ctx.user_agent
        risk = assess_risk(action, success)

        if risk in ("high", "critical"):
            security_logger.warning(
                "SECURITY ALERT [%s] action=%s user_id=%s resource=%s ip=%s detail=%s",
                risk, action, user_id, resource, request_ip, detail,
            )

        row = AuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            detail=detail,
            request_ip=request_ip,
            user_agent=user_agent,
            success=success,
            risk_level=risk,
        )
        timeout = settings.external_call_timeout_seconds if self._timeout is None else self._timeout
        try:
            self._pool.submit(self._write, row).result(timeout=timeout)
        except _FutureTimeout:
            logger.warning("Audit write timed out after %.1fs: action=%s user_id=%s", timeout, action, user_id)
            return False
        except Exception:
            logger.exception("Audit write dropped: action=%s user_id=%s", action, user_id)
            return False
        return True


def get_audit(request: Request) -> AuditLogger:
    """Dependency: the application's audit logger."""
    return request.app.state.audit
