# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Re-authentication gate for download and preview.

A valid session is not enough to pull a file: the Primary secret must be
supplied again on every request.  Checks run in a fixed order and each one
short-circuits the rest::

    REQUESTED ─ rate limit ─ lock check ─ PASSWORD_SUPPLIED ─ VERIFYING ─┬─ GRANTED
                  429          423                                       └─ DENIED
                                                                             401 / 423 / 403

* The limiter counts the attempt before anything else.
* A locked account is refused before any hash is consulted.
* A wrong password – the Secondary secret included – bumps the lockout
  counter.  The caller only ever sees "Invalid password"; the audit trail
  records which case it was.
* An infected file is refused only after the password has been proven.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import Session

from core.errors import AuthFailure, Infected, RateLimited, VerificationTimeout
from core.logger import logger
from core.security import verify_password_bounded
from models.file import VaultFile
from models.user import User


class GateState(str, enum.Enum):
    REQUESTED = "requested"
    PASSWORD_SUPPLIED = "password_supplied"
    VERIFYING = "verifying"
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class Grant:
    operation: str
    url: str
    expires_in: int
    state: GateState = GateState.GRANTED


class ReAuthGate:
    def __init__(self, lockout, limiter, audit, blob_store):
        self.lockout = lockout
        self.limiter = limiter
        self.audit = audit
        self.blob_store = blob_store

    @staticmethod
    def _trace(user: User, operation: str, state: GateState) -> None:
        logger.debug("Re-auth %s user_id=%s -> %s", operation, user.id, state.value)

    def _deny(self, user: User, operation: str, vault_file: VaultFile, reason: str,
              ctx, action: Optional[str] = None) -> None:
        logger.info("Re-auth %s denied: user_id=%s file_id=%s reason=%s",
                    operation, user.id, vault_file.id, reason)
        self.audit.record(
            action or f"{operation}_denied",
            user_id=user.id,
            resource=f"file:{vault_file.id}",
            detail=reason,
            success=False,
            ctx=ctx,
        )

    def _secondary_supplied(self, user: User, password: str) -> bool:
        if not user.view_password_hash:
            return False
        try:
            return verify_password_bounded(password, user.view_password_hash)
        except VerificationTimeout:
            return False

    def authorize(self, db: Session, user: User, vault_file: VaultFile, operation: str,
                  password: str, ctx=None) -> Grant:
        """
        Walk the gate for one request.

        Returns a :class:`Grant` carrying a time-boxed URL for the ciphertext.
        Raises ``RateLimited``, ``AccountLocked``, ``AuthFailure`` or
        ``Infected``; the state reached is always logged.
        """
        self._trace(user, operation, GateState.REQUESTED)
        try:
            self.limiter.hit(user.id, operation)
        except RateLimited:
            self._deny(user, operation, vault_file, "rate limit exceeded", ctx, action="rate_limited")
            raise

        self.lockout.ensure_unlocked(db, user, ctx, operation=operation)

        self._trace(user, operation, GateState.PASSWORD_SUPPLIED)
        self._trace(user, operation, GateState.VERIFYING)
        reason = None
        try:
            verified = verify_password_bounded(password, user.password_hash)
        except VerificationTimeout:
            verified = False
            reason = "verification timeout"

        if not verified:
            self._trace(user, operation, GateState.DENIED)
            if reason is None:
                reason = ("secondary secret supplied" if self._secondary_supplied(user, password)
                          else "wrong password")
            locked_now = self.lockout.register_failure(
                db, user, ctx, event_type="reauth_failure", reason=reason,
            )
            action = "secondary_secret_on_reauth" if reason == "secondary secret supplied" else None
            self._deny(user, operation, vault_file, reason, ctx, action=action)
            if locked_now or user.account_locked:
                raise self.lockout.locked_error(user)
            raise AuthFailure("Invalid password")

        if vault_file.virus_scan_status == "infected":
            self._trace(user, operation, GateState.DENIED)
            self.lockout.register_success(db, user, ctx, event_type="reauth_success")
            self._deny(user, operation, vault_file, "file flagged as infected", ctx,
                       action="infected_file_blocked")
            raise Infected()

        self.lockout.register_success(db, user, ctx, event_type="reauth_success")
        url, expires_in = self.blob_store.signed_url(vault_file.storage_locator, disposition=operation)
        self._trace(user, operation, GateState.GRANTED)
        self.audit.record(
            f"file_{operation}",
            user_id=user.id,
            resource=f"file:{vault_file.id}",
            detail=f"url valid {expires_in}s",
            ctx=ctx,
        )
        return Grant(operation=operation, url=url, expires_in=expires_in)


def get_reauth_gate(request: Request) -> ReAuthGate:
    """Dependency: the application's re-authentication gate."""
    return request.app.state.reauth_gate
