# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Account lockout and security-event history.

Rules
-----
* ``max_failed_attempts`` consecutive failures lock the account for
  ``lockout_minutes``.  While locked, no password hash is consulted.
* The failure counter is bumped by a single conditional UPDATE so two
  concurrent wrong passwords can never both read 4 and write 5.
* Expired locks are lifted lazily, the next time the account is checked.
* A successful verification resets the counter; so does an operator unlock.

Every transition appends a :class:`SecurityEvent`; the audit trail gets the
human-readable reason.
"""

import re
from datetime import timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy import case, literal, select, update
from sqlalchemy.orm import Session

from core.clock import as_utc, utcnow
from core.config import settings
from core.errors import AccountLocked
from core.logger import security_logger
from models.security_event import SecurityEvent
from models.user import User

# Unusual-activity heuristics
_MIN_ACCOUNT_AGE = timedelta(hours=24)
_VERIFIED_GRACE = timedelta(hours=6)
_PATTERN_WINDOW = timedelta(days=7)
_MIN_PATTERN_LOGINS = 3
_FAILURE_WINDOW = timedelta(hours=2)
_FAILURES_WITH_NEW_DEVICE = 3
_DISTINCT_FAILURE_IPS = 3

_LOCK_REASON = "Too many failed attempts"


def _digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


class AccountLockout:
    def __init__(self, audit, max_failed_attempts: int = None, lockout_minutes: int = None):
        self.audit = audit
        self.max_failed_attempts = max_failed_attempts or settings.max_failed_attempts
        self.lockout_minutes = lockout_minutes or settings.lockout_minutes

    # -- event helper ------------------------------------------------------

    @staticmethod
    def add_event(db: Session, user: User, event_type: str, ctx=None,
                  success: bool = False, **details) -> SecurityEvent:
        """Stage a SecurityEvent on *db*; the caller commits."""
        event = SecurityEvent(
            user_id=user.id,
            event_type=event_type,
            timestamp=utcnow(),
            ip_address=ctx.ip if ctx else None,
            user_agent=ctx.user_agent if ctx else None,
            success=success,
            details=details or None,
        )
        db.add(event)
        return event

    # -- lock state --------------------------------------------------------

    def is_locked(self, db: Session, user: User) -> bool:
        """
        True while the lock is in force.  A lock whose cooldown has passed
        is lifted here (counter reset, ``account_unlocked`` event).
        """
        until = as_utc(user.account_locked_until)
        now = utcnow()
        if until is not None and until > now:
            return True
        if user.account_locked and until is None:
            # Indefinite lock, only an operator can lift it
            return True
        if user.account_locked or until is not None:
            user.account_locked = False
            user.account_locked_until = None
            user.account_locked_reason = None
            user.failed_login_attempts = 0
            self.add_event(db, user, "account_unlocked", success=True, reason="lockout expired")
            db.commit()
            security_logger.info("Lockout expired for user_id=%s", user.id)
        return False

    def retry_after(self, user: User) -> int:
        until = as_utc(user.account_locked_until)
        if until is None:
            return 0
        return max(int((until - utcnow()).total_seconds()) + 1, 0)

    def locked_error(self, user: User) -> AccountLocked:
        return AccountLocked(retry_after=self.retry_after(user),
                             locked_until=as_utc(user.account_locked_until))

    def ensure_unlocked(self, db: Session, user: User, ctx=None, operation: str = "login") -> None:
        """Raise :class:`AccountLocked` (423) without touching any hash."""
        if self.is_locked(db, user):
            self.audit.record(
                "locked_attempt", user_id=user.id, resource=operation,
                detail="account locked", success=False, ctx=ctx,
            )
            raise self.locked_error(user)

    # -- counter -----------------------------------------------------------

    def register_failure(self, db: Session, user: User, ctx=None,
                         event_type: str = "login_failure", reason: str = "wrong password") -> bool:
        """
        Count one failed verification.  Returns True when this failure
        locked the account.
        """
        was_locked = bool(user.account_locked)
        now = utcnow()
        locked_until = now + timedelta(minutes=self.lockout_minutes)
        next_count = User.failed_login_attempts + 1
        crosses = next_count >= self.max_failed_attempts

        db.execute(
            update(User)
            .where(User.id == user.id)
            .values(
                failed_login_attempts=next_count,
                last_failed_login_at=now,
                account_locked=case((crosses, True), else_=User.account_locked),
                account_locked_until=case(
                    (crosses, literal(locked_until, User.account_locked_until.type)),
                    else_=User.account_locked_until,
                ),
                account_locked_reason=case(
                    (crosses, literal(_LOCK_REASON, User.account_locked_reason.type)),
                    else_=User.account_locked_reason,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        # Read back inside the same transaction: the row is still write-locked,
        # so this is the count our own increment produced.
        attempts = db.execute(
            select(User.failed_login_attempts).where(User.id == user.id)
        ).scalar_one()
        db.commit()
        db.refresh(user)

        self.add_event(db, user, event_type, ctx, reason=reason,
                       attempts=user.failed_login_attempts)
        # Exactly one caller sees the threshold value, however many race past it
        locked_now = attempts == self.max_failed_attempts and not was_locked
        if locked_now:
            self.add_event(db, user, "account_locked", ctx, reason=_LOCK_REASON,
                           attempts=user.failed_login_attempts,
                           locked_until=locked_until.isoformat())
        db.commit()

        if locked_now:
            security_logger.warning(
                "Account locked: user_id=%s attempts=%d until=%s",
                user.id, user.failed_login_attempts, locked_until.isoformat(),
            )
            self.audit.record(
                "account_locked", user_id=user.id,
                detail=f"{reason}; attempt {user.failed_login_attempts} reached the limit",
                success=False, ctx=ctx,
            )
        return locked_now

    def register_success(self, db: Session, user: User, ctx=None,
                         event_type: str = "login_success") -> None:
        user.failed_login_attempts = 0
        user.account_locked = False
        user.account_locked_until = None
        user.account_locked_reason = None
        if event_type == "login_success":
            user.last_login_at = utcnow()
        self.add_event(db, user, event_type, ctx, success=True)
        db.commit()

    def unlock(self, db: Session, user: User, by: Optional[User] = None) -> None:
        """Operator unlock – clears the lock and the counter."""
        user.account_locked = False
        user.account_locked_until = None
        user.account_locked_reason = None
        user.failed_login_attempts = 0
        self.add_event(db, user, "account_unlocked", success=True,
                       reason="operator unlock", by=by.id if by else None)
        db.commit()

    # -- unusual activity --------------------------------------------------

    def detect_unusual_activity(self, db: Session, user: User, ctx) -> bool:
        """
        Flag a login that doesn't match the account's recent pattern.

        Skipped for accounts younger than a day, accounts that passed
        emergency verification in the last six hours, and accounts without
        at least three successful logins in the last week.  Fires on a new
        IP *and* new user agent after three recent failures, or on recent
        failures from three or more distinct IPs.
        """
        now = utcnow()
        created = as_utc(user.created_at)
        if created is None or now - created < _MIN_ACCOUNT_AGE:
            return False
        verified = as_utc(user.last_verified_at)
        if verified is not None and now - verified < _VERIFIED_GRACE:
            return False

        recent_logins = (
            db.query(SecurityEvent)
            .filter(
                SecurityEvent.user_id == user.id,
                SecurityEvent.event_type == "login_success",
                SecurityEvent.timestamp >= now - _PATTERN_WINDOW,
            )
            .all()
        )
        if len(recent_logins) < _MIN_PATTERN_LOGINS:
            return False

        failures = (
            db.query(SecurityEvent)
            .filter(
                SecurityEvent.user_id == user.id,
                SecurityEvent.event_type == "login_failure",
                SecurityEvent.timestamp >= now - _FAILURE_WINDOW,
            )
            .all()
        )
        known_ips = {e.ip_address for e in recent_logins}
        known_agents = {e.user_agent for e in recent_logins}
        new_device = ctx.ip not in known_ips and ctx.user_agent not in known_agents
        failure_ips = {e.ip_address for e in failures if e.ip_address}

        unusual = (
            (new_device and len(failures) >= _FAILURES_WITH_NEW_DEVICE)
            or len(failure_ips) >= _DISTINCT_FAILURE_IPS
        )
        if unusual:
            self.add_event(db, user, "unusual_activity", ctx,
                           recent_failures=len(failures), failure_ips=len(failure_ips),
                           new_device=new_device)
            db.commit()
            self.audit.record("unusual_activity", user_id=user.id,
                              detail=f"failures={len(failures)} distinct_ips={len(failure_ips)}",
                              success=False, ctx=ctx)
        return unusual

    @staticmethod
    def verify_identity(user: User, username: str, email: str, phone_number: str) -> bool:
        """Username, email and phone must all match (case-insensitive, phone digits only)."""
        return (
            (username or "").strip().lower() == user.username.lower()
            and (email or "").strip().lower() == user.email.lower()
            and bool(_digits(phone_number))
            and _digits(phone_number) == _digits(user.phone_number)
        )

    def mark_verified(self, db: Session, user: User, ctx=None) -> None:
        user.last_verified_at = utcnow()
        db.commit()
        self.audit.record("identity_verified", user_id=user.id,
                          detail="emergency verification passed", ctx=ctx)

    # -- status ------------------------------------------------------------

    def security_status(self, db: Session, user: User) -> dict:
        locked = self.is_locked(db, user)
        since = utcnow() - timedelta(hours=24)
        events = (
            db.query(SecurityEvent)
            .filter(SecurityEvent.user_id == user.id, SecurityEvent.timestamp >= since)
            .order_by(SecurityEvent.timestamp.desc(), SecurityEvent.id.desc())
            .limit(10)
            .all()
        )
        return {
            "account_locked": locked,
            "retry_after": self.retry_after(user) if locked else 0,
            "locked_until": as_utc(user.account_locked_until) if locked else None,
            "failed_login_attempts": user.failed_login_attempts,
            "max_failed_attempts": self.max_failed_attempts,
            "two_factor_enabled": bool(user.two_factor_enabled),
            "recent_events": [
                {
                    "event_type": e.event_type,
                    "timestamp": as_utc(e.timestamp),
                    "ip_address": e.ip_address,
                    "success": e.success,
                }
                for e in events
            ],
        }


def get_lockout(request: Request) -> AccountLockout:
    """Dependency: the application's lockout service."""
    return request.app.state.lockout
