# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Lockout, rate limiter, audit trail and the password primitives."""

import threading
import time
from datetime import timedelta

import pytest
from fastapi import HTTPException
from passlib.hash import pbkdf2_sha256
from sqlalchemy.exc import OperationalError

from core import security
from core.clock import as_utc, utcnow
from core.errors import AccountLocked, RateLimited, VerificationTimeout
from core.security import RequestContext
from database import SessionLocal
from models.audit_log import AuditLog
from models.security_event import SecurityEvent
from models.user import User
from services.audit import AuditLogger, assess_risk
from services.lockout import AccountLockout
from services.rate_limit import RateLimiter

CTX = RequestContext(ip="198.51.100.7", user_agent="pytest")


@pytest.fixture
def audit():
    return AuditLogger(SessionLocal)


@pytest.fixture
def lockout(audit):
    return AccountLockout(audit, max_failed_attempts=5, lockout_minutes=5)


@pytest.fixture
def account(db):
    user = User(
        username="bob",
        email="bob@example.com",
        phone_number="+15550009999",
        password_hash=security.hash_password("Bob-Secret-1"),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _events(db, user, event_type):
    return db.query(SecurityEvent).filter(
        SecurityEvent.user_id == user.id, SecurityEvent.event_type == event_type,
    ).all()


# -- password primitives -------------------------------------------------------


def test_hash_and_verify():
    stored = security.hash_password("S3cret-pass")
    assert stored.startswith("$argon2")
    assert security.verify_password("S3cret-pass", stored)
    assert not security.verify_password("S3cret-pasS", stored)


@pytest.mark.parametrize("stored", [None, "", "not-a-hash"])
def test_missing_or_unknown_hash_never_verifies(stored):
    assert security.verify_password("anything", stored) is False


def test_legacy_pbkdf2_hash_still_verifies_and_needs_update():
    legacy = pbkdf2_sha256.hash("Old-Secret-1")
    assert security.verify_password("Old-Secret-1", legacy)
    assert security.pwd_context.needs_update(legacy)


def test_slow_verification_is_a_denial(monkeypatch):
    def slow(plain, stored):
        time.sleep(0.5)
        return True

    monkeypatch.setattr(security, "verify_password", slow)
    with pytest.raises(VerificationTimeout):
        security.verify_password_bounded("x", "y", timeout=0.05)


def test_recovery_token_is_not_an_access_token():
    token = security.create_recovery_token(42)
    assert security.decode_access_token(token, purpose=security.TOKEN_PURPOSE_RECOVERY)["user_id"] == 42
    with pytest.raises(HTTPException) as excinfo:
        security.decode_access_token(token)
    assert excinfo.value.status_code == 401


# -- rate limiter --------------------------------------------------------------


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_rate_limiter_caps_per_account_and_operation():
    clock = _Clock()
    limiter = RateLimiter({"download": 5, "preview": 10}, window_seconds=300, clock=clock)
    for _ in range(5):
        limiter.hit(1, "download")
    with pytest.raises(RateLimited) as excinfo:
        limiter.hit(1, "download")
    assert 0 < excinfo.value.retry_after <= 301

    # other operation and other account are independent
    limiter.hit(1, "preview")
    limiter.hit(2, "download")
    assert limiter.remaining(1, "preview") == 9


def test_rate_limiter_window_slides():
    clock = _Clock()
    limiter = RateLimiter({"download": 2}, window_seconds=60, clock=clock)
    limiter.hit(1, "download")
    clock.now += 30
    limiter.hit(1, "download")
    with pytest.raises(RateLimited):
        limiter.hit(1, "download")
    clock.now += 31
    limiter.hit(1, "download")
    assert limiter.remaining(1, "download") == 0


def test_idle_windows_are_dropped():
    clock = _Clock()
    limiter = RateLimiter({"download": 5, "preview": 10}, window_seconds=60, clock=clock)
    limiter.hit(1, "download")
    limiter.hit(2, "preview")
    assert len(limiter) == 2

    clock.now += 61
    limiter.hit(3, "download")
    assert len(limiter) == 1
    assert limiter.remaining(1, "download") == 5


def test_unlisted_operation_is_not_limited():
    limiter = RateLimiter({"download": 1}, window_seconds=60, clock=_Clock())
    for _ in range(20):
        limiter.hit(1, "upload")


def test_rate_limiter_is_thread_safe():
    limiter = RateLimiter({"download": 50}, window_seconds=300, clock=_Clock())
    rejected = []

    def worker():
        for _ in range(20):
            try:
                limiter.hit(9, "download")
            except RateLimited:
                rejected.append(1)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(rejected) == 50


# -- lockout -------------------------------------------------------------------


def test_fifth_failure_locks(db, lockout, account):
    results = [lockout.register_failure(db, account, CTX) for _ in range(5)]
    assert results == [False, False, False, False, True]
    assert account.account_locked
    assert account.failed_login_attempts == 5
    assert lockout.is_locked(db, account)
    assert len(_events(db, account, "login_failure")) == 5
    assert len(_events(db, account, "account_locked")) == 1


def test_four_then_one_locks_for_the_cooldown(db, lockout, account):
    account.failed_login_attempts = 4
    db.commit()

    before = utcnow()
    assert lockout.register_failure(db, account, CTX) is True
    until = as_utc(account.account_locked_until)
    assert before + timedelta(minutes=5) <= until <= utcnow() + timedelta(minutes=5)

    err = lockout.locked_error(account)
    assert isinstance(err, AccountLocked)
    assert err.status_code == 423
    assert 290 <= err.retry_after <= 301


def test_locked_account_is_refused_with_its_own_audit_reason(db, lockout, account):
    for _ in range(5):
        lockout.register_failure(db, account, CTX)
    with pytest.raises(AccountLocked):
        lockout.ensure_unlocked(db, account, CTX, operation="download")

    actions = [a for (a,) in db.query(AuditLog.action).filter(AuditLog.user_id == account.id)]
    assert "account_locked" in actions
    assert "locked_attempt" in actions


def test_expired_lock_is_lifted_lazily(db, lockout, account):
    for _ in range(5):
        lockout.register_failure(db, account, CTX)
    account.account_locked_until = utcnow() - timedelta(seconds=1)
    db.commit()

    assert lockout.is_locked(db, account) is False
    assert account.failed_login_attempts == 0
    assert not account.account_locked
    assert len(_events(db, account, "account_unlocked")) == 1


def test_indefinite_lock_needs_an_operator(db, lockout, account):
    account.account_locked = True
    account.account_locked_until = None
    db.commit()
    assert lockout.is_locked(db, account)

    lockout.unlock(db, account)
    assert not lockout.is_locked(db, account)


def test_success_resets_counter(db, lockout, account):
    for _ in range(3):
        lockout.register_failure(db, account, CTX)
    lockout.register_success(db, account, CTX)
    assert account.failed_login_attempts == 0
    assert account.last_login_at is not None


def test_concurrent_failures_are_all_counted(lockout, account):
    results = []

    def worker():
        session = SessionLocal()
        try:
            user = session.get(User, account.id)
            results.append(lockout.register_failure(session, user, CTX))
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1

    check = SessionLocal()
    try:
        user = check.get(User, account.id)
        assert user.failed_login_attempts == 6
        assert user.account_locked
        assert len(_events(check, user, "account_locked")) == 1
    finally:
        check.close()


def test_identity_verification_matches_all_three_fields(account):
    assert AccountLockout.verify_identity(account, "BOB", "Bob@Example.com", "+1 (555) 000-9999")
    assert not AccountLockout.verify_identity(account, "bob", "bob@example.com", "+1 555 000 9998")
    assert not AccountLockout.verify_identity(account, "bob", "other@example.com", "+15550009999")


def test_unusual_activity_needs_a_pattern(db, lockout, account):
    # a brand-new account is never flagged
    assert lockout.detect_unusual_activity(db, account, CTX) is False

    account.created_at = utcnow() - timedelta(days=3)
    db.commit()
    known = RequestContext(ip="10.0.0.1", user_agent="known-browser")
    for _ in range(3):
        lockout.add_event(db, account, "login_success", known, success=True)
    db.commit()
    assert lockout.detect_unusual_activity(db, account, CTX) is False

    for _ in range(3):
        lockout.add_event(db, account, "login_failure", CTX)
    db.commit()
    stranger = RequestContext(ip="203.0.113.50", user_agent="unknown-tool")
    assert lockout.detect_unusual_activity(db, account, stranger) is True
    assert len(_events(db, account, "unusual_activity")) == 1

    lockout.mark_verified(db, account, stranger)
    assert lockout.detect_unusual_activity(db, account, stranger) is False


# -- audit ---------------------------------------------------------------------


def test_risk_levels():
    assert assess_risk("note_created") == "low"
    assert assess_risk("note_created", success=False) == "medium"
    assert assess_risk("account_locked") == "high"
    assert assess_risk("recovery_failed_repeatedly") == "critical"


def test_audit_record_is_written(db, audit, account):
    assert audit.record("file_download", user_id=account.id, resource="file:1", ctx=CTX) is True
    row = db.query(AuditLog).filter(AuditLog.action == "file_download").one()
    assert row.request_ip == CTX.ip
    assert row.user_agent == "pytest"
    assert row.risk_level == "low"


class _BrokenSession:
    def add(self, obj):
        pass

    def commit(self):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))

    def close(self):
        pass


def test_audit_failure_never_reaches_the_caller():
    broken = AuditLogger(_BrokenSession)
    assert broken.record("account_locked", user_id=1, success=False) is False


def test_any_sink_error_is_swallowed():
    def unavailable():
        raise OSError("sink down")

    assert AuditLogger(unavailable).record("file_download", user_id=1) is False


class _SlowSession(_BrokenSession):
    def commit(self):
        time.sleep(0.5)


def test_slow_audit_sink_is_given_up_on():
    started = time.monotonic()
    assert AuditLogger(_SlowSession, timeout=0.05).record("file_download", user_id=1) is False
    assert time.monotonic() - started < 0.4
