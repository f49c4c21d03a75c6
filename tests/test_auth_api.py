# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Signup, login, lockout, unusual activity, 2FA, recovery and password change."""

from datetime import timedelta

import pyotp

from cipher import envelope
from cipher.session import VaultSession
from core.clock import utcnow
from core.security import RequestContext, hash_password
from main import app
from models.audit_log import AuditLog
from models.user import User
from conftest import FAST_KDF, PRIMARY_SECRET, SECONDARY_SECRET


def _user(db, username="alice") -> User:
    db.expire_all()
    return db.query(User).filter(User.username == username).one()


def _actions(db, user_id):
    return [a for (a,) in db.query(AuditLog.action).filter(AuditLog.user_id == user_id).order_by(AuditLog.id)]


# -- signup / login ------------------------------------------------------------


def test_signup_returns_primary_session(vault):
    body = vault.signup("alice")
    assert body["role"] == "primary"
    assert "share_secondary_secret" in body["capabilities"]


def test_signup_rejects_weak_password(client):
    resp = client.post("/auth/signup", json={
        "username": "weak", "email": "weak@example.com", "phone_number": "+15551234567", "password": "short",
    })
    assert resp.status_code == 400


def test_signup_rejects_duplicate_username(vault, client):
    vault.signup("alice")
    resp = client.post("/auth/signup", json={
        "username": "Alice", "email": "other@example.com", "phone_number": "+15559876543",
        "password": PRIMARY_SECRET,
    })
    assert resp.status_code == 409


def test_login_by_username_or_email(vault):
    vault.signup("alice")
    assert vault.login("alice", PRIMARY_SECRET).json()["role"] == "primary"
    assert vault.login("ALICE@example.com", PRIMARY_SECRET).status_code == 200


def test_unknown_account_and_wrong_password_look_the_same(vault):
    vault.signup("alice")
    unknown = vault.login("nobody", PRIMARY_SECRET)
    wrong = vault.login("alice", "Wrong-Secret-9")
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json() == {"detail": "Invalid credentials"}


def test_secondary_secret_logs_in_with_secondary_role(vault):
    token, dek = vault.open_vault("alice")
    assert vault.share_secondary(token, dek).status_code == 200

    body = vault.login("alice", SECONDARY_SECRET).json()
    assert body["role"] == "secondary"
    assert sorted(body["capabilities"]) == ["create_note", "edit_note", "view_files"]

    me = vault.client.get("/auth/me", headers=vault.headers(body["access_token"])).json()
    assert me["role"] == "secondary"
    assert me["has_secondary_secret"] is True


def test_signup_cannot_set_a_secondary_secret(vault):
    vault.signup("alice", view_password=SECONDARY_SECRET)
    assert vault.login("alice", SECONDARY_SECRET).status_code == 401


def test_secondary_hash_without_an_envelope_does_not_log_in(vault, db):
    vault.open_vault("alice")
    user = _user(db)
    user.view_password_hash = hash_password(SECONDARY_SECRET)
    db.commit()
    assert vault.login("alice", SECONDARY_SECRET).status_code == 401


def test_disabled_account_cannot_log_in(vault, db):
    vault.signup("alice")
    user = _user(db)
    user.is_active = False
    db.commit()
    assert vault.login("alice", PRIMARY_SECRET).status_code == 401


# -- lockout -------------------------------------------------------------------


def test_five_wrong_passwords_lock_the_account(vault, db):
    vault.signup("alice")
    codes = [vault.login("alice", "Wrong-Secret-9").status_code for _ in range(5)]
    assert codes == [401, 401, 401, 401, 423]

    # even the right password is refused while locked
    locked = vault.login("alice", PRIMARY_SECRET)
    assert locked.status_code == 423
    assert int(locked.headers["Retry-After"]) > 0

    user = _user(db)
    assert user.account_locked
    assert user.failed_login_attempts == 5
    actions = _actions(db, user.id)
    assert "account_locked" in actions
    assert actions[-1] == "locked_attempt"


def test_fifth_failure_reports_the_cooldown(vault, db):
    vault.signup("alice")
    user = _user(db)
    user.failed_login_attempts = 4
    db.commit()

    resp = vault.login("alice", "Wrong-Secret-9")
    assert resp.status_code == 423
    body = resp.json()
    assert 290 <= body["retry_after"] <= 301
    assert body["locked_until"] is not None


def test_successful_login_resets_the_counter(vault, db):
    vault.signup("alice")
    for _ in range(3):
        vault.login("alice", "Wrong-Secret-9")
    assert vault.login("alice", PRIMARY_SECRET).status_code == 200
    assert _user(db).failed_login_attempts == 0


def test_expired_lock_lets_the_user_back_in(vault, db):
    vault.signup("alice")
    for _ in range(5):
        vault.login("alice", "Wrong-Secret-9")
    user = _user(db)
    user.account_locked_until = utcnow() - timedelta(seconds=1)
    db.commit()
    assert vault.login("alice", PRIMARY_SECRET).status_code == 200


def test_security_status(vault):
    token = vault.signup("alice")["access_token"]
    vault.login("alice", "Wrong-Secret-9")
    status = vault.client.get("/auth/security-status", headers=vault.headers(token)).json()
    assert status["account_locked"] is False
    assert status["failed_login_attempts"] == 1
    assert status["max_failed_attempts"] == 5
    assert status["recent_events"][0]["event_type"] == "login_failure"


# -- unusual activity ----------------------------------------------------------


def _establish_pattern(db):
    user = _user(db)
    user.created_at = utcnow() - timedelta(days=3)
    db.commit()
    lockout = app.state.lockout
    known = RequestContext(ip="10.0.0.1", user_agent="known-browser")
    for _ in range(3):
        lockout.add_event(db, user, "login_success", known, success=True)
    for ip in ("192.0.2.1", "192.0.2.2", "192.0.2.3"):
        lockout.add_event(db, user, "login_failure", RequestContext(ip=ip, user_agent="x"))
    db.commit()


def test_unusual_activity_requires_emergency_verification(vault, db):
    vault.signup("alice", phone_number="+1 555 0100 200")
    _establish_pattern(db)
    stranger = {"X-Forwarded-For": "203.0.113.9", "User-Agent": "unknown-tool"}

    blocked = vault.client.post("/auth/login", json={"identifier": "alice", "password": PRIMARY_SECRET},
                                headers=stranger)
    assert blocked.status_code == 418
    assert blocked.json()["requires_verification"] is True

    wrong = vault.client.post("/auth/verify-emergency", json={
        "username": "alice", "email": "alice@example.com", "phone_number": "+1 555 0100 201",
        "password": PRIMARY_SECRET,
    }, headers=stranger)
    assert wrong.status_code == 401

    verified = vault.client.post("/auth/verify-emergency", json={
        "username": "alice", "email": "alice@example.com", "phone_number": "15550100200",
        "password": PRIMARY_SECRET,
    }, headers=stranger)
    assert verified.status_code == 200

    retry = vault.client.post("/auth/login", json={"identifier": "alice", "password": PRIMARY_SECRET},
                              headers=stranger)
    assert retry.status_code == 200


# -- two-factor ----------------------------------------------------------------


def _enable_2fa(vault, token):
    setup = vault.client.post("/auth/2fa/enable", headers=vault.headers(token)).json()
    assert setup["otpauth_uri"].startswith("otpauth://totp/")
    assert setup["qr_code"]
    code = pyotp.TOTP(setup["secret"]).now()
    resp = vault.client.post("/auth/2fa/verify", json={"code": code}, headers=vault.headers(token))
    assert resp.status_code == 200, resp.text
    return setup["secret"], resp.json()["backup_codes"]


def test_totp_login(vault):
    token = vault.signup("alice")["access_token"]
    secret, codes = _enable_2fa(vault, token)
    assert len(codes) == 8

    first = vault.login("alice", PRIMARY_SECRET).json()
    assert first["requires_2fa"] is True
    assert first["access_token"] is None

    totp = pyotp.TOTP(secret)
    valid = {totp.at(utcnow(), offset) for offset in (-1, 0, 1)}
    wrong_code = next(c for c in ("000000", "111111", "222222", "333333") if c not in valid)
    wrong = vault.login("alice", PRIMARY_SECRET, totp_code=wrong_code)
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "Invalid 2FA code"

    ok =vault.login("alice", PRIMARY_SECRET, totp_code=pyotp.TOTP(secret).now())
    assert ok.status_code == 200
    assert ok.json()["access_token"]


def test_backup_code_is_single_use(vault):
    token = vault.signup("alice")["access_token"]
    _secret, codes = _enable_2fa(vault, token)

    body = {"identifier": "alice", "password": PRIMARY_SECRET, "backup_code": codes[0].lower()}
    first = vault.client.post("/auth/2fa/backup-login", json=body)
    assert first.status_code == 200
    assert first.json()["backup_codes_remaining"] == 7
    assert first.json()["warning"] is None

    again = vault.client.post("/auth/2fa/backup-login", json=body)
    assert again.status_code == 401
    assert again.json()["detail"] == "Invalid or used backup code"


def test_low_backup_code_count_warns(vault):
    token = vault.signup("alice")["access_token"]
    _secret, codes = _enable_2fa(vault, token)

    last = None
    for code in codes[:6]:
        last = vault.client.post("/auth/2fa/backup-login", json={
            "identifier": "alice", "password": PRIMARY_SECRET, "backup_code": code,
        })
        assert last.status_code == 200
    assert last.json()["backup_codes_remaining"] == 2
    assert "2 backup codes left" in last.json()["warning"]

    status = vault.client.get("/auth/2fa/backup-codes", headers=vault.headers(token)).json()
    assert status["remaining"] == 2


def test_regenerate_and_disable_need_the_password(vault):
    token = vault.signup("alice")["access_token"]
    _enable_2fa(vault, token)
    headers = vault.headers(token)

    denied = vault.client.post("/auth/2fa/backup-codes/regenerate", json={"password": "Wrong-Secret-9"},
                               headers=headers)
    assert denied.status_code == 401
    fresh = vault.client.post("/auth/2fa/backup-codes/regenerate", json={"password": PRIMARY_SECRET},
                              headers=headers)
    assert len(fresh.json()["backup_codes"]) == 8

    assert vault.client.post("/auth/2fa/disable", json={"password": PRIMARY_SECRET},
                             headers=headers).status_code == 200
    assert vault.login("alice", PRIMARY_SECRET).json()["requires_2fa"] is False


# -- security-question recovery ------------------------------------------------


def test_recovery_token_disables_2fa(vault):
    token = vault.signup("alice")["access_token"]
    _enable_2fa(vault, token)
    headers = vault.headers(token)

    questions = [
        {"question": "First pet?", "answer": "Rex"},
        {"question": "Birth city?", "answer": "  New   York "},
        {"question": "Favourite band?", "answer": "Low"},
    ]
    resp = vault.client.post("/auth/recovery/setup-questions",
                             json={"password": PRIMARY_SECRET, "questions": questions}, headers=headers)
    assert resp.status_code == 200

    asked = vault.client.post("/auth/recovery/get-questions", json={"identifier": "alice"}).json()
    assert asked["questions"] == ["First pet?", "Birth city?", "Favourite band?"]

    wrong = vault.client.post("/auth/recovery/verify-questions",
                              json={"identifier": "alice", "answers": ["rex", "boston", "low"]})
    assert wrong.status_code == 401

    right = vault.client.post("/auth/recovery/verify-questions",
                              json={"identifier": "alice", "answers": ["REX", "new york", "low"]})
    assert right.status_code == 200
    recovery_token = right.json()["recovery_token"]

    # a recovery token is not a session token
    assert vault.client.get("/auth/me", headers=vault.headers(recovery_token)).status_code == 401

    disabled = vault.client.post("/auth/2fa/disable", json={"recovery_token": recovery_token}, headers=headers)
    assert disabled.status_code == 200


def test_repeated_recovery_failures_raise_a_critical_alert(vault, db):
    token = vault.signup("alice")["access_token"]
    questions = [{"question": f"Q{i}?", "answer": f"answer {i}"} for i in range(3)]
    vault.client.post("/auth/recovery/setup-questions",
                      json={"password": PRIMARY_SECRET, "questions": questions}, headers=vault.headers(token))

    for _ in range(3):
        resp = vault.client.post("/auth/recovery/verify-questions",
                                 json={"identifier": "alice", "answers": ["no", "no", "no"]})
        assert resp.status_code == 401

    alerts = db.query(AuditLog).filter(AuditLog.action == "recovery_failed_repeatedly").all()
    assert len(alerts) == 1
    assert alerts[0].risk_level == "critical"


def test_get_questions_for_unknown_account_is_404(client):
    assert client.post("/auth/recovery/get-questions", json={"identifier": "ghost"}).status_code == 404


# -- change password -----------------------------------------------------------


def test_change_password_rewraps_the_same_dek(vault):
    token, dek = vault.open_vault("alice")
    headers = vault.headers(token)

    missing = vault.client.put("/auth/change-password", json={
        "old_password": PRIMARY_SECRET, "new_password": "Rotated-Secret-7",
    }, headers=headers)
    assert missing.status_code == 400

    wrong = vault.client.put("/auth/change-password", json={
        "old_password": "Wrong-Secret-9", "new_password": "Rotated-Secret-7",
    }, headers=headers)
    assert wrong.status_code == 400
    assert wrong.json()["detail"] == "Old password is incorrect"

    rotated = envelope.rewrap(dek, "Rotated-Secret-7", params=FAST_KDF)
    ok = vault.client.put("/auth/change-password", json={
        "old_password": PRIMARY_SECRET, "new_password": "Rotated-Secret-7",
        "primary_envelope": rotated.to_dict(),
    }, headers=headers)
    assert ok.status_code == 200, ok.text

    assert vault.login("alice", PRIMARY_SECRET).status_code == 401
    new_token = vault.token("alice", "Rotated-Secret-7")
    stored = vault.client.get("/keys/envelopes", headers=vault.headers(new_token)).json()["envelopes"]
    session = VaultSession.unlock("Rotated-Secret-7", [envelope.Envelope.from_dict(e) for e in stored])
    assert session.dek == dek


def test_secondary_session_cannot_change_password(vault):
    token, dek = vault.open_vault("alice")
    vault.share_secondary(token, dek)
    secondary = vault.token("alice", SECONDARY_SECRET)
    resp = vault.client.put("/auth/change-password", json={
        "old_password": PRIMARY_SECRET, "new_password": "Rotated-Secret-7",
    }, headers=vault.headers(secondary))
    assert resp.status_code == 403
