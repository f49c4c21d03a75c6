# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Auth endpoints – signup, login, lockout recovery, two-factor, password change.

Security notes
--------------
* Login returns the *same* error whether the account doesn't exist or the
  secret is wrong.  This prevents user-enumeration attacks.
* Login order: lock check (423) → unusual-activity check (418) → Primary
  secret → Secondary secret → TOTP.  A locked account never reaches a hash.
* The session role is decided here, by which secret matched, and is fixed
  for the token's lifetime.
* change-password verifies the old password before accepting the new one,
  and stores the client's re-wrapped Primary envelope in the same commit.
"""

import re
from datetime import timedelta
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from database import get_db
from core.clock import utcnow
from core.config import settings
from core.errors import AuthFailure, UnusualActivity, VerificationTimeout
from core.logger import logger
from core.roles import Capability, Role, resolve_role
from core.security import (
    Principal,
    RequestContext,
    TOKEN_PURPOSE_RECOVERY,
    create_access_token,
    create_recovery_token,
    decode_access_token,
    get_current_principal,
    get_request_context,
    hash_password,
    pwd_context,
    require_capability,
    verify_password_bounded,
)
from models.security_event import SecurityEvent
from models.user import User
from keys.router import find_envelope, save_envelope
from services import recovery, two_factor
from services.audit import AuditLogger, get_audit
from services.lockout import AccountLockout, get_lockout
from auth.schemas import (
    BackupCodesResponse,
    BackupCodesStatusResponse,
    BackupLoginRequest,
    ChangePasswordRequest,
    DisableTwoFactorRequest,
    EmergencyVerifyRequest,
    GetQuestionsRequest,
    LoginRequest,
    LoginResponse,
    QuestionsResponse,
    RecoveryTokenResponse,
    RegenerateBackupCodesRequest,
    SecurityStatusResponse,
    SetupQuestionsRequest,
    SignupRequest,
    TokenResponse,
    TotpCodeRequest,
    TwoFactorSetupResponse,
    UserInfoResponse,
    VerifyQuestionsRequest,
)

router = APIRouter(prefix="/auth", tags=["auth"])

# Generic message used for both "no such account" and "wrong secret"
_LOGIN_FAIL = "Invalid credentials"

# Failed security-question attempts that raise a critical alert
_RECOVERY_ALERT_THRESHOLD = 3
_RECOVERY_ALERT_WINDOW = timedelta(hours=1)


def _validate_new_password(pw: str) -> str | None:
    """
    Return an error string if the password does not meet the minimum policy,
    or None if it is acceptable.

    Policy: >= 8 chars, at least one uppercase, one lowercase, one digit.
    """
    if len(pw) < 8:
        return "Password must be at least 8 characters"
    if not re.search(r"[A-Z]", pw):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"[a-z]", pw):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[0-9]", pw):
        return "Password must contain at least one digit"
    return None


def _find_account(db: Session, identifier: str) -> Optional[User]:
    ident = (identifier or "").strip().lower()
    if not ident:
        return None
    return db.query(User).filter(or_(User.username == ident, User.email == ident)).first()


def _token_payload(user: User, role: Role) -> dict:
    claims = {"sub": user.username, "user_id": user.id, "role": role.value}
    if role == Role.SECONDARY:
        claims["secondary_epoch"] = user.secondary_epoch
    token = create_access_token(claims)
    return {
        "access_token": token,
        "token_type": "bearer",
        "role": role.value,
        "capabilities": sorted(c.value for c in resolve_role(role)),
    }


def _match_secret(db: Session, user: User, password: str) -> Tuple[Optional[Role], str]:
    """
    Which role, if any, *password* unlocks.

    Returns ``(role, reason)``; *reason* explains a ``None`` role for the
    audit trail.  Primary is always tried first.  A Secondary secret only
    counts while its envelope exists, so its session can unwrap the DEK.
    """
    try:
        if verify_password_bounded(password, user.password_hash):
            return Role.PRIMARY, ""
        if (
            user.view_password_hash
            and find_envelope(db, user.id, Role.SECONDARY) is not None
            and verify_password_bounded(password, user.view_password_hash)
        ):
            return Role.SECONDARY, ""
    except VerificationTimeout:
        return None, "verification timeout"
    return None, "wrong password"


def _fail(db: Session, lockout: AccountLockout, audit: AuditLogger, user: User,
          ctx: RequestContext, reason: str, detail: str = _LOGIN_FAIL, action: str = "login_failure"):
    """Count the failure, audit the real reason, raise the generic one (or 423 if it locked)."""
    locked_now = lockout.register_failure(db, user, ctx, reason=reason)
    audit.record(action, user_id=user.id, detail=reason, success=False, ctx=ctx)
    if locked_now or user.account_locked:
        raise lockout.locked_error(user)
    raise AuthFailure(detail)


def _confirm_owner(db: Session, lockout: AccountLockout, audit: AuditLogger, user: User,
                   ctx: RequestContext, password: Optional[str], recovery_token: Optional[str]) -> str:
    """
    Re-prove ownership for a sensitive 2FA change: Primary password or a
    recovery token from the security questions.  Returns how it was proven.
    """
    if recovery_token:
        payload = decode_access_token(recovery_token, purpose=TOKEN_PURPOSE_RECOVERY)
        if payload.get("user_id") != user.id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
        return "recovery token"
    if not password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Password or recovery token is required")
    lockout.ensure_unlocked(db, user, ctx, operation="two_factor_change")
    try:
        ok = verify_password_bounded(password, user.password_hash)
    except VerificationTimeout:
        ok = False
    if not ok:
        _fail(db, lockout, audit, user, ctx, "wrong password on 2fa change",
              detail="Invalid password", action="two_factor_change_denied")
    return "password"


def _note_recovery_failure(db: Session, lockout: AccountLockout, audit: AuditLogger,
                           user: User, ctx: RequestContext) -> None:
    lockout.add_event(db, user, "recovery_failure", ctx)
    db.commit()
    recent = (
        db.query(SecurityEvent)
        .filter(
            SecurityEvent.user_id == user.id,
            SecurityEvent.event_type == "recovery_failure",
            SecurityEvent.timestamp >= utcnow() - _RECOVERY_ALERT_WINDOW,
        )
        .count()
    )
    if recent >= _RECOVERY_ALERT_THRESHOLD:
        audit.record("recovery_failed_repeatedly", user_id=user.id,
                     detail=f"{recent} failed recovery attempts in the last hour", success=False, ctx=ctx)


# ---------------------------------------------------------------------------
# POST /auth/signup
# ---------------------------------------------------------------------------


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(
    body: SignupRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    """Create an account and return a Primary session token."""
    err = _validate_new_password(body.password)
    if err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=err)
    if body.primary_envelope is not None and body.primary_envelope.kek_role != Role.PRIMARY.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Envelope role must be 'primary'")

    username = body.username.strip().lower()
    email = body.email.strip().lower()
    phone = body.phone_number.strip()
    if db.query(User).filter(User.username == username).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists")
    if db.query(User).filter(User.phone_number == phone).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Phone number already exists")

    user = User(
        username=username,
        email=email,
        phone_number=phone,
        password_hash=hash_password(body.password),
        account_type="user",
        is_active=True,
        failed_login_attempts=0,
        account_locked=False,
    )
    db.add(user)
    db.flush()  # get user.id before storing the envelope
    if body.primary_envelope is not None:
        save_envelope(db, user, body.primary_envelope)
    db.commit()
    db.refresh(user)

    audit.record("signup", user_id=user.id, ctx=ctx)
    logger.info("Account created: user_id=%s", user.id)
    return TokenResponse(**_token_payload(user, Role.PRIMARY))


# ---------------------------------------------------------------------------
# POST /auth/login
# ---------------------------------------------------------------------------


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
    audit: AuditLogger = Depends(get_audit),
):
    """Authenticate with the Primary or Secondary secret and return a role-bound JWT."""
    user = _find_account(db, body.identifier)
    if not user:
        audit.record("login_failure", detail="unknown identifier", success=False, ctx=ctx)
        raise AuthFailure(_LOGIN_FAIL)
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account disabled")

    lockout.ensure_unlocked(db, user, ctx, operation="login")
    if lockout.detect_unusual_activity(db, user, ctx):
        raise UnusualActivity()

    role, reason = _match_secret(db, user, body.password)
    if role is None:
        _fail(db, lockout, audit, user, ctx, reason)

    if user.two_factor_enabled:
        if not body.totp_code:
            return LoginResponse(requires_2fa=True)
        if not two_factor.verify_totp(user.totp_secret, body.totp_code):
            _fail(db, lockout, audit, user, ctx, "invalid 2fa code", detail="Invalid 2FA code")

    if role == Role.PRIMARY and pwd_context.needs_update(user.password_hash):
        user.password_hash = hash_password(body.password)
    lockout.register_success(db, user, ctx)
    audit.record("login_success", user_id=user.id, detail=f"role={role.value}", ctx=ctx)
    return LoginResponse(**_token_payload(user, role))


# ---------------------------------------------------------------------------
# POST /auth/verify-emergency  – clear an unusual-activity block
# ---------------------------------------------------------------------------


@router.post("/verify-emergency")
def verify_emergency(
    body: EmergencyVerifyRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
    audit: AuditLogger = Depends(get_audit),
):
    """
    Prove identity with username, email, phone number and the Primary
    secret.  On success the unusual-activity check is suspended for a few
    hours so the next login goes through.
    """
    user = _find_account(db, body.username)
    if not user:
        audit.record("identity_verification_failed", detail="unknown username", success=False, ctx=ctx)
        raise AuthFailure("Verification failed")

    lockout.ensure_unlocked(db, user, ctx, operation="verify_emergency")
    if not lockout.verify_identity(user, body.username, body.email, body.phone_number):
        _fail(db, lockout, audit, user, ctx, "identity details mismatch",
              detail="Verification failed", action="identity_verification_failed")
    try:
        ok = verify_password_bounded(body.password, user.password_hash)
    except VerificationTimeout:
        ok = False
    if not ok:
        _fail(db, lockout, audit, user, ctx, "wrong password on emergency verification",
              detail="Verification failed", action="identity_verification_failed")

    lockout.mark_verified(db, user, ctx)
    return {"detail": "Identity verified. You can now log in."}


# ---------------------------------------------------------------------------
# Two-factor authentication
# ---------------------------------------------------------------------------


@router.post("/2fa/enable", response_model=TwoFactorSetupResponse)
def enable_two_factor(
    principal: Principal = Depends(require_capability(Capability.EDIT_SETTINGS)),
    db: Session = Depends(get_db),
):
    """Start enrolment: a pending secret that only becomes active after /2fa/verify."""
    user = principal.user
    if user.two_factor_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="2FA is already enabled")
    secret = two_factor.generate_totp_secret()
    user.totp_temp_secret = secret
    db.commit()
    return TwoFactorSetupResponse(
        secret=secret,
        otpauth_uri=two_factor.provisioning_uri(secret, user.username),
        qr_code=two_factor.qr_code_base64(secret, user.username),
    )


@router.post("/2fa/verify", response_model=BackupCodesResponse)
def verify_two_factor(
    body: TotpCodeRequest,
    principal: Principal = Depends(require_capability(Capability.EDIT_SETTINGS)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    """Confirm the pending secret with a first code; returns the backup codes (shown once)."""
    user = principal.user
    if not user.totp_temp_secret:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No 2FA setup in progress")
    if not two_factor.verify_totp(user.totp_temp_secret, body.code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid 2FA code")

    user.totp_secret = user.totp_temp_secret
    user.totp_temp_secret = None
    user.two_factor_enabled = True
    codes = two_factor.replace_backup_codes(db, user)
    audit.record("two_factor_enabled", user_id=user.id, ctx=ctx)
    return BackupCodesResponse(backup_codes=codes)


@router.post("/2fa/disable")
def disable_two_factor(
    body: DisableTwoFactorRequest,
    principal: Principal = Depends(require_capability(Capability.EDIT_SETTINGS)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
    audit: AuditLogger = Depends(get_audit),
):
    user = principal.user
    if not user.two_factor_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="2FA is not enabled")
    proof = _confirm_owner(db, lockout, audit, user, ctx, body.password, body.recovery_token)
    two_factor.clear_two_factor(db, user)
    audit.record("two_factor_disabled", user_id=user.id, detail=f"confirmed by {proof}", ctx=ctx)
    return {"detail": "2FA disabled"}


@router.get("/2fa/backup-codes", response_model=BackupCodesStatusResponse)
def backup_codes_status(
    principal: Principal = Depends(require_capability(Capability.EDIT_SETTINGS)),
    db: Session = Depends(get_db),
):
    """How many backup codes are left (the codes themselves are never shown again)."""
    user = principal.user
    return BackupCodesStatusResponse(
        two_factor_enabled=bool(user.two_factor_enabled),
        remaining=two_factor.remaining_backup_codes(db, user),
        generated_at=user.backup_codes_generated_at,
    )


@router.post("/2fa/backup-codes/regenerate", response_model=BackupCodesResponse)
def regenerate_backup_codes(
    body: RegenerateBackupCodesRequest,
    principal: Principal = Depends(require_capability(Capability.EDIT_SETTINGS)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
    audit: AuditLogger = Depends(get_audit),
):
    user = principal.user
    if not user.two_factor_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="2FA is not enabled")
    proof = _confirm_owner(db, lockout, audit, user, ctx, body.password, body.recovery_token)
    codes = two_factor.replace_backup_codes(db, user)
    audit.record("backup_codes_regenerated", user_id=user.id, detail=f"confirmed by {proof}", ctx=ctx)
    return BackupCodesResponse(backup_codes=codes)


@router.post("/2fa/backup-login", response_model=LoginResponse)
def backup_login(
    body: BackupLoginRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
    audit: AuditLogger = Depends(get_audit),
):
    """Log in with a backup code instead of a TOTP code.  Each code works once."""
    user = _find_account(db, body.identifier)
    if not user:
        audit.record("login_failure", detail="unknown identifier", success=False, ctx=ctx)
        raise AuthFailure(_LOGIN_FAIL)
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account disabled")

    lockout.ensure_unlocked(db, user, ctx, operation="backup_login")
    role, reason = _match_secret(db, user, body.password)
    if role is None:
        _fail(db, lockout, audit, user, ctx, reason)
    if not user.two_factor_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="2FA is not enabled")

    remaining = two_factor.consume_backup_code(db, user, body.backup_code)
    if remaining is None:
        _fail(db, lockout, audit, user, ctx, "invalid or reused backup code",
              detail="Invalid or used backup code")

    lockout.add_event(db, user, "backup_code_used", ctx, success=True, remaining=remaining)
    lockout.register_success(db, user, ctx)
    audit.record("backup_code_login", user_id=user.id, detail=f"{remaining} codes left", ctx=ctx)

    warning = None
    if remaining <= settings.backup_code_low_water_mark:
        warning = f"Only {remaining} backup codes left. Generate new ones soon."
    return LoginResponse(**_token_payload(user, role), warning=warning, backup_codes_remaining=remaining)


# ---------------------------------------------------------------------------
# Security-question recovery
# ---------------------------------------------------------------------------


@router.post("/recovery/setup-questions")
def setup_questions(
    body: SetupQuestionsRequest,
    principal: Principal = Depends(require_capability(Capability.EDIT_SETTINGS)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
    audit: AuditLogger = Depends(get_audit),
):
    user = principal.user
    _confirm_owner(db, lockout, audit, user, ctx, body.password, None)
    recovery.set_questions(db, user, [(q.question, q.answer) for q in body.questions])
    audit.record("security_questions_set", user_id=user.id, ctx=ctx)
    return {"detail": "Security questions saved"}


@router.post("/recovery/get-questions", response_model=QuestionsResponse)
def get_questions(body: GetQuestionsRequest, db: Session = Depends(get_db)):
    user = _find_account(db, body.identifier)
    questions = recovery.get_questions(db, user) if user else []
    if len(questions) != recovery.QUESTION_COUNT:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No security questions configured")
    return QuestionsResponse(questions=[q.question for q in questions])


@router.post("/recovery/verify-questions", response_model=RecoveryTokenResponse)
def verify_questions(
    body: VerifyQuestionsRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
    audit: AuditLogger = Depends(get_audit),
):
    """Correct answers earn a short-lived token accepted by /2fa/disable and /2fa/backup-codes/regenerate."""
    user = _find_account(db, body.identifier)
    if not user:
        raise AuthFailure("Security answers do not match")
    lockout.ensure_unlocked(db, user, ctx, operation="recovery")
    if not recovery.verify_answers(db, user, body.answers):
        _note_recovery_failure(db, lockout, audit, user, ctx)
        _fail(db, lockout, audit, user, ctx, "wrong security answers",
              detail="Security answers do not match", action="recovery_failed")
    audit.record("recovery_verified", user_id=user.id, ctx=ctx)
    return RecoveryTokenResponse(
        recovery_token=create_recovery_token(user.id),
        expires_in=settings.recovery_token_expire_minutes * 60,
    )


# ---------------------------------------------------------------------------
# PUT /auth/change-password
# ---------------------------------------------------------------------------


@router.put("/change-password")
def change_password(
    body: ChangePasswordRequest,
    principal: Principal = Depends(require_capability(Capability.EDIT_SETTINGS)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
    audit: AuditLogger = Depends(get_audit),
):
    """
    Change the Primary secret.

    The DEK does not change; the client re-wraps it under the new secret
    (``VaultSession.rewrap``) and sends the new Primary envelope, which is
    required once an envelope exists.
    """
    user = principal.user
    lockout.ensure_unlocked(db, user, ctx, operation="change_password")
    try:
        ok = verify_password_bounded(body.old_password, user.password_hash)
    except VerificationTimeout:
        ok = False
    if not ok:
        locked_now = lockout.register_failure(db, user, ctx, reason="wrong old password")
        audit.record("password_change_denied", user_id=user.id, detail="wrong old password",
                     success=False, ctx=ctx)
        if locked_now or user.account_locked:
            raise lockout.locked_error(user)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Old password is incorrect")

    err = _validate_new_password(body.new_password)
    if err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=err)
    if user.view_password_hash and verify_password_bounded(body.new_password, user.view_password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Primary password must differ from the secondary password",
        )

    if body.primary_envelope is not None:
        if body.primary_envelope.kek_role != Role.PRIMARY.value:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Envelope role must be 'primary'")
        save_envelope(db, user, body.primary_envelope)
    elif find_envelope(db, user.id, Role.PRIMARY):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Re-wrapped primary envelope is required",
        )

    user.password_hash = hash_password(body.new_password)
    lockout.add_event(db, user, "password_change", ctx, success=True)
    db.commit()
    audit.record("password_change", user_id=user.id, ctx=ctx)
    return {"detail": "Password changed successfully"}


# ---------------------------------------------------------------------------
# GET /auth/me, GET /auth/security-status
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserInfoResponse)
def me(principal: Principal = Depends(get_current_principal)):
    """Return the authenticated account's public profile (no secrets) and session role."""
    user = principal.user
    return UserInfoResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        phone_number=user.phone_number,
        account_type=user.account_type,
        is_active=user.is_active,
        two_factor_enabled=bool(user.two_factor_enabled),
        has_secondary_secret=bool(user.view_password_hash),
        role=principal.role.value,
        capabilities=sorted(c.value for c in principal.capabilities),
        last_login_at=user.last_login_at,
    )


@router.get("/security-status", response_model=SecurityStatusResponse)
def security_status(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
):
    return lockout.security_status(db, principal.user)
