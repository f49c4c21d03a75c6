# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the auth endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from keys.schemas import EnvelopeBody


# -- Requests --------------------------------------------------------------


class SignupRequest(BaseModel):
    username: str = Field(min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone_number: str = Field(min_length=7, max_length=32)
    password: str
    primary_envelope: Optional[EnvelopeBody] = None


class LoginRequest(BaseModel):
    identifier: str          # username or email
    password: str
    totp_code: Optional[str] = None


class EmergencyVerifyRequest(BaseModel):
    username: str
    email: str
    phone_number: str
    password: str


class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str
    primary_envelope: Optional[EnvelopeBody] = None   # DEK re-wrapped under the new secret


class TotpCodeRequest(BaseModel):
    code: str


class DisableTwoFactorRequest(BaseModel):
    # One of the two; the recovery token comes from /auth/recovery/verify-questions
    password: Optional[str] = None
    recovery_token: Optional[str] = None


class RegenerateBackupCodesRequest(BaseModel):
    password: Optional[str] = None
    recovery_token: Optional[str] = None


class BackupLoginRequest(BaseModel):
    identifier: str
    password: str
    backup_code: str


class SecurityQuestionItem(BaseModel):
    question: str = Field(min_length=3, max_length=255)
    answer: str = Field(min_length=1, max_length=255)


class SetupQuestionsRequest(BaseModel):
    password: str
    questions: List[SecurityQuestionItem] = Field(min_length=3, max_length=3)


class GetQuestionsRequest(BaseModel):
    identifier: str


class VerifyQuestionsRequest(BaseModel):
    identifier: str
    answers: List[str] = Field(min_length=3, max_length=3)


# -- Responses -------------------------------------------------------------


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    capabilities: List[str]


class LoginResponse(BaseModel):
    access_token: Optional[str] = None
    token_type: Optional[str] = None
    role: Optional[str] = None
    capabilities: List[str] = []
    requires_2fa: bool = False
    warning: Optional[str] = None
    backup_codes_remaining: Optional[int] = None


class TwoFactorSetupResponse(BaseModel):
    secret: str
    otpauth_uri: str
    qr_code: str             # base64 PNG


class BackupCodesResponse(BaseModel):
    backup_codes: List[str]
    warning: str = "Store these codes somewhere safe. Each can be used once."


class BackupCodesStatusResponse(BaseModel):
    two_factor_enabled: bool
    remaining: int
    generated_at: Optional[datetime] = None


class QuestionsResponse(BaseModel):
    questions: List[str]


class RecoveryTokenResponse(BaseModel):
    recovery_token: str
    expires_in: int


class UserInfoResponse(BaseModel):
    id: int
    username: str
    email: str
    phone_number: str
    account_type: str
    is_active: bool
    two_factor_enabled: bool
    has_secondary_secret: bool
    role: str
    capabilities: List[str]
    last_login_at: Optional[datetime] = None


class SecurityEventRow(BaseModel):
    event_type: str
    timestamp: datetime
    ip_address: Optional[str] = None
    success: bool


class SecurityStatusResponse(BaseModel):
    account_locked: bool
    retry_after: int
    locked_until: Optional[datetime] = None
    failed_login_attempts: int
    max_failed_attempts: int
    two_factor_enabled: bool
    recent_events: List[SecurityEventRow]
