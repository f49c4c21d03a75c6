# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""User (account) ORM model."""

from sqlalchemy import Column, Integer, String, Boolean, Enum, DateTime
from sqlalchemy.sql import func

from database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False, index=True)   # stored lowercase
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone_number = Column(String(32), unique=True, nullable=False)

    # Primary secret (argon2).  Unlocks every capability.
    password_hash = Column(String(255), nullable=False)
    # Secondary ("view") secret.  NULL until the owner shares one.
    view_password_hash = Column(String(255), nullable=True)
    # Bumped whenever the Secondary secret is shared or revoked; Secondary
    # tokens carry the value they were issued under.
    secondary_epoch = Column(Integer, nullable=False, default=0)

    # Operator flag – independent of the per-session Role.
    account_type = Column(Enum("admin", "user", name="account_type"), nullable=False, default="user")
    is_active = Column(Boolean, nullable=False, default=True)

    # Lockout state; only AccountLockout writes these.
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    account_locked = Column(Boolean, nullable=False, default=False)
    account_locked_until = Column(DateTime(timezone=True), nullable=True)
    account_locked_reason = Column(String(255), nullable=True)
    last_failed_login_at = Column(DateTime(timezone=True), nullable=True)

    # Two-factor authentication
    totp_secret = Column(String(64), nullable=True)
    totp_temp_secret = Column(String(64), nullable=True)   # pending until /2fa/verify
    two_factor_enabled = Column(Boolean, nullable=False, default=False)
    backup_codes_generated_at = Column(DateTime(timezone=True), nullable=True)

    last_login_at = Column(DateTime(timezone=True), nullable=True)
    # Set by emergency verification; suppresses unusual-activity checks for a while
    last_verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
