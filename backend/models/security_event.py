# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""SecurityEvent ORM model – immutable per-account security history."""

from sqlalchemy import Column, Integer, String, Boolean, Enum, DateTime, ForeignKey, JSON

from database import Base

EVENT_TYPES = (
    "login_success",
    "login_failure",
    "password_change",
    "unusual_activity",
    "account_locked",
    "account_unlocked",
    "reauth_success",
    "reauth_failure",
    "backup_code_used",
)


class SecurityEvent(Base):
    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(Enum(*EVENT_TYPES, name="security_event_type"), nullable=False, index=True)
    # Written explicitly in UTC; windowed queries compare against it
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    details = Column(JSON, nullable=True)
