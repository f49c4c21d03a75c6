# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""AuditLog ORM model – append-only trail of security-relevant actions."""

from sqlalchemy import Column, Integer, String, Text, Boolean, Enum, DateTime, ForeignKey
from sqlalchemy.sql import func

from database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # The account the action was performed by or against (NULL if unknown)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action = Column(String(64), nullable=False, index=True)   # e.g. "download_denied"
    resource = Column(String(128), nullable=True)             # e.g. "file:42"
    detail = Column(Text, nullable=True)                      # the real reason, never a secret
    request_ip = Column(String(45), nullable=True)            # supports IPv6
    user_agent = Column(String(512), nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    risk_level = Column(
        Enum("low", "medium", "high", "critical", name="audit_risk_level"),
        nullable=False,
        default="low",
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
