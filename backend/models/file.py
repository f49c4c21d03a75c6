# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""VaultFile ORM model – metadata for one encrypted blob."""

from sqlalchemy import Column, Integer, BigInteger, String, Text, Enum, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func

from database import Base

SCAN_STATUSES = ("pending", "scanning", "clean", "infected", "scan_error")


class VaultFile(Base):
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # "pv1:..." when sealed on the client; older rows may hold plaintext
    encrypted_name = Column(Text, nullable=False)
    encrypted_mime_type = Column(Text, nullable=False)
    # base64 per-file nonce the chunk AAD is bound to
    nonce = Column(String(32), nullable=False)
    size = Column(BigInteger, nullable=False, default=0)           # plaintext bytes
    ciphertext_size = Column(BigInteger, nullable=False, default=0)
    storage_locator = Column(String(255), nullable=False)
    virus_scan_status = Column(Enum(*SCAN_STATUSES, name="virus_scan_status"), nullable=False, default="pending")
    tags = Column(JSON, nullable=False, default=list)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
