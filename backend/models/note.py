# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Note ORM model.

A row holds either the sealed form (ciphertext + nonce) or, for rows written
before client-side encryption, the legacy plaintext title/content.  Never
both: an update clears the columns of the format it replaces.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func

from database import Base


class Note(Base):
    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    is_encrypted = Column(Boolean, nullable=False, default=True)
    ciphertext = Column(Text, nullable=True)
    nonce = Column(String(32), nullable=True)
    title = Column(String(255), nullable=True)     # legacy only
    content = Column(Text, nullable=True)          # legacy only

    tags = Column(JSON, nullable=False, default=list)   # unencrypted; used for filtering
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)
