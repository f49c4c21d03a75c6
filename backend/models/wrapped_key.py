# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""WrappedKey ORM model – the account DEK, wrapped under one role's KEK."""

from sqlalchemy import Column, Integer, String, Text, Enum, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from database import Base


class WrappedKey(Base):
    __tablename__ = "wrapped_keys"
    __table_args__ = (UniqueConstraint("user_id", "kek_role", name="uq_wrapped_keys_user_role"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    kek_role = Column(Enum("primary", "secondary", name="kek_role"), nullable=False)
    # base64( wrapped DEK || 16-byte GCM tag ) – the plaintext DEK never reaches the server
    ciphertext = Column(Text, nullable=False)
    nonce = Column(String(32), nullable=False)
    salt = Column(String(64), nullable=False)
    # scrypt cost the client used; required to re-derive the KEK
    kdf_n = Column(Integer, nullable=False)
    kdf_r = Column(Integer, nullable=False)
    kdf_p = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def to_envelope_dict(self) -> dict:
        return {
            "kek_role": self.kek_role,
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
            "salt": self.salt,
            "kdf": {"n": self.kdf_n, "r": self.kdf_r, "p": self.kdf_p},
        }
