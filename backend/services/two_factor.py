# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Two-factor authentication: TOTP (RFC 6238) and single-use backup codes.

Backup codes are shown to the user once, in ``XXXX-XXXX`` form, and only
their SHA-256 is stored.  Consuming a code is one conditional UPDATE
(``used = false`` in the WHERE clause), so a code can be spent exactly once
even under concurrent requests.
"""

import base64
import hashlib
import io
import secrets
from typing import List, Optional

import pyotp
import qrcode
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import settings
from models.backup_code import BackupCode
from models.user import User

ISSUER = "Personal Vault"

# No 0/O or 1/I – codes get read off paper
_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


# -- TOTP ----------------------------------------------------------------------


def generate_totp_secret() -> str:
    return pyotp.random_base32()


def provisioning_uri(secret: str, username: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=username, issuer_name=ISSUER)


def qr_code_base64(secret: str, username: str) -> str:
    """PNG of the otpauth:// URI, base64 encoded for an ``<img src="data:...">``."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(provisioning_uri(secret, username))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def verify_totp(secret: Optional[str], code: Optional[str]) -> bool:
    """Six digits, one step of clock drift either way."""
    if not secret or not code:
        return False
    code = code.strip().replace(" ", "")
    if len(code) != 6 or not code.isdigit():
        return False
    return pyotp.TOTP(secret).verify(code, valid_window=1)


# -- Backup codes --------------------------------------------------------------


def _normalise(code: str) -> str:
    return code.strip().upper().replace("-", "").replace(" ", "")


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(_normalise(code).encode("ascii", "ignore")).hexdigest()


def generate_backup_codes(count: Optional[int] = None) -> List[str]:
    count = count or settings.backup_code_count
    codes = []
    for _ in range(count):
        raw = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))
        codes.append(f"{raw[:4]}-{raw[4:]}")
    return codes


def replace_backup_codes(db: Session, user: User, count: Optional[int] = None) -> List[str]:
    """Discard every existing code and issue a fresh set.  Returns the plaintext codes."""
    codes = generate_backup_codes(count)
    db.query(BackupCode).filter(BackupCode.user_id == user.id).delete(synchronize_session=False)
    for code in codes:
        db.add(BackupCode(user_id=user.id, code_hash=hash_backup_code(code)))
    user.backup_codes_generated_at = utcnow()
    db.commit()
    return codes


def remaining_backup_codes(db: Session, user: User) -> int:
    return (
        db.query(func.count(BackupCode.id))
        .filter(BackupCode.user_id == user.id, BackupCode.used.is_(False))
        .scalar()
    )


def consume_backup_code(db: Session, user: User, code: str) -> Optional[int]:
    """
    Spend *code*.  Returns the number of unused codes left, or None when the
    code is unknown or was already used.
    """
    if not code or len(_normalise(code)) != 8:
        return None
    result = db.execute(
        update(BackupCode)
        .where(
            BackupCode.user_id == user.id,
            BackupCode.code_hash == hash_backup_code(code),
            BackupCode.used.is_(False),
        )
        .values(used=True, used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        return None
    return remaining_backup_codes(db, user)


def clear_two_factor(db: Session, user: User) -> None:
    user.two_factor_enabled = False
    user.totp_secret = None
    user.totp_temp_secret = None
    user.backup_codes_generated_at = None
    db.query(BackupCode).filter(BackupCode.user_id == user.id).delete(synchronize_session=False)
    db.commit()
