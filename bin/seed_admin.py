# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Bootstrap script – creates the first operator account.

Run once after the initial migration:
    alembic upgrade head
    python bin/seed_admin.py

Reads FIRST_ADMIN_USERNAME, FIRST_ADMIN_EMAIL, FIRST_ADMIN_PHONE and
FIRST_ADMIN_PASSWORD from etc/app.conf.  After the row is inserted those
values are no longer used by the application.

The operator provisions their own Primary envelope from a client after the
first login; nothing key-related is created here.
"""

import sys
import os

# ---------------------------------------------------------------------------
# Path setup so backend modules are importable
# ---------------------------------------------------------------------------
# bin/seed_admin.py  →  ../  →  project root
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_BACKEND_DIR  = os.path.join(_PROJECT_ROOT, "backend")
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from sqlalchemy import or_                # noqa: E402

from core.config import settings          # noqa: E402
from core.logger import logger            # noqa: E402
from core.security import hash_password   # noqa: E402
from database import SessionLocal         # noqa: E402
from models.user import User              # noqa: E402

_REQUIRED = ("first_admin_username", "first_admin_email", "first_admin_phone", "first_admin_password")


def seed() -> int:
    missing = [name.upper() for name in _REQUIRED if not getattr(settings, name)]
    if missing:
        logger.warning("[seed_admin] %s not set in etc/app.conf – nothing to do.", ", ".join(missing))
        return 1

    username = settings.first_admin_username.strip().lower()
    email = settings.first_admin_email.strip().lower()

    db = SessionLocal()
    try:
        existing = db.query(User).filter(or_(User.username == username, User.email == email)).first()
        if existing:
            logger.info("[seed_admin] Account '%s' already exists – skipping.", existing.username)
            return 0

        db.add(User(
            username=username,
            email=email,
            phone_number=settings.first_admin_phone.strip(),
            password_hash=hash_password(settings.first_admin_password),
            account_type="admin",
            is_active=True,
            failed_login_attempts=0,
            account_locked=False,
        ))
        db.commit()
        logger.info("[seed_admin] Operator '%s' created successfully.", username)
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(seed())
