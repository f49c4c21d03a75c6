# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Error taxonomy shared by the client-side cipher package and the API.

These exceptions carry no FastAPI dependency so ``cipher`` can use them on
its own.  ``main.py`` maps every :class:`VaultError` onto a JSON response
with ``status_code`` and, where set, a ``Retry-After`` header.

The ``detail`` text is what the caller sees.  It is deliberately generic for
credential failures; the real reason goes to the audit trail.
"""

from datetime import datetime
from typing import Optional


class VaultError(Exception):
    status_code = 400
    detail = "Request failed"

    def __init__(self, detail: Optional[str] = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail}


class AuthFailure(VaultError):
    """Wrong secret, wrong key, or ciphertext that fails authentication."""

    status_code = 401
    detail = "Invalid password"


class VerificationTimeout(AuthFailure):
    """Password verification did not finish in time; treated as a denial."""


class RateLimited(VaultError):
    status_code = 429
    detail = "Too many attempts. Please try again later."

    def __init__(self, retry_after: int, detail: Optional[str] = None):
        self.retry_after = max(int(retry_after), 1)
        super().__init__(detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail, "retry_after": self.retry_after}


class AccountLocked(VaultError):
    status_code = 423
    detail = "Account is temporarily locked due to too many failed attempts"

    def __init__(self, retry_after: int, locked_until: Optional[datetime] = None,
                 detail: Optional[str] = None):
        self.retry_after = max(int(retry_after), 0)
        self.locked_until = locked_until
        super().__init__(detail)

    def to_dict(self) -> dict:
        return {
            "detail": self.detail,
            "retry_after": self.retry_after,
            "locked_until": self.locked_until.isoformat() if self.locked_until else None,
        }


class Infected(VaultError):
    status_code = 403
    detail = "File cannot be accessed"


class PermissionDenied(VaultError):
    status_code = 403
    detail = "Your session does not allow this operation"


class UnusualActivity(VaultError):
    status_code = 418
    detail = "Unusual activity detected. Please verify your identity."

    def to_dict(self) -> dict:
        return {"detail": self.detail, "requires_verification": True}


class OperationCancelled(VaultError):
    """Raised between chunks when the caller cancels a file operation."""

    status_code = 499
    detail = "Operation cancelled"
