# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Ciphertext blob storage on the local filesystem.

Stands in for an object store behind the same four calls:
``put_ciphertext``, ``get_ciphertext``, ``signed_url`` and ``delete``.
Signed URLs are short-lived HS256 tokens served by ``GET /files/blob/{token}``.
Only ciphertext is ever written here.
"""

import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Tuple

import jwt as _jwt
from fastapi import Request

from core.errors import AuthFailure
from core.logger import logger

_BLOB_PURPOSE = "blob"


class LocalBlobStore:
    def __init__(self, root: str, secret_key: str, url_ttl_seconds: int):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._secret_key = secret_key
        self.url_ttl_seconds = url_ttl_seconds

    def _path(self, locator: str) -> Path:
        path = (self.root / locator).resolve()
        if self.root not in path.parents:
            raise ValueError("Locator escapes the blob root")
        return path

    def put_ciphertext(self, data: bytes, owner_id: int) -> str:
        locator = f"u{owner_id}/{uuid.uuid4().hex}.bin"
        path = self._path(locator)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("Stored blob %s (%d bytes)", locator, len(data))
        return locator

    def get_ciphertext(self, locator: str) -> bytes:
        return self._path(locator).read_bytes()

    def delete(self, locator: str) -> None:
        path = self._path(locator)
        if path.exists():
            path.unlink()
            logger.info("Deleted blob %s", locator)

    def signed_url(self, locator: str, disposition: str = "download") -> Tuple[str, int]:
        """
        Returns
        -------
        url        : str   relative URL carrying the signed token
        expires_in : int   seconds until the token stops working
        """
        expires = datetime.now(timezone.utc) + timedelta(seconds=self.url_ttl_seconds)
        token = _jwt.encode(
            {"loc": locator, "disp": disposition, "purpose": _BLOB_PURPOSE, "exp": expires},
            self._secret_key,
            algorithm="HS256",
        )
        return f"/files/blob/{token}", self.url_ttl_seconds

    def resolve_token(self, token: str) -> Tuple[str, str]:
        """``(locator, disposition)`` for a valid token; :class:`AuthFailure` otherwise."""
        try:
            claims = _jwt.decode(token, self._secret_key, algorithms=["HS256"])
        except (_jwt.ExpiredSignatureError, _jwt.InvalidTokenError):
            raise AuthFailure("Link is invalid or has expired")
        if claims.get("purpose") != _BLOB_PURPOSE or "loc" not in claims:
            raise AuthFailure("Link is invalid or has expired")
        return claims["loc"], claims.get("disp", "download")


def get_blob_store(request: Request) -> LocalBlobStore:
    """Dependency: the application's blob store."""
    return request.app.state.blob_store
