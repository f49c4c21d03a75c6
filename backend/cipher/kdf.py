# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Key derivation – turns a user secret into a key-encryption key (KEK).

scrypt is memory-hard; its cost parameters are fixed when an envelope is
provisioned and stored beside the salt so the same KEK can be re-derived on
any client later.
"""

import secrets
from dataclasses import dataclass, field

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

KEY_LENGTH = 32          # AES-256
SALT_LENGTH = 16
MIN_SALT_LENGTH = 16


@dataclass(frozen=True)
class Key:
    """
    Immutable 256-bit key handle.

    ``repr`` never shows the material so keys can't leak through logging or
    tracebacks.
    """

    material: bytes = field(repr=False)

    def __post_init__(self):
        if not isinstance(self.material, (bytes, bytearray)) or len(self.material) != KEY_LENGTH:
            raise ValueError(f"Key material must be exactly {KEY_LENGTH} bytes")
        object.__setattr__(self, "material", bytes(self.material))


@dataclass(frozen=True)
class KdfParams:
    """scrypt cost: CPU/memory cost ``n`` (power of two), block size ``r``, parallelism ``p``."""

    n: int = 2 ** 15
    r: int = 8
    p: int = 1

    def __post_init__(self):
        if self.n < 2 or self.n & (self.n - 1):
            raise ValueError("scrypt n must be a power of two greater than 1")
        if self.r < 1 or self.p < 1:
            raise ValueError("scrypt r and p must be positive")

    def to_dict(self) -> dict:
        return {"n": self.n, "r": self.r, "p": self.p}

    @classmethod
    def from_dict(cls, data: dict) -> "KdfParams":
        return cls(n=int(data["n"]), r=int(data["r"]), p=int(data["p"]))


DEFAULT_PARAMS = KdfParams()


def generate_salt() -> bytes:
    return secrets.token_bytes(SALT_LENGTH)


def derive(secret: str, salt: bytes, params: KdfParams = DEFAULT_PARAMS) -> Key:
    """
    Derive a KEK from *secret* and *salt*.

    Deterministic: the same inputs always give the same key.  A salt shorter
    than 16 bytes is a programming error and raises ``ValueError``.
    """
    if len(salt) < MIN_SALT_LENGTH:
        raise ValueError(f"Salt must be at least {MIN_SALT_LENGTH} bytes")
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=params.n, r=params.r, p=params.p)
    return Key(kdf.derive(secret.encode("utf-8")))
