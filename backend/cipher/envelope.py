# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Wrapped data-encryption keys.

Every account has one random DEK.  It is stored only wrapped: once under the
KEK derived from the Primary secret and, optionally, once under the KEK of
the Secondary secret.  The role is bound into the AES-GCM associated data,
so an envelope relabelled as the other role fails to open.
"""

import base64
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cipher.kdf import DEFAULT_PARAMS, KEY_LENGTH, KdfParams, Key, derive, generate_salt
from core.errors import AuthFailure
from core.roles import Role

NONCE_LENGTH = 12        # 96-bit nonce per NIST SP 800-38D


def _role_aad(role: Role) -> bytes:
    return b"pvault:dek:" + Role(role).value.encode("ascii")


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


@dataclass(frozen=True)
class Envelope:
    kek_role: Role
    ciphertext: bytes
    nonce: bytes
    salt: bytes
    kdf_params: KdfParams

    def to_dict(self) -> dict:
        """JSON-safe form, as sent to and stored by the API."""
        return {
            "kek_role": self.kek_role.value,
            "ciphertext": _b64(self.ciphertext),
            "nonce": _b64(self.nonce),
            "salt": _b64(self.salt),
            "kdf": self.kdf_params.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Envelope":
        return cls(
            kek_role=Role(data["kek_role"]),
            ciphertext=base64.b64decode(data["ciphertext"]),
            nonce=base64.b64decode(data["nonce"]),
            salt=base64.b64decode(data["salt"]),
            kdf_params=KdfParams.from_dict(data["kdf"]),
        )


def generate_dek() -> Key:
    return Key(secrets.token_bytes(KEY_LENGTH))


def wrap(dek: Key, kek: Key, role: Role, salt: bytes,
         params: KdfParams = DEFAULT_PARAMS) -> Envelope:
    """Encrypt *dek* under *kek* with a fresh nonce; *salt*/*params* describe how *kek* was derived."""
    nonce = secrets.token_bytes(NONCE_LENGTH)
    ciphertext = AESGCM(kek.material).encrypt(nonce, dek.material, _role_aad(role))
    return Envelope(Role(role), ciphertext, nonce, salt, params)


def unwrap(envelope: Envelope, kek: Key) -> Key:
    """
    Recover the DEK.  Raises :class:`AuthFailure` when *kek* is wrong or the
    envelope was tampered with (including a swapped role label).
    """
    try:
        raw = AESGCM(kek.material).decrypt(envelope.nonce, envelope.ciphertext,
                                          _role_aad(envelope.kek_role))
    except InvalidTag:
        raise AuthFailure()
    return Key(raw)


def seal(dek: Key, secret: str, role: Role, params: KdfParams = DEFAULT_PARAMS) -> Envelope:
    """Derive a KEK from *secret* under a fresh salt and wrap *dek* with it."""
    salt = generate_salt()
    return wrap(dek, derive(secret, salt, params), role, salt, params)


def open_envelope(envelope: Envelope, secret: str) -> Key:
    """Re-derive the KEK recorded in *envelope* from *secret* and unwrap."""
    return unwrap(envelope, derive(secret, envelope.salt, envelope.kdf_params))


def seal_new_account(primary_secret: str, params: KdfParams = DEFAULT_PARAMS):
    """
    First encryption operation of a new account.

    Returns
    -------
    dek      : Key        the fresh DEK (keep in memory only)
    envelope : Envelope   the Primary envelope to upload
    """
    dek = generate_dek()
    return dek, seal(dek, primary_secret, Role.PRIMARY, params)


def rewrap(dek: Key, new_secret: str, role: Role = Role.PRIMARY,
           params: KdfParams = DEFAULT_PARAMS) -> Envelope:
    """Password rotation: same DEK, new salt, new KEK.  Existing content stays readable."""
    return seal(dek, new_secret, role, params)
