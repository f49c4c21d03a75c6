# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Client-side vault session.

Unlocking tries the Primary envelope first, then the Secondary one; the role
of the session is simply whichever envelope the secret opened.  The session
holds the DEK and a read-through cache of decrypted notes until
:meth:`VaultSession.clear` is called (logout / lock screen).

Capability checks here only drive the client UX – the API enforces the same
table independently.
"""

import threading
from typing import Callable, Dict, Iterable, Optional

from cipher import content, envelope as env
from cipher.kdf import DEFAULT_PARAMS, KdfParams, Key
from core.errors import AuthFailure, PermissionDenied
from core.roles import Capability, Role, resolve_role


class NoteCache:
    """Decrypted notes keyed by note id.  Invalidate on every edit."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[int, content.PlainNote] = {}

    def get_or_load(self, note_id: int,
                    loader: Callable[[], content.PlainNote]) -> content.PlainNote:
        with self._lock:
            cached = self._entries.get(note_id)
        if cached is not None:
            return cached
        note = loader()
        with self._lock:
            self._entries[note_id] = note
        return note

    def invalidate(self, note_id: int) -> None:
        with self._lock:
            self._entries.pop(note_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, note_id):
        return note_id in self._entries


class VaultSession:
    def __init__(self, dek: Key, role: Role):
        self._dek: Optional[Key] = dek
        self.role = Role(role)
        self.notes = NoteCache()

    # -- unlocking ---------------------------------------------------------

    @classmethod
    def unlock(cls, secret: str, envelopes: Iterable[env.Envelope]) -> "VaultSession":
        """
        Open the vault with *secret*.

        Raises :class:`AuthFailure` ("Invalid password") when no envelope
        opens – the caller can't tell which role, if any, was close.
        """
        ordered = sorted(envelopes, key=lambda e: e.kek_role != Role.PRIMARY)
        for candidate in ordered:
            try:
                dek = env.open_envelope(candidate, secret)
            except AuthFailure:
                continue
            return cls(dek, candidate.kek_role)
        raise AuthFailure()

    def clear(self) -> None:
        """Forget the DEK and every decrypted note."""
        self._dek = None
        self.notes.clear()

    @property
    def is_open(self) -> bool:
        return self._dek is not None

    @property
    def dek(self) -> Key:
        if self._dek is None:
            raise RuntimeError("Vault session has been cleared")
        return self._dek

    # -- capabilities ------------------------------------------------------

    @property
    def capabilities(self):
        return resolve_role(self.role)

    def can(self, capability: Capability) -> bool:
        return Capability(capability) in self.capabilities

    def require(self, capability: Capability) -> None:
        if not self.can(capability):
            raise PermissionDenied()

    # -- notes -------------------------------------------------------------

    def seal_note(self, title: str, body: str, note_id: Optional[int] = None) -> content.SealedNote:
        """Encrypt a new note, or an edit of *note_id* (which drops its cache entry)."""
        if note_id is None:
            self.require(Capability.CREATE_NOTE)
        else:
            self.require(Capability.EDIT_NOTE)
            self.notes.invalidate(note_id)
        return content.encrypt_note(title, body, self.dek)

    def read_note(self, note_id: int, body: content.NoteBody) -> content.PlainNote:
        return self.notes.get_or_load(note_id, lambda: content.open_note(body, self.dek))

    def forget_note(self, note_id: int) -> None:
        self.notes.invalidate(note_id)

    # -- files -------------------------------------------------------------

    def encrypt_file(self, data, name: str, mime_type: str, **kwargs) -> content.EncryptedFilePayload:
        self.require(Capability.UPLOAD)
        return content.encrypt_file(data, self.dek, name, mime_type, **kwargs)

    def decrypt_file(self, ciphertext: bytes, nonce: bytes, **kwargs) -> bytes:
        self.require(Capability.VIEW_FILES)
        return content.decrypt_file(ciphertext, nonce, self.dek, **kwargs)

    def read_metadata(self, value: str) -> str:
        return content.decrypt_metadata(value, self.dek)

    # -- key management ----------------------------------------------------

    def provision_secondary(self, secondary_secret: str,
                            params: KdfParams = DEFAULT_PARAMS) -> env.Envelope:
        """Wrap the already-unwrapped DEK under the Secondary secret.  Primary only."""
        self.require(Capability.SHARE_SECONDARY_SECRET)
        return env.seal(self.dek, secondary_secret, Role.SECONDARY, params)

    def rewrap(self, new_secret: str, params: KdfParams = DEFAULT_PARAMS) -> env.Envelope:
        """New Primary envelope for a password change; the DEK itself is unchanged."""
        self.require(Capability.EDIT_SETTINGS)
        return env.rewrap(self.dek, new_secret, Role.PRIMARY, params)
