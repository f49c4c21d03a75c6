# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Content encryption under the account DEK (AES-256-GCM, client side).

Three shapes of payload
-----------------------
* Notes     – title and body sealed together as one JSON document.
* Metadata  – short strings (file name, MIME type) as ``"pv1:" + base64``.
              Anything without that marker is legacy plaintext and passes
              through :func:`decrypt_metadata` unchanged.
* Files     – chunked.  Layout::

      b"PVF1" | chunk_size (u32 BE) | record*
      record  = nonce (12) | length (u32 BE) | ciphertext+tag

  Every chunk has its own random nonce and is bound (associated data) to the
  per-file nonce, its index and a final-chunk flag, so reordering, splicing
  across files and truncation all fail authentication.

Every nonce is fresh per encryption; encrypting the same plaintext twice
gives different ciphertexts.
"""

import base64
import io
import json
import secrets
import struct
import threading
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cipher.kdf import Key
from core.errors import AuthFailure, OperationCancelled

NONCE_LENGTH = 12
DEFAULT_CHUNK_SIZE = 64 * 1024

_NOTE_AAD = b"pvault:note"
_METADATA_AAD = b"pvault:meta"
METADATA_MARKER = "pv1:"

FILE_MAGIC = b"PVF1"
_HEADER = struct.Struct(">4sI")
_RECORD_LEN = struct.Struct(">I")
_CHUNK_AAD = struct.Struct(">QB")

ProgressCallback = Callable[[int], None]


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlainNote:
    """Decrypted note, or a legacy row that was never encrypted."""

    title: str
    body: str


@dataclass(frozen=True)
class SealedNote:
    ciphertext: bytes
    nonce: bytes

    def to_dict(self) -> dict:
        return {
            "format": "sealed",
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SealedNote":
        return cls(base64.b64decode(data["ciphertext"]), base64.b64decode(data["nonce"]))


NoteBody = Union[PlainNote, SealedNote]


def _open(dek: Key, nonce: bytes, ciphertext: bytes, aad: bytes) -> bytes:
    try:
        return AESGCM(dek.material).decrypt(nonce, ciphertext, aad)
    except InvalidTag:
        raise AuthFailure("Content could not be decrypted")


def encrypt_note(title: str, body: str, dek: Key) -> SealedNote:
    nonce = secrets.token_bytes(NONCE_LENGTH)
    document = json.dumps({"title": title, "body": body}, ensure_ascii=False).encode("utf-8")
    return SealedNote(AESGCM(dek.material).encrypt(nonce, document, _NOTE_AAD), nonce)


def decrypt_note(sealed: SealedNote, dek: Key) -> PlainNote:
    """Raises :class:`AuthFailure` on a wrong DEK or tampered ciphertext."""
    document = json.loads(_open(dek, sealed.nonce, sealed.ciphertext, _NOTE_AAD))
    return PlainNote(title=document["title"], body=document["body"])


def open_note(note: NoteBody, dek: Key) -> PlainNote:
    """Decrypt a sealed note; legacy plain notes are returned as they are."""
    if isinstance(note, PlainNote):
        return note
    return decrypt_note(note, dek)


# ---------------------------------------------------------------------------
# Metadata strings
# ---------------------------------------------------------------------------


def is_sealed_metadata(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(METADATA_MARKER)


def encrypt_metadata(value: str, dek: Key) -> str:
    nonce = secrets.token_bytes(NONCE_LENGTH)
    ct = AESGCM(dek.material).encrypt(nonce, value.encode("utf-8"), _METADATA_AAD)
    return METADATA_MARKER + base64.b64encode(nonce + ct).decode("ascii")


def decrypt_metadata(value: str, dek: Key) -> str:
    """
    Decrypt a value produced by :func:`encrypt_metadata`.

    Values without the ``pv1:`` marker predate metadata encryption and are
    returned unchanged.  A marked value that fails to decrypt raises
    :class:`AuthFailure` – it is never passed off as plaintext.
    """
    if not is_sealed_metadata(value):
        return value
    try:
        raw = base64.b64decode(value[len(METADATA_MARKER):], validate=True)
    except ValueError:
        raise AuthFailure("Content could not be decrypted")
    if len(raw) <= NONCE_LENGTH:
        raise AuthFailure("Content could not be decrypted")
    return _open(dek, raw[:NONCE_LENGTH], raw[NONCE_LENGTH:], _METADATA_AAD).decode("utf-8")


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EncryptedFilePayload:
    ciphertext: bytes
    nonce: bytes
    encrypted_name: str
    encrypted_mime_type: str


def _chunk_aad(file_nonce: bytes, index: int, is_last: bool) -> bytes:
    return file_nonce + _CHUNK_AAD.pack(index, 1 if is_last else 0)


def _read_chunks(source: BinaryIO, chunk_size: int) -> Iterator[Tuple[bytes, bool]]:
    """Yield ``(chunk, is_last)``; an empty source yields one empty final chunk."""
    current = source.read(chunk_size)
    while True:
        following = source.read(chunk_size) if current else b""
        is_last = not following
        yield current, is_last
        if is_last:
            return
        current = following


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled()


def _as_stream(data: Union[bytes, BinaryIO]) -> Tuple[BinaryIO, Optional[int]]:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(data)), len(data)
    return data, None


def iter_encrypt_chunks(source: BinaryIO, dek: Key, file_nonce: bytes,
                        chunk_size: int = DEFAULT_CHUNK_SIZE,
                        cancel: Optional[threading.Event] = None) -> Iterator[Tuple[bytes, int]]:
    """
    Generator form of file encryption.

    Yields the header first, then one ``(record, plaintext_length)`` per
    chunk, checking *cancel* before each chunk.
    """
    aesgcm = AESGCM(dek.material)
    yield _HEADER.pack(FILE_MAGIC, chunk_size), 0
    for index, (chunk, is_last) in enumerate(_read_chunks(source, chunk_size)):
        _check_cancel(cancel)
        nonce = secrets.token_bytes(NONCE_LENGTH)
        ct = aesgcm.encrypt(nonce, chunk, _chunk_aad(file_nonce, index, is_last))
        yield nonce + _RECORD_LEN.pack(len(ct)) + ct, len(chunk)


def encrypt_file(data: Union[bytes, BinaryIO], dek: Key, name: str, mime_type: str,
                 on_progress: Optional[ProgressCallback] = None,
                 cancel: Optional[threading.Event] = None,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 size: Optional[int] = None) -> EncryptedFilePayload:
    """
    Encrypt a file body and its name/MIME type.

    *data* may be bytes or a readable binary stream (pass *size* for stream
    progress).  *on_progress* receives a non-decreasing percentage after each
    chunk and always ends at 100.  Setting *cancel* stops the operation
    between chunks with :class:`OperationCancelled`.
    """
    source, total = _as_stream(data)
    total = size if total is None else total
    file_nonce = secrets.token_bytes(NONCE_LENGTH)

    out = io.BytesIO()
    done = 0
    last_reported = 0
    for record, plain_len in iter_encrypt_chunks(source, dek, file_nonce, chunk_size, cancel):
        out.write(record)
        done += plain_len
        if on_progress is not None and total:
            pct = min(100, done * 100 // total)
            if pct > last_reported:
                last_reported = pct
                on_progress(pct)
    if on_progress is not None and last_reported < 100:
        on_progress(100)

    return EncryptedFilePayload(
        ciphertext=out.getvalue(),
        nonce=file_nonce,
        encrypted_name=encrypt_metadata(name, dek),
        encrypted_mime_type=encrypt_metadata(mime_type, dek),
    )


def iter_decrypt_chunks(ciphertext: bytes, file_nonce: bytes, dek: Key,
                        cancel: Optional[threading.Event] = None) -> Iterator[Tuple[bytes, int]]:
    """
    Generator form of file decryption: yields ``(plaintext_chunk, bytes_consumed)``.

    Raises :class:`AuthFailure` on a bad header, a tampered or reordered
    chunk, or a stream that stops before its final chunk.
    """
    if len(ciphertext) < _HEADER.size:
        raise AuthFailure("Content could not be decrypted")
    magic, _chunk_size = _HEADER.unpack_from(ciphertext, 0)
    if magic != FILE_MAGIC:
        raise AuthFailure("Content could not be decrypted")

    aesgcm = AESGCM(dek.material)
    offset = _HEADER.size
    index = 0
    prefix = NONCE_LENGTH + _RECORD_LEN.size
    while True:
        _check_cancel(cancel)
        if len(ciphertext) - offset < prefix:
            raise AuthFailure("Content could not be decrypted")
        nonce = ciphertext[offset:offset + NONCE_LENGTH]
        (length,) = _RECORD_LEN.unpack_from(ciphertext, offset + NONCE_LENGTH)
        start = offset + prefix
        end = start + length
        if end > len(ciphertext):
            raise AuthFailure("Content could not be decrypted")
        is_last = end == len(ciphertext)
        try:
            chunk = aesgcm.decrypt(nonce, ciphertext[start:end], _chunk_aad(file_nonce, index, is_last))
        except InvalidTag:
            raise AuthFailure("Content could not be decrypted")
        yield chunk, end - offset
        if is_last:
            return
        offset = end
        index += 1


def decrypt_file(ciphertext: bytes, nonce: bytes, dek: Key,
                 on_progress: Optional[ProgressCallback] = None,
                 cancel: Optional[threading.Event] = None) -> bytes:
    """Inverse of :func:`encrypt_file` for the body; metadata goes through :func:`decrypt_metadata`."""
    out = io.BytesIO()
    consumed = _HEADER.size
    total = len(ciphertext)
    last_reported = 0
    for chunk, used in iter_decrypt_chunks(ciphertext, nonce, dek, cancel):
        out.write(chunk)
        consumed += used
        if on_progress is not None:
            pct = min(100, consumed * 100 // total)
            if pct > last_reported:
                last_reported = pct
                on_progress(pct)
    if on_progress is not None and last_reported < 100:
        on_progress(100)
    return out.getvalue()
