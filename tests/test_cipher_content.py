# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Note, metadata and chunked file encryption."""

import io
import threading

import pytest

from cipher import content
from cipher.envelope import generate_dek
from core.errors import AuthFailure, OperationCancelled


@pytest.fixture
def dek():
    return generate_dek()


def _records(blob: bytes):
    """Split a PVF1 blob into its header and raw records."""
    header, rest = blob[:8], blob[8:]
    records = []
    while rest:
        length = int.from_bytes(rest[12:16], "big")
        records.append(rest[:16 + length])
        rest = rest[16 + length:]
    return header, records


# -- notes ---------------------------------------------------------------------


def test_note_round_trip(dek):
    sealed = content.encrypt_note("Groceries", "eggs, milk – ünïcode", dek)
    assert content.decrypt_note(sealed, dek) == content.PlainNote("Groceries", "eggs, milk – ünïcode")


def test_same_note_encrypts_differently(dek):
    first = content.encrypt_note("t", "b", dek)
    second = content.encrypt_note("t", "b", dek)
    assert first.nonce != second.nonce
    assert first.ciphertext != second.ciphertext


def test_note_under_other_dek_fails(dek):
    sealed = content.encrypt_note("t", "b", dek)
    with pytest.raises(AuthFailure):
        content.decrypt_note(sealed, generate_dek())


def test_open_note_passes_legacy_plain_note_through(dek):
    legacy = content.PlainNote("old title", "old body")
    assert content.open_note(legacy, dek) is legacy


def test_sealed_note_wire_form(dek):
    sealed = content.encrypt_note("t", "b", dek)
    data = sealed.to_dict()
    assert data["format"] == "sealed"
    assert content.SealedNote.from_dict(data) == sealed


# -- metadata ------------------------------------------------------------------


def test_metadata_round_trip(dek):
    sealed = content.encrypt_metadata("tax-return-2025.pdf", dek)
    assert sealed.startswith(content.METADATA_MARKER)
    assert "tax-return" not in sealed
    assert content.decrypt_metadata(sealed, dek) == "tax-return-2025.pdf"


def test_legacy_plaintext_metadata_is_returned_unchanged(dek):
    assert content.decrypt_metadata("holiday.jpg", dek) == "holiday.jpg"
    assert content.decrypt_metadata("", dek) == ""


def test_marked_metadata_that_fails_is_not_passed_off_as_plaintext(dek):
    sealed = content.encrypt_metadata("secret.txt", dek)
    with pytest.raises(AuthFailure):
        content.decrypt_metadata(sealed, generate_dek())
    with pytest.raises(AuthFailure):
        content.decrypt_metadata(content.METADATA_MARKER + "not base64!", dek)


# -- files ---------------------------------------------------------------------


def test_file_round_trip_across_chunks(dek):
    data = bytes(range(256)) * 5
    payload = content.encrypt_file(data, dek, "bytes.bin", "application/octet-stream", chunk_size=100)
    assert payload.ciphertext.startswith(content.FILE_MAGIC)
    assert content.decrypt_file(payload.ciphertext, payload.nonce, dek) == data
    assert content.decrypt_metadata(payload.encrypted_name, dek) == "bytes.bin"
    assert content.decrypt_metadata(payload.encrypted_mime_type, dek) == "application/octet-stream"


def test_empty_file_round_trip(dek):
    payload = content.encrypt_file(b"", dek, "empty", "text/plain")
    assert content.decrypt_file(payload.ciphertext, payload.nonce, dek) == b""


def test_stream_input(dek):
    data = b"x" * 1000
    payload = content.encrypt_file(io.BytesIO(data), dek, "s", "text/plain", chunk_size=64, size=len(data))
    assert content.decrypt_file(payload.ciphertext, payload.nonce, dek) == data


def test_truncated_file_fails(dek):
    payload = content.encrypt_file(b"0123456789", dek, "n", "text/plain", chunk_size=4)
    header, records = _records(payload.ciphertext)
    assert len(records) == 3
    with pytest.raises(AuthFailure):
        content.decrypt_file(header + records[0] + records[1], payload.nonce, dek)


def test_reordered_chunks_fail(dek):
    payload = content.encrypt_file(b"0123456789", dek, "n", "text/plain", chunk_size=4)
    header, records = _records(payload.ciphertext)
    with pytest.raises(AuthFailure):
        content.decrypt_file(header + records[1] + records[0] + records[2], payload.nonce, dek)


def test_chunk_spliced_from_other_file_fails(dek):
    first = content.encrypt_file(b"aaaabbbb", dek, "a", "text/plain", chunk_size=4)
    second = content.encrypt_file(b"ccccdddd", dek, "c", "text/plain", chunk_size=4)
    header, records = _records(first.ciphertext)
    _, foreign = _records(second.ciphertext)
    with pytest.raises(AuthFailure):
        content.decrypt_file(header + foreign[0] + records[1], first.nonce, dek)


def test_bad_magic_fails(dek):
    with pytest.raises(AuthFailure):
        content.decrypt_file(b"NOPE" + b"\x00" * 40, b"\x00" * 12, dek)


def test_progress_is_monotonic_and_ends_at_100(dek):
    seen = []
    payload = content.encrypt_file(b"z" * 1000, dek, "p", "text/plain", on_progress=seen.append, chunk_size=100)
    assert seen == sorted(seen)
    assert seen[-1] == 100
    assert len(seen) > 1

    seen.clear()
    content.decrypt_file(payload.ciphertext, payload.nonce, dek, on_progress=seen.append)
    assert seen == sorted(seen)
    assert seen[-1] == 100


def test_cancel_stops_between_chunks(dek):
    cancel = threading.Event()
    calls = []

    def on_progress(pct):
        calls.append(pct)
        cancel.set()

    with pytest.raises(OperationCancelled):
        content.encrypt_file(b"q" * 400, dek, "c", "text/plain", on_progress=on_progress,
                             cancel=cancel, chunk_size=100)
    assert len(calls) == 1


def test_cancel_before_decrypt(dek):
    payload = content.encrypt_file(b"q" * 400, dek, "c", "text/plain", chunk_size=100)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelled):
        content.decrypt_file(payload.ciphertext, payload.nonce, dek, cancel=cancel)


def test_concurrent_encryptions_share_one_key(dek):
    results = {}

    def work(i):
        body = f"note {i}".encode() * 50
        payload = content.encrypt_file(body, dek, f"{i}.txt", "text/plain", chunk_size=32)
        results[i] = content.decrypt_file(payload.ciphertext, payload.nonce, dek) == body

    threads = [threading.Thread(target=work, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results == {i: True for i in range(8)}
