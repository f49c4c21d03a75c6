# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Pydantic models for wrapped-DEK envelopes (the JSON form of ``cipher.envelope.Envelope``)."""

import base64
import binascii
from typing import List, Literal

from pydantic import BaseModel, Field, field_validator


def check_b64(value: str, exact_len: int = None, min_len: int = 1) -> str:
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("must be base64")
    if exact_len is not None and len(raw) != exact_len:
        raise ValueError(f"must decode to {exact_len} bytes")
    if len(raw) < min_len:
        raise ValueError(f"must decode to at least {min_len} bytes")
    return value


class KdfParamsBody(BaseModel):
    n: int = Field(ge=2)
    r: int = Field(ge=1)
    p: int = Field(ge=1)

    @field_validator("n")
    @classmethod
    def _power_of_two(cls, v: int) -> int:
        if v & (v - 1):
            raise ValueError("n must be a power of two")
        return v


class EnvelopeBody(BaseModel):
    kek_role: Literal["primary", "secondary"]
    ciphertext: str     # base64( wrapped DEK || tag ) – 48 bytes for a 32-byte DEK
    nonce: str          # base64( 12 bytes )
    salt: str           # base64( >= 16 bytes )
    kdf: KdfParamsBody

    @field_validator("ciphertext")
    @classmethod
    def _ciphertext(cls, v: str) -> str:
        return check_b64(v, exact_len=48)

    @field_validator("nonce")
    @classmethod
    def _nonce(cls, v: str) -> str:
        return check_b64(v, exact_len=12)

    @field_validator("salt")
    @classmethod
    def _salt(cls, v: str) -> str:
        return check_b64(v, min_len=16)


class SecondaryEnvelopeRequest(BaseModel):
    view_password: str = Field(min_length=8)
    envelope: EnvelopeBody


class EnvelopeListResponse(BaseModel):
    envelopes: List[EnvelopeBody]
