# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Pydantic request / response models for the notes endpoints.

A note body is a tagged union on ``format``:

* ``plain``  – legacy rows written before client-side encryption;
* ``sealed`` – AES-GCM ciphertext of ``{"title", "body"}`` plus its nonce.

Requests only take ``sealed`` bodies; ``plain`` is read back for old rows.
"""

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from keys.schemas import check_b64

_MAX_TAGS = 20


def _clean_tags(tags: List[str]) -> List[str]:
    seen = []
    for tag in tags:
        tag = tag.strip().lower()[:50]
        if tag and tag not in seen:
            seen.append(tag)
    if len(seen) > _MAX_TAGS:
        raise ValueError(f"at most {_MAX_TAGS} tags")
    return seen


class PlainNoteBody(BaseModel):
    format: Literal["plain"]
    title: str = Field(max_length=255)
    content: str


class SealedNoteBody(BaseModel):
    format: Literal["sealed"]
    ciphertext: str
    nonce: str

    @field_validator("ciphertext")
    @classmethod
    def _ciphertext(cls, v: str) -> str:
        return check_b64(v, min_len=17)    # tag + at least one byte

    @field_validator("nonce")
    @classmethod
    def _nonce(cls, v: str) -> str:
        return check_b64(v, exact_len=12)


NoteBody = Annotated[Union[PlainNoteBody, SealedNoteBody], Field(discriminator="format")]


# -- Requests --------------------------------------------------------------


class NoteCreate(BaseModel):
    body: SealedNoteBody
    tags: List[str] = []

    @field_validator("tags")
    @classmethod
    def _tags(cls, v):
        return _clean_tags(v)


class NoteUpdate(BaseModel):
    body: Optional[SealedNoteBody] = None
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def _tags(cls, v):
        return None if v is None else _clean_tags(v)


# -- Responses -------------------------------------------------------------


class NoteResponse(BaseModel):
    id: int
    body: NoteBody
    tags: List[str]
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


class NoteListResponse(BaseModel):
    notes: List[NoteResponse]
