# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the files endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# -- Requests --------------------------------------------------------------


class ReAuthRequest(BaseModel):
    password: str = Field(min_length=1)    # the Primary secret, every time


# -- Responses -------------------------------------------------------------


class FileResponse(BaseModel):
    id: int
    encrypted_name: str
    encrypted_mime_type: str
    nonce: str
    size: int
    virus_scan_status: str
    tags: List[str]
    uploaded_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class FileListResponse(BaseModel):
    files: List[FileResponse]


class DownloadResponse(BaseModel):
    download_url: str
    expires_in: int
    file_name: str          # as stored; decrypt client-side when sealed
    mime_type: str
    size: int
    nonce: str


class PreviewResponse(BaseModel):
    # None when the metadata is sealed – the client decides after decrypting it
    type: Optional[str] = None
    content: str            # signed URL of the ciphertext to render
    expires_in: int
    file_name: str
    mime_type: str
    size: int
    nonce: str
