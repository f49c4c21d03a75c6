# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
File endpoints – encrypted blob upload, metadata CRUD, gated download/preview.

Security invariants enforced by every handler
---------------------------------------------
* Only client-encrypted payloads are accepted (chunked ``PVF1`` format);
  the server stores ciphertext and never holds a key that could open it.
* Every file operation first calls ``_own_file`` (404 / 403).
* download-url and preview go through the ReAuthGate: the Primary secret
  must be supplied again, attempts are rate limited per account and
  operation, and failures feed the account lockout.
* ``GET /files/blob/{token}`` needs no session, only an unexpired signed
  token issued by the gate.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from database import get_db
from cipher.content import FILE_MAGIC, is_sealed_metadata
from core.clock import utcnow
from core.config import settings
from core.logger import logger
from core.roles import Capability
from core.security import Principal, RequestContext, get_request_context, require_capability
from files.preview import detect_preview_type
from files.schemas import (
    DownloadResponse,
    FileListResponse,
    FileResponse,
    PreviewResponse,
    ReAuthRequest,
)
from keys.schemas import check_b64
from models.file import VaultFile
from services.audit import AuditLogger, get_audit
from services.blob_store import LocalBlobStore, get_blob_store
from services.reauth import ReAuthGate, get_reauth_gate

router = APIRouter(prefix="/files", tags=["files"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _own_file(file_id: int, user_id: int, db: Session) -> VaultFile:
    """
    Load a VaultFile by ID and verify it belongs to *user_id*.

    Raises 404 if the file does not exist, 403 if it belongs to someone else.
    """
    vault_file = db.query(VaultFile).filter(VaultFile.id == file_id).first()
    if not vault_file:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if vault_file.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return vault_file


def _live_file(file_id: int, user_id: int, db: Session) -> VaultFile:
    vault_file = _own_file(file_id, user_id, db)
    if vault_file.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return vault_file


def _parse_tags(raw: str) -> list:
    tags = []
    for tag in (raw or "").split(","):
        tag = tag.strip().lower()[:50]
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _list(db: Session, user_id: int, deleted: bool, tag: Optional[str]) -> FileListResponse:
    q = db.query(VaultFile).filter(VaultFile.user_id == user_id)
    q = q.filter(VaultFile.deleted_at.isnot(None) if deleted else VaultFile.deleted_at.is_(None))
    rows = q.order_by(VaultFile.uploaded_at.desc(), VaultFile.id.desc()).all()
    if tag:
        wanted = tag.strip().lower()
        rows = [r for r in rows if wanted in (r.tags or [])]
    return FileListResponse(files=rows)


# ---------------------------------------------------------------------------
# POST /files  – upload a client-encrypted blob
# ---------------------------------------------------------------------------


@router.post("", response_model=FileResponse, status_code=status.HTTP_201_CREATED)
def upload_file(
    file: UploadFile = File(..., description="PVF1 ciphertext produced by cipher.content.encrypt_file"),
    nonce: str = Form(...),
    encrypted_name: str = Form(..., max_length=4096),
    encrypted_mime_type: str = Form(..., max_length=1024),
    size: int = Form(..., ge=0),
    tags: str = Form(""),
    principal: Principal = Depends(require_capability(Capability.UPLOAD)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    audit: AuditLogger = Depends(get_audit),
):
    try:
        check_b64(nonce, exact_len=12)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="nonce must be 12 base64 bytes")

    data = file.file.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large")
    if not data.startswith(FILE_MAGIC):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Upload must be client-encrypted")

    locator = blob_store.put_ciphertext(data, principal.user.id)
    vault_file = VaultFile(
        user_id=principal.user.id,
        encrypted_name=encrypted_name,
        encrypted_mime_type=encrypted_mime_type,
        nonce=nonce,
        size=size,
        ciphertext_size=len(data),
        storage_locator=locator,
        virus_scan_status="pending",
        tags=_parse_tags(tags),
    )
    db.add(vault_file)
    db.commit()
    db.refresh(vault_file)

    if not is_sealed_metadata(encrypted_name):
        logger.warning("File %s uploaded with plaintext metadata", vault_file.id)
    audit.record("file_upload", user_id=principal.user.id, resource=f"file:{vault_file.id}",
                 detail=f"{len(data)} bytes", ctx=ctx)
    return vault_file


# ---------------------------------------------------------------------------
# GET /files, GET /files/deleted, GET /files/{id}/metadata
# ---------------------------------------------------------------------------


@router.get("", response_model=FileListResponse)
def list_files(
    tag: Optional[str] = Query(None),
    principal: Principal = Depends(require_capability(Capability.VIEW_FILES)),
    db: Session = Depends(get_db),
):
    return _list(db, principal.user.id, deleted=False, tag=tag)


@router.get("/deleted", response_model=FileListResponse)
def list_deleted_files(
    tag: Optional[str] = Query(None),
    principal: Principal = Depends(require_capability(Capability.VIEW_FILES)),
    db: Session = Depends(get_db),
):
    return _list(db, principal.user.id, deleted=True, tag=tag)


@router.get("/{file_id}/metadata", response_model=FileResponse)
def file_metadata(
    file_id: int,
    principal: Principal = Depends(require_capability(Capability.VIEW_FILES)),
    db: Session = Depends(get_db),
):
    return _own_file(file_id, principal.user.id, db)


# ---------------------------------------------------------------------------
# DELETE /files/{id}, POST /files/{id}/restore, DELETE /files/{id}/permanent
# ---------------------------------------------------------------------------


@router.delete("/{file_id}")
def delete_file(
    file_id: int,
    principal: Principal = Depends(require_capability(Capability.DELETE)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    vault_file = _own_file(file_id, principal.user.id, db)
    if vault_file.deleted_at is None:
        vault_file.deleted_at = utcnow()
        db.commit()
    audit.record("file_deleted", user_id=principal.user.id, resource=f"file:{file_id}", ctx=ctx)
    return {"detail": "File moved to trash"}


@router.post("/{file_id}/restore", response_model=FileResponse)
def restore_file(
    file_id: int,
    principal: Principal = Depends(require_capability(Capability.DELETE)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    vault_file = _own_file(file_id, principal.user.id, db)
    if vault_file.deleted_at is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is not deleted")
    vault_file.deleted_at = None
    db.commit()
    db.refresh(vault_file)
    audit.record("file_restored", user_id=principal.user.id, resource=f"file:{file_id}", ctx=ctx)
    return vault_file


@router.delete("/{file_id}/permanent")
def purge_file(
    file_id: int,
    principal: Principal = Depends(require_capability(Capability.DELETE)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
    audit: AuditLogger = Depends(get_audit),
):
    """Irreversible: removes the row and the ciphertext blob.  Trash only."""
    vault_file = _own_file(file_id, principal.user.id, db)
    if vault_file.deleted_at is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Move the file to trash first")
    locator = vault_file.storage_locator
    db.delete(vault_file)
    db.commit()
    blob_store.delete(locator)
    audit.record("file_purged", user_id=principal.user.id, resource=f"file:{file_id}", ctx=ctx)
    return {"detail": "File permanently deleted"}


# ---------------------------------------------------------------------------
# POST /files/{id}/download-url   – gated
# ---------------------------------------------------------------------------


@router.post("/{file_id}/download-url", response_model=DownloadResponse)
def download_url(
    file_id: int,
    body: ReAuthRequest,
    principal: Principal = Depends(require_capability(Capability.DOWNLOAD)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    gate: ReAuthGate = Depends(get_reauth_gate),
):
    """Re-verify the Primary secret, then issue a short-lived URL for the ciphertext."""
    vault_file = _live_file(file_id, principal.user.id, db)
    grant = gate.authorize(db, principal.user, vault_file, "download", body.password, ctx)
    return DownloadResponse(
        download_url=grant.url,
        expires_in=grant.expires_in,
        file_name=vault_file.encrypted_name,
        mime_type=vault_file.encrypted_mime_type,
        size=vault_file.size,
        nonce=vault_file.nonce,
    )


# ---------------------------------------------------------------------------
# POST /files/{id}/preview   – gated
# ---------------------------------------------------------------------------


@router.post("/{file_id}/preview", response_model=PreviewResponse)
def preview(
    file_id: int,
    body: ReAuthRequest,
    principal: Principal = Depends(require_capability(Capability.VIEW_FILES)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    gate: ReAuthGate = Depends(get_reauth_gate),
):
    """
    Same gate as download, with its own rate limit.  The preview kind is
    only computed here for legacy plaintext metadata; for sealed metadata
    the client calls ``detect_preview_type`` after decrypting.
    """
    vault_file = _live_file(file_id, principal.user.id, db)
    grant = gate.authorize(db, principal.user, vault_file, "preview", body.password, ctx)

    preview_type = None
    if not is_sealed_metadata(vault_file.encrypted_name) and not is_sealed_metadata(vault_file.encrypted_mime_type):
        preview_type = detect_preview_type(vault_file.encrypted_mime_type, vault_file.encrypted_name)
    return PreviewResponse(
        type=preview_type,
        content=grant.url,
        expires_in=grant.expires_in,
        file_name=vault_file.encrypted_name,
        mime_type=vault_file.encrypted_mime_type,
        size=vault_file.size,
        nonce=vault_file.nonce,
    )


# ---------------------------------------------------------------------------
# GET /files/blob/{token}  – serve ciphertext for a signed URL
# ---------------------------------------------------------------------------


@router.get("/blob/{token}")
def fetch_blob(token: str, blob_store: LocalBlobStore = Depends(get_blob_store)):
    locator, disposition = blob_store.resolve_token(token)
    try:
        data = blob_store.get_ciphertext(locator)
    except (FileNotFoundError, ValueError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    kind = "inline" if disposition == "preview" else "attachment"
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f'{kind}; filename="vault-object.pvf"',
            "Cache-Control": "no-store",
        },
    )
