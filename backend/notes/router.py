# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Notes endpoints – CRUD over client-encrypted notes.

Security invariants enforced by every handler
---------------------------------------------
* JWT is required on every endpoint; create / edit / delete additionally
  need the matching capability of the session's role.
* Every note operation first calls ``_own_note``, which loads the row and
  asserts that ``note.user_id == current_user.id``.
* The server stores the sealed body as given and never decrypts it.
  Plaintext bodies are only ever read back from legacy rows, never accepted.  Tags
  stay plaintext so they can be filtered on.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from database import get_db
from core.clock import utcnow
from core.roles import Capability
from core.security import Principal, RequestContext, get_current_principal, get_request_context, require_capability
from models.note import Note
from notes.schemas import (
    NoteCreate,
    NoteListResponse,
    NoteResponse,
    NoteUpdate,
    PlainNoteBody,
    SealedNoteBody,
)
from services.audit import AuditLogger, get_audit

router = APIRouter(prefix="/notes", tags=["notes"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _own_note(note_id: int, user_id: int, db: Session) -> Note:
    """
    Load a Note by ID and verify it belongs to *user_id*.

    Raises 404 if the note does not exist, 403 if it belongs to someone else.
    """
    note = db.query(Note).filter(Note.id == note_id).first()
    if not note:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    if note.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return note


def _apply_body(note: Note, body: SealedNoteBody) -> None:
    """Store a sealed body; any legacy plaintext on the row is cleared."""
    note.is_encrypted = True
    note.ciphertext = body.ciphertext
    note.nonce = body.nonce
    note.title = None
    note.content = None


def _to_response(note: Note) -> NoteResponse:
    if note.is_encrypted:
        body = SealedNoteBody(format="sealed", ciphertext=note.ciphertext, nonce=note.nonce)
    else:
        body = PlainNoteBody(format="plain", title=note.title or "", content=note.content or "")
    return NoteResponse(
        id=note.id,
        body=body,
        tags=list(note.tags or []),
        created_at=note.created_at,
        updated_at=note.updated_at,
        deleted_at=note.deleted_at,
    )


def _list(db: Session, user_id: int, deleted: bool, tag: Optional[str]):
    q = db.query(Note).filter(Note.user_id == user_id)
    q = q.filter(Note.deleted_at.isnot(None) if deleted else Note.deleted_at.is_(None))
    notes = q.order_by(Note.updated_at.desc(), Note.id.desc()).all()
    if tag:
        wanted = tag.strip().lower()
        notes = [n for n in notes if wanted in (n.tags or [])]
    return NoteListResponse(notes=[_to_response(n) for n in notes])


# ---------------------------------------------------------------------------
# GET /notes  – live notes, optionally filtered by tag
# ---------------------------------------------------------------------------


@router.get("", response_model=NoteListResponse)
def list_notes(
    tag: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _list(db, principal.user.id, deleted=False, tag=tag)


# ---------------------------------------------------------------------------
# GET /notes/deleted  – the trash
# ---------------------------------------------------------------------------


@router.get("/deleted", response_model=NoteListResponse)
def list_deleted_notes(
    tag: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _list(db, principal.user.id, deleted=True, tag=tag)


# ---------------------------------------------------------------------------
# POST /notes
# ---------------------------------------------------------------------------


@router.post("", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
def create_note(
    body: NoteCreate,
    principal: Principal = Depends(require_capability(Capability.CREATE_NOTE)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    note = Note(user_id=principal.user.id, tags=body.tags)
    _apply_body(note, body.body)
    db.add(note)
    db.commit()
    db.refresh(note)
    audit.record("note_created", user_id=principal.user.id, resource=f"note:{note.id}",
                 detail=f"role={principal.role.value}", ctx=ctx)
    return _to_response(note)


# ---------------------------------------------------------------------------
# GET /notes/{id}
# ---------------------------------------------------------------------------


@router.get("/{note_id}", response_model=NoteResponse)
def get_note(
    note_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return _to_response(_own_note(note_id, principal.user.id, db))


# ---------------------------------------------------------------------------
# PUT /notes/{id}
# ---------------------------------------------------------------------------


@router.put("/{note_id}", response_model=NoteResponse)
def update_note(
    note_id: int,
    body: NoteUpdate,
    principal: Principal = Depends(require_capability(Capability.EDIT_NOTE)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    """Replace the body and/or tags.  A legacy plain note becomes sealed when a sealed body is sent."""
    note = _own_note(note_id, principal.user.id, db)
    if note.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Restore the note before editing it")
    if body.body is not None:
        _apply_body(note, body.body)
    if body.tags is not None:
        note.tags = body.tags
    note.updated_at = utcnow()
    db.commit()
    db.refresh(note)
    audit.record("note_updated", user_id=principal.user.id, resource=f"note:{note.id}",
                 detail=f"role={principal.role.value}", ctx=ctx)
    return _to_response(note)


# ---------------------------------------------------------------------------
# DELETE /notes/{id}  – soft delete;  POST /notes/{id}/restore;
# DELETE /notes/{id}/permanent
# ---------------------------------------------------------------------------


@router.delete("/{note_id}")
def delete_note(
    note_id: int,
    principal: Principal = Depends(require_capability(Capability.DELETE_NOTE)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    note = _own_note(note_id, principal.user.id, db)
    if note.deleted_at is None:
        note.deleted_at = utcnow()
        db.commit()
    audit.record("note_deleted", user_id=principal.user.id, resource=f"note:{note_id}", ctx=ctx)
    return {"detail": "Note moved to trash"}


@router.post("/{note_id}/restore", response_model=NoteResponse)
def restore_note(
    note_id: int,
    principal: Principal = Depends(require_capability(Capability.DELETE_NOTE)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    note = _own_note(note_id, principal.user.id, db)
    if note.deleted_at is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Note is not deleted")
    note.deleted_at = None
    db.commit()
    db.refresh(note)
    audit.record("note_restored", user_id=principal.user.id, resource=f"note:{note_id}", ctx=ctx)
    return _to_response(note)


@router.delete("/{note_id}/permanent")
def purge_note(
    note_id: int,
    principal: Principal = Depends(require_capability(Capability.DELETE_NOTE)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    """Irreversible.  Only notes already in the trash can be purged."""
    note = _own_note(note_id, principal.user.id, db)
    if note.deleted_at is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Move the note to trash first")
    db.delete(note)
    db.commit()
    audit.record("note_purged", user_id=principal.user.id, resource=f"note:{note_id}", ctx=ctx)
    return {"detail": "Note permanently deleted"}
