# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Key endpoints – storage of wrapped DEK envelopes.

The server never sees a plaintext DEK or KEK.  It stores what the client
wrapped and hands it back to sessions allowed to have it:

* a Primary session receives both envelopes;
* a Secondary session receives only the Secondary envelope.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from database import get_db
from core.roles import Capability, Role
from core.security import (
    Principal,
    RequestContext,
    get_current_principal,
    get_request_context,
    hash_password,
    require_capability,
    verify_password_bounded,
)
from models.user import User
from models.wrapped_key import WrappedKey
from keys.schemas import EnvelopeBody, EnvelopeListResponse, SecondaryEnvelopeRequest
from services.audit import AuditLogger, get_audit

router = APIRouter(prefix="/keys", tags=["keys"])


def find_envelope(db: Session, user_id: int, role: Role):
    return (
        db.query(WrappedKey)
        .filter(WrappedKey.user_id == user_id, WrappedKey.kek_role == Role(role).value)
        .first()
    )


def save_envelope(db: Session, user: User, body: EnvelopeBody) -> WrappedKey:
    """Insert or replace the envelope for ``body.kek_role``.  The caller commits."""
    row = find_envelope(db, user.id, Role(body.kek_role))
    if row is None:
        row = WrappedKey(user_id=user.id, kek_role=body.kek_role)
        db.add(row)
    row.ciphertext = body.ciphertext
    row.nonce = body.nonce
    row.salt = body.salt
    row.kdf_n = body.kdf.n
    row.kdf_r = body.kdf.r
    row.kdf_p = body.kdf.p
    return row


# ---------------------------------------------------------------------------
# GET /keys/envelopes
# ---------------------------------------------------------------------------


@router.get("/envelopes", response_model=EnvelopeListResponse)
def list_envelopes(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Envelopes the current session may unwrap, Primary first."""
    q = db.query(WrappedKey).filter(WrappedKey.user_id == principal.user.id)
    if principal.role != Role.PRIMARY:
        q = q.filter(WrappedKey.kek_role == principal.role.value)
    rows = sorted(q.all(), key=lambda r: r.kek_role != Role.PRIMARY.value)
    return EnvelopeListResponse(envelopes=[r.to_envelope_dict() for r in rows])


# ---------------------------------------------------------------------------
# PUT /keys/envelopes/primary  – first provisioning only
# ---------------------------------------------------------------------------


@router.put("/envelopes/primary", status_code=status.HTTP_201_CREATED)
def provision_primary(
    body: EnvelopeBody,
    principal: Principal = Depends(require_capability(Capability.EDIT_SETTINGS)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    """
    Store the Primary envelope of a freshly created DEK.

    Rotation goes through PUT /auth/change-password, so an existing Primary
    envelope is never overwritten here (409).
    """
    if body.kek_role != Role.PRIMARY.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Envelope role must be 'primary'")
    if find_envelope(db, principal.user.id, Role.PRIMARY):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Primary envelope already provisioned")

    save_envelope(db, principal.user, body)
    db.commit()
    audit.record("envelope_provisioned", user_id=principal.user.id, resource="envelope:primary", ctx=ctx)
    return {"detail": "Primary envelope stored"}


# ---------------------------------------------------------------------------
# PUT /keys/envelopes/secondary  – share a Secondary secret
# ---------------------------------------------------------------------------


@router.put("/envelopes/secondary")
def provision_secondary(
    body: SecondaryEnvelopeRequest,
    principal: Principal = Depends(require_capability(Capability.SHARE_SECONDARY_SECRET)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    """
    Store the Secondary envelope (the DEK wrapped client-side under the
    Secondary secret) together with the Secondary secret's hash.

    The Secondary secret must differ from the Primary one; otherwise a
    Secondary login would be indistinguishable from a Primary login.
    """
    user = principal.user
    if body.envelope.kek_role != Role.SECONDARY.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Envelope role must be 'secondary'")
    if not find_envelope(db, user.id, Role.PRIMARY):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Provision the primary envelope first")
    if verify_password_bounded(body.view_password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Secondary password must differ from the primary password",
        )

    user.view_password_hash = hash_password(body.view_password)
    user.secondary_epoch = (user.secondary_epoch or 0) + 1
    save_envelope(db, user, body.envelope)
    db.commit()
    audit.record("secondary_secret_shared", user_id=user.id, resource="envelope:secondary", ctx=ctx)
    return {"detail": "Secondary envelope stored"}


# ---------------------------------------------------------------------------
# DELETE /keys/envelopes/secondary  – revoke the Secondary secret
# ---------------------------------------------------------------------------


@router.delete("/envelopes/secondary")
def revoke_secondary(
    principal: Principal = Depends(require_capability(Capability.SHARE_SECONDARY_SECRET)),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    """Drop the Secondary envelope and hash; live Secondary sessions end with them."""
    row = find_envelope(db, principal.user.id, Role.SECONDARY)
    if row is None and not principal.user.view_password_hash:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No secondary secret configured")
    if row is not None:
        db.delete(row)
    principal.user.view_password_hash = None
    principal.user.secondary_epoch = (principal.user.secondary_epoch or 0) + 1
    db.commit()
    audit.record("secondary_secret_revoked", user_id=principal.user.id, resource="envelope:secondary", ctx=ctx)
    return {"detail": "Secondary secret revoked"}
