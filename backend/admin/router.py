# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Admin endpoints – account lockout management, scan results, audit trail.

Every endpoint in this router is guarded by ``require_admin``: an operator
account (``account_type == 'admin'``) in a Primary session.  Anything else
receives 403 before any business logic runs.
"""

import io
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side
from sqlalchemy.orm import Session

from database import get_db
from core.security import RequestContext, get_request_context, require_admin
from models.audit_log import AuditLog
from models.file import VaultFile
from models.user import User
from admin.schemas import (
    AuditLogListResponse,
    AuditLogRow,
    ScanStatusRequest,
    UserListResponse,
)
from services.audit import AuditLogger, get_audit
from services.lockout import AccountLockout, get_lockout

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# GET /admin/users  – list accounts with their lockout state
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
def list_users(
    locked_only: bool = Query(False),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Every account row (no secret material – handled by the schema)."""
    q = db.query(User)
    if locked_only:
        q = q.filter(User.account_locked.is_(True))
    return UserListResponse(users=q.order_by(User.id).all())


# ---------------------------------------------------------------------------
# PUT /admin/users/{id}/unlock
# ---------------------------------------------------------------------------


@router.put("/users/{user_id}/unlock")
def unlock_user(
    user_id: int,
    admin: User = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lockout: AccountLockout = Depends(get_lockout),
    audit: AuditLogger = Depends(get_audit),
):
    """Lift a lockout early and reset the failure counter."""
    target = db.query(User).filter(User.id == user_id).first()
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    lockout.unlock(db, target, by=admin)
    audit.record("admin_unlock", user_id=target.id, detail=f"unlocked by admin_id={admin.id}", ctx=ctx)
    return {"detail": "Account unlocked"}


# ---------------------------------------------------------------------------
# PUT /admin/users/{id}/disable, /enable
# ---------------------------------------------------------------------------


@router.put("/users/{user_id}/disable")
def disable_user(
    user_id: int,
    admin: User = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    """
    Set ``is_active = False``.  Existing tokens are rejected by
    ``get_current_principal``.  An admin cannot disable their own account.
    """
    if user_id == admin.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot disable yourself")
    target = db.query(User).filter(User.id == user_id).first()
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    target.is_active = False
    db.commit()
    audit.record("disable_user", user_id=target.id, detail=f"by admin_id={admin.id}", ctx=ctx)
    return {"detail": "User disabled"}


@router.put("/users/{user_id}/enable")
def enable_user(
    user_id: int,
    admin: User = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    target = db.query(User).filter(User.id == user_id).first()
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    target.is_active = True
    db.commit()
    audit.record("enable_user", user_id=target.id, detail=f"by admin_id={admin.id}", ctx=ctx)
    return {"detail": "User enabled"}


# ---------------------------------------------------------------------------
# PUT /admin/files/{id}/scan-status  – result callback from the scanner
# ---------------------------------------------------------------------------


@router.put("/files/{file_id}/scan-status")
def set_scan_status(
    file_id: int,
    body: ScanStatusRequest,
    admin: User = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit),
):
    """Record a malware scan verdict.  ``infected`` files are refused by the gate."""
    vault_file = db.query(VaultFile).filter(VaultFile.id == file_id).first()
    if not vault_file:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    vault_file.virus_scan_status = body.status
    db.commit()
    audit.record("scan_status_set", user_id=vault_file.user_id, resource=f"file:{file_id}",
                 detail=f"status={body.status} by admin_id={admin.id}", ctx=ctx)
    return {"detail": "Scan status updated"}


# ---------------------------------------------------------------------------
# GET /admin/audit-logs  – audit trail with optional filters
# ---------------------------------------------------------------------------


def _audit_query(db: Session, usernames, actions, risk_levels, since, until):
    q = db.query(AuditLog, User.username).outerjoin(User, AuditLog.user_id == User.id)
    if usernames:
        q = q.filter(User.username.in_([u.lower() for u in usernames]))
    if actions:
        q = q.filter(AuditLog.action.in_(actions))
    if risk_levels:
        q = q.filter(AuditLog.risk_level.in_(risk_levels))
    if since:
        q = q.filter(AuditLog.created_at >= since)
    if until:
        q = q.filter(AuditLog.created_at <= until)
    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())


@router.get("/audit-logs", response_model=AuditLogListResponse)
def list_audit_logs(
    usernames: list[str] | None = Query(None, description="Filter by username(s) – repeated param"),
    actions: list[str] | None = Query(None, description="Filter by action(s) – repeated param"),
    risk_levels: list[str] | None = Query(None, description="low / medium / high / critical"),
    since: datetime | None = Query(None, description="ISO-8601 start of time window"),
    until: datetime | None = Query(None, description="ISO-8601 end of time window"),
    limit: int = Query(200, ge=1, le=1000),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Audit rows newest-first (default 200, cap 1000)."""
    rows = _audit_query(db, usernames, actions, risk_levels, since, until).limit(limit).all()
    return AuditLogListResponse(logs=[
        AuditLogRow(
            id=row.id,
            username=username,
            action=row.action,
            resource=row.resource,
            detail=row.detail,
            request_ip=row.request_ip,
            user_agent=row.user_agent,
            success=row.success,
            risk_level=row.risk_level,
            created_at=row.created_at,
        )
        for row, username in rows
    ])


# ---------------------------------------------------------------------------
# GET /admin/audit-logs/export  – download audit logs as Excel
# ---------------------------------------------------------------------------

_AUDIT_HEADER_FONT  = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
_AUDIT_HEADER_FILL  = PatternFill(start_color="2F4858", end_color="2F4858", fill_type="solid")
_AUDIT_HEADER_ALIGN = Alignment(horizontal="center", vertical="center")
_AUDIT_THIN_BORDER  = Border(
    left=Side(style="thin", color="CCCCCC"),
    right=Side(style="thin", color="CCCCCC"),
    top=Side(style="thin", color="CCCCCC"),
    bottom=Side(style="thin", color="CCCCCC"),
)
# Highlight rows an operator should read first
_RISK_FILLS = {
    "high": PatternFill(start_color="FCE4D6", end_color="FCE4D6", fill_type="solid"),
    "critical": PatternFill(start_color="F8CBAD", end_color="F8CBAD", fill_type="solid"),
}

_AUDIT_EXPORT_HEADERS = ["ID", "Time", "User", "Action", "Resource", "Result", "Risk", "Request IP", "Details"]
_AUDIT_COL_WIDTHS = [8, 20, 20, 26, 16, 10, 10, 16, 50]


@router.get("/audit-logs/export")
def export_audit_logs(
    since: datetime | None = Query(None),
    until: datetime | None = Query(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Export the audit trail (optionally a time window of it) as an Excel file."""
    rows = _audit_query(db, None, None, None, since, until).all()

    wb = Workbook()
    ws = wb.active
    ws.title = "Audit Logs"

    ws.append(_AUDIT_EXPORT_HEADERS)
    for cell in ws[1]:
        cell.font = _AUDIT_HEADER_FONT
        cell.fill = _AUDIT_HEADER_FILL
        cell.alignment = _AUDIT_HEADER_ALIGN
        cell.border = _AUDIT_THIN_BORDER

    for row, username in rows:
        ws.append([
            row.id,
            row.created_at.strftime("%Y-%m-%d %H:%M:%S") if row.created_at else "",
            username or "",
            row.action,
            row.resource or "",
            "ok" if row.success else "denied",
            row.risk_level,
            row.request_ip or "",
            row.detail or "",
        ])
        row_idx = ws.max_row
        fill = _RISK_FILLS.get(row.risk_level)
        for col_idx in range(1, len(_AUDIT_EXPORT_HEADERS) + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = _AUDIT_THIN_BORDER
            if fill is not None:
                cell.fill = fill

    for col_idx, width in enumerate(_AUDIT_COL_WIDTHS, start=1):
        ws.column_dimensions[chr(64 + col_idx)].width = width
    ws.freeze_panes = "A2"

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    wb.close()

    return StreamingResponse(
        buf,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": 'attachment; filename="audit-logs.xlsx"'},
    )
