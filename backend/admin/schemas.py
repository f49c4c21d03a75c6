# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the admin endpoints."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel


# -- Requests --------------------------------------------------------------


class ScanStatusRequest(BaseModel):
    status: Literal["pending", "scanning", "clean", "infected", "scan_error"]


# -- Responses -------------------------------------------------------------


class UserRow(BaseModel):
    id: int
    username: str
    email: str
    account_type: str
    is_active: bool
    two_factor_enabled: bool
    failed_login_attempts: int
    account_locked: bool
    account_locked_until: Optional[datetime] = None
    account_locked_reason: Optional[str] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    users: List[UserRow]


# -- Audit log responses ---------------------------------------------------


class AuditLogRow(BaseModel):
    id: int
    username: Optional[str] = None          # resolved from user_id join
    action: str
    resource: Optional[str] = None
    detail: Optional[str] = None
    request_ip: Optional[str] = None
    user_agent: Optional[str] = None
    success: bool
    risk_level: str
    created_at: datetime


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogRow]
