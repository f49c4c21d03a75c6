# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Operator endpoints: lockout management, scan verdicts, audit trail and export."""

import io

import pytest
from openpyxl import load_workbook

from conftest import PRIMARY_SECRET, SECONDARY_SECRET


@pytest.fixture
def admin(vault, promote):
    vault.signup("root")
    promote("root")
    return vault.headers(vault.token("root", PRIMARY_SECRET))


def _lock(vault, username):
    for _ in range(5):
        vault.login(username, "Wrong-Secret-9")


def test_regular_accounts_are_refused(vault):
    token = vault.signup("alice")["access_token"]
    assert vault.client.get("/admin/users", headers=vault.headers(token)).status_code == 403


def test_admin_needs_a_primary_session(vault, promote):
    token, dek = vault.open_vault("root")
    vault.share_secondary(token, dek)
    promote("root")
    secondary = vault.token("root", SECONDARY_SECRET)
    assert vault.client.get("/admin/users", headers=vault.headers(secondary)).status_code == 403


def test_list_and_unlock(vault, admin):
    alice = vault.signup("alice")
    _lock(vault, "alice")
    assert vault.login("alice", PRIMARY_SECRET).status_code == 423

    locked = vault.client.get("/admin/users?locked_only=true", headers=admin).json()["users"]
    assert [u["username"] for u in locked] == ["alice"]
    assert locked[0]["failed_login_attempts"] == 5
    assert "password_hash" not in locked[0]

    user_id = locked[0]["id"]
    assert vault.client.put(f"/admin/users/{user_id}/unlock", headers=admin).status_code == 200
    assert vault.login("alice", PRIMARY_SECRET).status_code == 200
    assert alice["role"] == "primary"


def test_disable_and_enable(vault, admin):
    token = vault.signup("alice")["access_token"]
    users = vault.client.get("/admin/users", headers=admin).json()["users"]
    alice_id = next(u["id"] for u in users if u["username"] == "alice")
    root_id = next(u["id"] for u in users if u["username"] == "root")

    assert vault.client.put(f"/admin/users/{root_id}/disable", headers=admin).status_code == 400
    assert vault.client.put(f"/admin/users/{alice_id}/disable", headers=admin).status_code == 200
    assert vault.client.get("/auth/me", headers=vault.headers(token)).status_code == 401

    assert vault.client.put(f"/admin/users/{alice_id}/enable", headers=admin).status_code == 200
    assert vault.client.get("/auth/me", headers=vault.headers(token)).status_code == 200


def test_scan_status_verdict_blocks_download(vault, admin):
    token, dek = vault.open_vault("alice")
    file_id = vault.upload(token, dek).json()["id"]

    bad = vault.client.put(f"/admin/files/{file_id}/scan-status", json={"status": "dirty"}, headers=admin)
    assert bad.status_code == 422
    ok = vault.client.put(f"/admin/files/{file_id}/scan-status", json={"status": "infected"}, headers=admin)
    assert ok.status_code == 200

    resp = vault.client.post(f"/files/{file_id}/download-url", json={"password": PRIMARY_SECRET},
                             headers=vault.headers(token))
    assert resp.status_code == 403


def test_audit_log_filters(vault, admin):
    vault.signup("alice")
    _lock(vault, "alice")

    rows = vault.client.get("/admin/audit-logs?usernames=alice&actions=account_locked", headers=admin).json()["logs"]
    assert len(rows) == 1
    assert rows[0]["risk_level"] == "high"
    assert rows[0]["success"] is False

    high = vault.client.get("/admin/audit-logs?risk_levels=high", headers=admin).json()["logs"]
    assert {r["action"] for r in high} >= {"account_locked"}
    assert all(r["risk_level"] == "high" for r in high)

    limited = vault.client.get("/admin/audit-logs?limit=2", headers=admin).json()["logs"]
    assert len(limited) == 2


def test_audit_export_is_a_workbook(vault, admin):
    vault.signup("alice")
    _lock(vault, "alice")

    resp = vault.client.get("/admin/audit-logs/export", headers=admin)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )

    ws = load_workbook(io.BytesIO(resp.content)).active
    header = [cell.value for cell in ws[1]]
    assert header[:4] == ["ID", "Time", "User", "Action"]
    actions = [row[3] for row in ws.iter_rows(min_row=2, values_only=True)]
    assert "account_locked" in actions
