"""Initial schema – accounts, envelopes, notes, files, 2FA, security history, audit

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17

Everything the vault stores is either ciphertext, a hash, or metadata the
server needs to enforce access (lockout counters, scan status, tags).
"""

from alembic import op
import sqlalchemy as sa

# Alembic revision identifiers
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # -- users ----------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(64), nullable=False, unique=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("phone_number", sa.String(32), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("view_password_hash", sa.String(255), nullable=True),
        sa.Column("secondary_epoch", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "account_type",
            sa.Enum("admin", "user", name="account_type"),
            nullable=False,
            server_default="user",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("account_locked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("account_locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("account_locked_reason", sa.String(255), nullable=True),
        sa.Column("last_failed_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("totp_secret", sa.String(64), nullable=True),
        sa.Column("totp_temp_secret", sa.String(64), nullable=True),
        sa.Column("two_factor_enabled", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("backup_codes_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_users_username", "users", ["username"])
    op.create_index("idx_users_email", "users", ["email"])

    # -- wrapped_keys ---------------------------------------------------
    op.create_table(
        "wrapped_keys",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kek_role", sa.Enum("primary", "secondary", name="kek_role"), nullable=False),
        # base64( wrapped DEK || 16-byte GCM tag )
        sa.Column("ciphertext", sa.Text(), nullable=False),
        sa.Column("nonce", sa.String(32), nullable=False),
        sa.Column("salt", sa.String(64), nullable=False),
        sa.Column("kdf_n", sa.Integer(), nullable=False),
        sa.Column("kdf_r", sa.Integer(), nullable=False),
        sa.Column("kdf_p", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "kek_role", name="uq_wrapped_keys_user_role"),
    )
    op.create_index("idx_wrapped_keys_user_id", "wrapped_keys", ["user_id"])

    # -- notes ----------------------------------------------------------
    op.create_table(
        "notes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_encrypted", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("ciphertext", sa.Text(), nullable=True),
        sa.Column("nonce", sa.String(32), nullable=True),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_notes_user_id", "notes", ["user_id"])

    # -- files ----------------------------------------------------------
    op.create_table(
        "files",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("encrypted_name", sa.Text(), nullable=False),
        sa.Column("encrypted_mime_type", sa.Text(), nullable=False),
        sa.Column("nonce", sa.String(32), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("ciphertext_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("storage_locator", sa.String(255), nullable=False),
        sa.Column(
            "virus_scan_status",
            sa.Enum("pending", "scanning", "clean", "infected", "scan_error", name="virus_scan_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_files_user_id", "files", ["user_id"])

    # -- backup_codes ---------------------------------------------------
    op.create_table(
        "backup_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_backup_codes_user_id", "backup_codes", ["user_id"])
    op.create_index("idx_backup_codes_code_hash", "backup_codes", ["code_hash"])

    # -- security_questions ---------------------------------------------
    op.create_table(
        "security_questions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("question", sa.String(255), nullable=False),
        sa.Column("answer_hash", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "position", name="uq_security_questions_user_pos"),
    )
    op.create_index("idx_security_questions_user_id", "security_questions", ["user_id"])

    # -- security_events ------------------------------------------------
    op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "event_type",
            sa.Enum(
                "login_success", "login_failure", "password_change", "unusual_activity",
                "account_locked", "account_unlocked", "reauth_success", "reauth_failure",
                "backup_code_used",
                name="security_event_type",
            ),
            nullable=False,
        ),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("details", sa.JSON(), nullable=True),
    )
    # "events of user X of type T since S" is the lockout and anomaly query
    op.create_index("idx_security_events_user_type_ts", "security_events", ["user_id", "event_type", "timestamp"])

    # -- audit_logs -----------------------------------------------------
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("resource", sa.String(128), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("request_ip", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column(
            "risk_level",
            sa.Enum("low", "medium", "high", "critical", name="audit_risk_level"),
            nullable=False,
            server_default="low",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("idx_audit_logs_action", "audit_logs", ["action"])
    op.create_index("idx_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("security_events")
    op.drop_table("security_questions")
    op.drop_table("backup_codes")
    op.drop_table("files")
    op.drop_table("notes")
    op.drop_table("wrapped_keys")
    op.drop_table("users")
