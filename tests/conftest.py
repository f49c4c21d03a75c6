# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Shared fixtures.

The environment is set before any backend module is imported: settings are
read once at import time, so the database, blob directory, log directory and
argon2 cost must already point at test values.
"""

import base64
import itertools
import os
import shutil
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="pvault-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/vault.db"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production-use-000000"
os.environ["BLOB_STORAGE_DIR"] = os.path.join(_TMP_DIR, "blobs")
os.environ["PVAULT_LOG_DIR"] = os.path.join(_TMP_DIR, "log")
os.environ["ARGON2_MEMORY_COST"] = "1024"
os.environ["ARGON2_TIME_COST"] = "1"
os.environ["ARGON2_PARALLELISM"] = "1"

import pytest                                   # noqa: E402
from fastapi.testclient import TestClient       # noqa: E402

import models.audit_log                         # noqa: E402,F401
import models.backup_code                       # noqa: E402,F401
import models.file                              # noqa: E402,F401
import models.note                              # noqa: E402,F401
import models.security_event                    # noqa: E402,F401
import models.security_question                 # noqa: E402,F401
import models.user                              # noqa: E402,F401
import models.wrapped_key                       # noqa: E402,F401
from cipher import content, envelope            # noqa: E402
from cipher.kdf import KdfParams                # noqa: E402
from core.roles import Role                     # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from main import app                            # noqa: E402
from models.user import User                    # noqa: E402

PRIMARY_SECRET = "Primary-Secret-1"
SECONDARY_SECRET = "Secondary-Secret-2"

# scrypt at n=16 keeps the suite fast; production uses 2**15
FAST_KDF = KdfParams(n=2 ** 4, r=8, p=1)

_phone_numbers = itertools.count(1000)


@pytest.fixture(scope="session", autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    shutil.rmtree(_TMP_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    app.state.rate_limiter.reset()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def kdf():
    return FAST_KDF


class VaultClient:
    """Thin wrapper over the API for the flows most tests need."""

    def __init__(self, client: TestClient):
        self.client = client

    @staticmethod
    def headers(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def signup(self, username: str = "alice", password: str = PRIMARY_SECRET, **extra) -> dict:
        body = {
            "username": username,
            "email": f"{username}@example.com",
            "phone_number": f"+1555000{next(_phone_numbers)}",
            "password": password,
        }
        body.update(extra)
        resp = self.client.post("/auth/signup", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()

    def login(self, identifier: str, password: str, **extra):
        return self.client.post("/auth/login", json={"identifier": identifier, "password": password, **extra})

    def token(self, identifier: str, password: str) -> str:
        resp = self.login(identifier, password)
        assert resp.status_code == 200, resp.text
        return resp.json()["access_token"]

    def open_vault(self, username: str = "alice", password: str = PRIMARY_SECRET):
        """Sign up, create the DEK, upload the Primary envelope.  Returns ``(token, dek)``."""
        token = self.signup(username, password)["access_token"]
        dek, primary = envelope.seal_new_account(password, FAST_KDF)
        resp = self.client.put("/keys/envelopes/primary", json=primary.to_dict(), headers=self.headers(token))
        assert resp.status_code == 201, resp.text
        return token, dek

    def share_secondary(self, token: str, dek, secret: str = SECONDARY_SECRET):
        sealed = envelope.seal(dek, secret, Role.SECONDARY, FAST_KDF)
        return self.client.put(
            "/keys/envelopes/secondary",
            json={"view_password": secret, "envelope": sealed.to_dict()},
            headers=self.headers(token),
        )

    def upload(self, token: str, dek, data: bytes = b"hello vault", name: str = "hello.txt",
               mime_type: str = "text/plain", tags: str = "", sealed_metadata: bool = True):
        payload = content.encrypt_file(data, dek, name, mime_type, chunk_size=8)
        return self.client.post(
            "/files",
            files={"file": ("blob.pvf", payload.ciphertext, "application/octet-stream")},
            data={
                "nonce": base64.b64encode(payload.nonce).decode("ascii"),
                "encrypted_name": payload.encrypted_name if sealed_metadata else name,
                "encrypted_mime_type": payload.encrypted_mime_type if sealed_metadata else mime_type,
                "size": str(len(data)),
                "tags": tags,
            },
            headers=self.headers(token),
        )


@pytest.fixture
def vault(client):
    return VaultClient(client)


def make_admin(db, username: str) -> None:
    user = db.query(User).filter(User.username == username).one()
    user.account_type = "admin"
    db.commit()


@pytest.fixture
def promote(db):
    """Turn an existing account into an operator account."""
    return lambda username: make_admin(db, username)
