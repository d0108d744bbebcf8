"""
pytest configuration – app factory with an in-memory database, guard
doubles and an admin token helper.
"""
from datetime import datetime

import pytest

from app import create_app
from config import Config
from models import db
from security.ban_store import BanStore, BanStoreUnavailable

ADMIN_KEY = "Traitor!Hunt3r"


class TestConfig(Config):
    __test__ = False

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    AUTO_CREATE_TABLES = True
    TRUSTED_PROXY_COUNT = 0
    ADMIN_PASSWORD = ADMIN_KEY
    CORS_ORIGINS = ""
    GUARD_SWEEPER_ENABLED = False
    BCRYPT_ROUNDS = 4


class MemoryBanStore(BanStore):
    def __init__(self):
        self.entries = {}
        self.writes = 0

    def get(self, identifier):
        return self.entries.get(identifier)

    def upsert(self, identifier, banned_until):
        self.writes += 1
        self.entries[identifier] = banned_until

    def delete(self, identifier):
        self.entries.pop(identifier, None)


class BrokenBanStore(BanStore):
    def __init__(self, fail_reads=True, fail_writes=True):
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    def get(self, identifier):
        if self.fail_reads:
            raise BanStoreUnavailable("down")
        return None

    def upsert(self, identifier, banned_until):
        if self.fail_writes:
            raise BanStoreUnavailable("down")

    def delete(self, identifier):
        if self.fail_writes:
            raise BanStoreUnavailable("down")


T0 = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def ban_store():
    return MemoryBanStore()


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_token(client) -> str:
    resp = client.post("/api/admin/login", json={"key": ADMIN_KEY})
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["token"]


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def from_ip(ip: str) -> dict:
    """Test client kwargs that make a request arrive from `ip`."""
    return {"environ_base": {"REMOTE_ADDR": ip}}
