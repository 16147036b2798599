import itertools
import logging
import os
import re
from datetime import datetime, timedelta, timezone

import pytest
from dotenv import find_dotenv, load_dotenv
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .cache.manager import CacheManager, get_cache_manager
from .cache.models import CacheEntry
from .cache.tiers import DatabaseCache, ProcessCache, RedisCache
from .core.db import Base, get_db
from .esign.router import get_autentique_client, get_signature_orchestrator, get_webhook_gateway
from .esign.webhooks import WebhookGateway
from .forms.models import Form, FormStatus
from .main import formflow_app as fast_api_app
from .utils.storage import LocalFileStorage, get_file_storage

logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

env_file = find_dotenv(f'.env{os.getenv("ENV", "")}')
logger.info("Fetching env_file %s", env_file)
load_dotenv(env_file)

WEBHOOK_SECRET = "test-webhook-secret"
SIGNED_PDF = b"%PDF-1.4 signed document"

SIGNER_SETTINGS = {
    "autentique_enabled": True,
    "autentique_signers": [
        {"email_field": "email", "name_field": "name", "action": "sign"},
    ],
}


def _memory_engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},  # For SQLite
        poolclass=StaticPool,
    )


class FrozenClock:
    """Deterministic clock shared by the cache tiers and fakes"""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# Simulating Redis client for test cases


class RedisClient:
    def __init__(self, clock):
        self.clock = clock
        self.storage = {}

    def _alive(self, key):
        item = self.storage.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= self.clock():
            del self.storage[key]
            return None
        return value

    def get(self, key: str) -> str:
        return self._alive(key)

    def set(self, key: str, value: str):
        self.storage[key] = (value, None)
        return True

    def setex(self, key: str, ttl: int, value: str):
        self.storage[key] = (value, self.clock() + timedelta(seconds=ttl))
        return True

    def ttl(self, key: str) -> int:
        if self._alive(key) is None:
            return -2
        expires_at = self.storage[key][1]
        if expires_at is None:
            return -1
        return int((expires_at - self.clock()).total_seconds())

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.storage.pop(key, None) is not None:
                removed += 1
        return removed

    def scan_iter(self, match=None, count=None):
        regex = self._match_to_regex(match or "*")
        for key in list(self.storage):
            if regex.match(key) and self._alive(key) is not None:
                yield key

    @staticmethod
    def _match_to_regex(match):
        parts, chars = [], iter(match)
        for ch in chars:
            if ch == "\\":
                parts.append(re.escape(next(chars, "")))
            elif ch == "*":
                parts.append(".*")
            elif ch == "?":
                parts.append(".")
            else:
                parts.append(re.escape(ch))
        return re.compile("^" + "".join(parts) + "$")


class FakeAutentiqueClient:
    """Records calls instead of talking to the provider"""

    def __init__(self):
        self._ids = itertools.count(1)
        self.created = []
        self.status_calls = []
        self.downloads = []
        self.cancelled = []
        self.resent = []
        self.error = None
        self.document_status = "pending"

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    def create_document(self, name, file, signers, sandbox=False, auto_close=True, send_automatic_email=True):
        self._maybe_fail()
        document_id = f"doc-{next(self._ids)}"
        self.created.append({
            "id": document_id,
            "name": name,
            "file": file,
            "signers": signers,
            "sandbox": sandbox,
            "auto_close": auto_close,
            "send_automatic_email": send_automatic_email,
        })
        return {"id": document_id, "name": name, "status": "pending"}

    def get_document_status(self, document_id):
        self._maybe_fail()
        self.status_calls.append(document_id)
        return {"id": document_id, "status": self.document_status}

    def download_document(self, document_id):
        self._maybe_fail()
        self.downloads.append(document_id)
        return SIGNED_PDF

    def cancel_document(self, document_id, reason=""):
        self._maybe_fail()
        self.cancelled.append((document_id, reason))
        return {"id": document_id, "status": "cancelled"}

    def resend_email(self, document_id, signer_email):
        self._maybe_fail()
        self.resent.append((document_id, signer_email))
        return {"success": True}


def make_form(db, **overrides):
    """Persist a form; defaults to an active form with signatures enabled"""
    values = {
        "name": "Contrato de Adesao",
        "status": FormStatus.ACTIVE,
        "autentique_enabled": True,
        "settings": dict(SIGNER_SETTINGS),
        "pdf_template_id": "pdf-tpl-1",
        "email_template_id": "mail-tpl-1",
    }
    values.update(overrides)
    form = Form(**values)
    db.add(form)
    db.commit()
    return form


@pytest.fixture
def db_session():
    # Import models so they register on the metadata
    import formflow.models  # noqa: F401

    engine = _memory_engine()
    Base.metadata.create_all(bind=engine)
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestSessionLocal()
    try:
        yield db
        logger.info("Committing Test DB Transaction")
        db.commit()
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def cache_session_factory():
    # Cache rows live on their own connection, like the production tier
    engine = _memory_engine()
    Base.metadata.create_all(bind=engine, tables=[CacheEntry.__table__])
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def redis_client(clock):
    return RedisClient(clock)


@pytest.fixture
def cache_manager(cache_session_factory, redis_client, clock):
    return CacheManager(
        database=DatabaseCache(cache_session_factory, clock=clock),
        redis_cache=RedisCache(redis_client),
        process_cache=ProcessCache(clock=clock),
        enabled=True,
        default_ttl=3600,
    )


@pytest.fixture
def autentique_client():
    return FakeAutentiqueClient()


@pytest.fixture
def local_storage(tmp_path):
    return LocalFileStorage(str(tmp_path / "uploads"), "http://files.test/uploads")


@pytest.fixture
def client(db_session, cache_manager, autentique_client, local_storage):

    # Override FastAPI's dependency to use the test database session
    def override_get_db():
        yield db_session

    def override_get_webhook_gateway(orchestrator=Depends(get_signature_orchestrator)):
        return WebhookGateway(db_session, orchestrator, secret=WEBHOOK_SECRET, require_signature=True)

    fast_api_app.dependency_overrides[get_db] = override_get_db
    fast_api_app.dependency_overrides[get_cache_manager] = lambda: cache_manager
    fast_api_app.dependency_overrides[get_autentique_client] = lambda: autentique_client
    fast_api_app.dependency_overrides[get_file_storage] = lambda: local_storage
    fast_api_app.dependency_overrides[get_webhook_gateway] = override_get_webhook_gateway
    yield TestClient(fast_api_app)
    fast_api_app.dependency_overrides.clear()
