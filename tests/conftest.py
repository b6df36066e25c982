import os

import pytest

# Keep the module-level app in main.py off any real backend during tests
os.environ.setdefault("PORTFOLIO_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from cache import TTLCache
from config import BACKEND_MEMORY, AppConfig
from content import ContentService
from database import BackendGateway
from memory_store import MemoryBackend

from helpers import (
    ADMIN_EMAIL,
    ADMIN_ID,
    ADMIN_PASSWORD,
    OTHER_EMAIL,
    OTHER_ID,
    OTHER_PASSWORD,
    SECRET,
    FakeClock,
)


@pytest.fixture
def config():
    return AppConfig(backend_mode=BACKEND_MEMORY, jwt_secret=SECRET)


@pytest.fixture
def backend():
    store = MemoryBackend(secret=SECRET)
    store.add_user(ADMIN_EMAIL, ADMIN_PASSWORD, user_id=ADMIN_ID)
    store.add_user(OTHER_EMAIL, OTHER_PASSWORD, user_id=OTHER_ID)
    return store


@pytest.fixture
def admin_backend(backend):
    """Store whose admin has already been claimed by ADMIN_EMAIL."""
    backend.set_admin(ADMIN_ID)
    return backend


@pytest.fixture
def gateway(config, backend):
    return BackendGateway(config, backend)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def content(gateway, clock):
    return ContentService(gateway, cache=TTLCache(clock=clock), settings_ttl=60, projects_ttl=30)
