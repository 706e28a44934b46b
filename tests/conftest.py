import sys
import pathlib
import tempfile
import os
import warnings
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

try:
    from sqlalchemy.exc import SAWarning
    warnings.filterwarnings('ignore', category=SAWarning)
except Exception:
    # If SQLAlchemy not available at import, ignore
    pass

# Point the engine at a throwaway sqlite file before taskseries.db is
# imported; the engine is created at import time.
_TMP_DIR = tempfile.mkdtemp(prefix='taskseries-tests-')
os.environ.setdefault('DATABASE_URL', f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}")
# Tests pin every reference date explicitly; keep the fallback parser on.
os.environ.setdefault('ENABLE_NATURAL_DATE_FALLBACK', '1')

warnings.filterwarnings('ignore', message='The garbage collector is trying to clean up non-checked-in connection')

# Reduce SQLAlchemy logger verbosity during tests
import logging as _logging
for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool', 'sqlmodel'):
    _logging.getLogger(_name).setLevel(_logging.ERROR)

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from taskseries.main import app, get_store
from taskseries.db import init_db
from taskseries.store import SqlTaskStore


@pytest_asyncio.fixture
async def ensure_db():
    await init_db()


@pytest_asyncio.fixture
async def store(ensure_db):
    return SqlTaskStore()


@pytest.fixture
def make_task(store):
    """Return a coroutine factory that inserts a task and returns its id.

    Defaults produce a series root with index 0; keyword arguments override
    any field accepted by ``SqlTaskStore.create_task_instance``.
    """
    async def _make(**fields):
        data = {
            'title': 'test task',
            'status': 'todo',
            'recurrence_index': 0,
        }
        data.update(fields)
        return await store.create_task_instance(data)
    return _make


@pytest_asyncio.fixture
async def client(ensure_db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_store, None)


def pytest_sessionfinish(session, exitstatus):
    """Dispose the engine's sync pool so no connections outlive the session."""
    try:
        from taskseries import db as ts_db
        ts_db.engine.sync_engine.dispose()
    except Exception:
        pass
