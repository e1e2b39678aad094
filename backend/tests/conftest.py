import os
import random
import sys
import tempfile

import pytest
import pytest_asyncio

# Settings are read once at import time, so the environment goes first
_DB_DIR = tempfile.mkdtemp(prefix="loteria-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'app.db')}")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_PASSWORD", "let-me-in")
os.environ.setdefault("CALL_INTERVAL_SEC", "60")
os.environ.setdefault("PRESENCE_SWEEP_INTERVAL_SEC", "3600")
os.environ.setdefault("ORIGIN", "http://localhost:5173")

BACKEND_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import Base  # noqa: E402
from database import RoomStore  # noqa: E402


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest_asyncio.fixture()
async def store():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield RoomStore(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def rng():
    return random.Random(1234)
