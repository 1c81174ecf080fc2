from __future__ import annotations

import asyncio
import os

import pytest

# Settings are cached on first import; pin the environment before that.
os.environ.setdefault("ENV_MODE", "development")
os.environ.setdefault("DEBUG", "false")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from storefront.database import init_db


class FakeClock:
    def __init__(self, t: float = 1000.0) -> None:
        self.t = t

    def __call__(self) -> float:  # acts like time.monotonic
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_maker(tmp_path):
    """Session factory over a fresh SQLite file with tables and settings row."""
    # NullPool: every asyncio.run() gets its own connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}", poolclass=NullPool)
    asyncio.run(init_db(engine))
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())
