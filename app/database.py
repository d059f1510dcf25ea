"""
Async SQLAlchemy wiring for the payment store.

  engine             one pool per process, built from DATABASE_URL
  AsyncSessionLocal  session factory; also handed to the background jobs
                     (idempotency reaper, periodic Finzen sync)
  Base               declarative base of accounts, ledger_entries and
                     idempotency_records
  get_db()           per-request session dependency

Commit points:
  get_db() commits when the endpoint returns and rolls back when it
  raises. Two writes do not wait for it: the idempotency guard commits
  its record before the transfer is even validated, and the transfer
  engine commits the balance/ledger unit before it notifies anyone. A
  rejected transfer therefore still holds its request id until the window
  expires.

SQLite is the default store. Its file lives under ./data, which is
created on import so a fresh checkout starts without setup.
"""

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from app.config import settings


def _ensure_sqlite_directory(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


_ensure_sqlite_directory(settings.DATABASE_URL)

# DEBUG echoes every statement, including the version-checked balance UPDATEs
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

# Entries are read after commit to build the response and the events
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    """Yield a session for one request; commit on success, roll back on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
