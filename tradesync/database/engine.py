from __future__ import annotations

from typing import Iterator, Optional

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from tradesync.config import settings

_engine: Optional[Engine] = None

# IMPORTANT:
# - SessionLocal must be callable at import time.
# - We configure its bind lazily in init_engine().
SessionLocal = sessionmaker(autocommit=False, autoflush=False, future=True)


def _apply_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    # NOTE: sqlite3.Connection interface
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()


def build_engine(url: str, **kwargs) -> Engine:
    url = str(url).strip()
    connect_args: dict = dict(kwargs.pop("connect_args", {}) or {})

    # SQLite needs special handling for threads.
    is_sqlite = url.startswith("sqlite:")
    if is_sqlite:
        connect_args.setdefault("check_same_thread", False)
    else:
        # Store and compare timestamps in UTC regardless of the server timezone.
        connect_args.setdefault("options", "-c timezone=UTC")

    eng = create_engine(
        url,
        future=True,
        pool_pre_ping=True,
        connect_args=connect_args,
        **kwargs,
    )
    if is_sqlite:
        event.listen(eng, "connect", _apply_sqlite_pragmas)
    return eng


def init_engine() -> None:
    """Initialize the global SQLAlchemy Engine + bind SessionLocal.

    Safe to call multiple times.
    """
    global _engine

    if _engine is not None:
        return

    _engine = build_engine(settings.DATABASE_URL)
    SessionLocal.configure(bind=_engine)


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    assert _engine is not None
    return _engine


def init_schema_check() -> None:
    """Connectivity + schema bootstrap.

    - verify connectivity
    - create tables if missing (create_all is safe on an existing schema)
    """
    eng = get_engine()
    with eng.connect() as conn:
        conn.execute(text("SELECT 1"))
        conn.commit()

    from tradesync.database.models import Base

    Base.metadata.create_all(bind=eng)


def get_session() -> Iterator[Session]:
    """FastAPI dependency: one session per request, closed on exit.

    Commit is the route's job; anything uncommitted is rolled back on close.
    """
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()
