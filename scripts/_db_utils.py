from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.djtquest.db import build_engine, make_sessionmaker, transaction


def resolve_db_url(database_url: str | None = None) -> str:
    """Explicit argument wins, then DATABASE_URL, then the local sqlite file."""
    return (database_url or os.environ.get("DATABASE_URL") or "sqlite:///djtquest.db").strip()


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    engine = build_engine(db_url)
    try:
        with transaction(make_sessionmaker(engine)) as s:
            yield s
    finally:
        engine.dispose()
