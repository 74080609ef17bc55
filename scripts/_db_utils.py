from __future__ import annotations

import os
from contextlib import contextmanager
from collections.abc import Generator

from sqlalchemy.orm import Session

from app.arsd.db import build_engine, make_sessionmaker


def script_database_url(database_url: str | None = None) -> str:
    return (database_url or os.environ.get("DATABASE_URL") or "sqlite:///arsd.db").strip()


@contextmanager
def script_session(database_url: str | None = None) -> Generator[Session, None, None]:
    """
    Session for command-line scripts. Uses the app's engine settings without
    building the Flask app, so it is safe to call from the release phase.
    """
    engine = build_engine(script_database_url(database_url))
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
