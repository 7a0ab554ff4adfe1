"""
Database setup

SQLAlchemy engine and session factory shared by the API. Routes receive a
session through the `get_db` dependency; multi-step writes go through
`transaction()` so they commit or roll back as one unit.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from config import DATABASE_URL

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

AFTER_COMMIT_KEY = "after_commit"


def init_db(bind=None):
    """Create every table that does not exist yet."""
    import models  # noqa: F401  registers the mappers on Base

    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def after_commit(db: Session, callback: Callable[[], None]):
    """Run `callback` once the surrounding transaction has committed."""
    db.info.setdefault(AFTER_COMMIT_KEY, []).append(callback)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or nothing at all.

    Callbacks registered with `after_commit` run only when the commit went
    through; on rollback they are discarded.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        db.info.pop(AFTER_COMMIT_KEY, None)
        raise
    for callback in db.info.pop(AFTER_COMMIT_KEY, []):
        try:
            callback()
        except Exception:
            logger.exception("after-commit callback failed")
