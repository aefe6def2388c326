"""SQLModel database engine, session management and transaction helper."""
from contextlib import contextmanager
from typing import Iterator

from loguru import logger
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, create_engine, Session

from gdledger.core.config import settings
from gdledger.core.errors import LedgerError, PersistenceError

# Import models so SQLModel.metadata knows about all tables
import gdledger.models.gd  # noqa: F401
import gdledger.models.inventory  # noqa: F401
import gdledger.models.party  # noqa: F401
import gdledger.models.sales  # noqa: F401


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine; SQLite connections are opened with foreign keys on."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    eng = create_engine(url, connect_args=connect_args, echo=False, **kwargs)
    if url.startswith("sqlite"):
        event.listen(eng, "connect", _sqlite_pragmas)
    return eng


def _sqlite_pragmas(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys = ON")
    cur.close()


engine = build_engine(settings.DATABASE_URL)


def create_db_and_tables(bind: Engine | None = None) -> None:
    """Create all tables defined in SQLModel models."""
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """FastAPI dependency: yields a SQLModel session."""
    with Session(engine) as session:
        yield session


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """
    Run a workflow as one all-or-nothing unit.

    Commits when the block exits cleanly. Any exception rolls the session back;
    domain errors propagate unchanged, storage errors are wrapped into
    ``PersistenceError``.
    """
    try:
        yield session
        session.commit()
    except LedgerError as exc:
        session.rollback()
        logger.error(f"Transaction rolled back: {exc.kind}: {exc.message}")
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(f"Transaction rolled back (storage): {exc}")
        raise PersistenceError(f"Storage failure: {exc}") from exc
    except Exception:
        session.rollback()
        logger.exception("Transaction rolled back (unexpected error)")
        raise
