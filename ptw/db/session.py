"""Engine and session factory.

SQLite needs two adjustments to give the permit row the locking the
lifecycle controller relies on: pysqlite's own transaction handling is
disabled so SQLAlchemy emits BEGIN itself, and every transaction starts
with BEGIN IMMEDIATE so concurrent writers queue on the database lock
instead of interleaving read-then-write. Other backends use
SELECT ... FOR UPDATE issued by the controller.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ptw.core.config import get_settings
from ptw.core.lifecycle.errors import LifecycleError, StorageFailure
from ptw.db.base import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, *, busy_timeout: float = 30.0, echo: bool = False) -> Engine:
    """Create an engine for the given URL with backend-specific tuning."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": busy_timeout},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    """Session factory handed to the lifecycle controller and authoring service."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def unit_of_work(session_factory: sessionmaker) -> Iterator[Session]:
    """One session and one transaction; committed on success, rolled back on any error.

    Store errors surface as ``StorageFailure``. Lifecycle errors raised by
    the caller propagate unchanged after the rollback.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except LifecycleError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Permit store failure, transaction rolled back")
        raise StorageFailure(f"The permit store failed and the change was rolled back: {e}") from e
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    import ptw.db.models  # noqa: F401 - registers every model on Base.metadata

    Base.metadata.create_all(engine)
    logger.info("Database schema ready")


settings = get_settings()
engine = build_engine(settings.database_url, busy_timeout=settings.sqlite_busy_timeout)
SessionLocal = build_session_factory(engine)
