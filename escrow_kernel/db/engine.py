"""
Module: escrow_kernel.db.engine
Responsibility: the process-wide engine and session factory, and the
    ``session_scope`` transaction boundary used by the orchestrators, the
    sweep runner and the CLI.
Architecture position: Kernel > DB.  MUST NOT import from services/,
    selectors/ or outer layers (table helpers import models lazily).

Invariants enforced:
    - PostgreSQL (psycopg2) runs at READ COMMITTED; status-changing writes
      take an explicit FOR UPDATE row lock on top of the version column.
    - On SQLite FOR UPDATE is a no-op and the version column alone
      serializes writers.

Failure modes:
    - RuntimeError if the engine or factory is requested before
      init_engine_from_url().
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from escrow_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _engine_options(database_url: str, pool_size: int, max_overflow: int) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        # wait on a locked database file instead of failing immediately
        return {"connect_args": {"timeout": 30}}
    return {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "isolation_level": "READ COMMITTED",
    }


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    A second call replaces the first engine without disposing it; call
    reset_engine() in between when that matters.  Sessions do not expire
    on commit, so DTOs can be built from rows after the transaction ends.
    """
    global _engine, _SessionFactory

    _engine = create_engine(
        database_url, echo=echo, **_engine_options(database_url, pool_size, max_overflow),
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    One unit of work: commit on normal exit, roll back and re-raise on error.

    Services only flush; this is where their changes become durable.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def is_postgres(session_or_engine: Session | Engine | None = None) -> bool:
    """True if the given session/engine (default: the current engine) is PostgreSQL."""
    target = session_or_engine if session_or_engine is not None else _engine
    if target is None:
        return False
    bind = target.get_bind() if isinstance(target, Session) else target
    return bind.dialect.name == "postgresql"


def create_tables() -> None:
    """Create every escrow table on the current engine."""
    from escrow_kernel.db.base import Base
    import escrow_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop every escrow table. Tests only."""
    from escrow_kernel.db.base import Base
    import escrow_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose and forget the engine and session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_at_exit() -> None:
    if _engine is not None:
        _engine.dispose()
