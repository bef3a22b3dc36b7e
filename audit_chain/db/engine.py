"""
Module: audit_chain.db.engine
Responsibility: Builds the SQLAlchemy engine for a database URL, owns the
    module-wide engine and session factory, and provides the commit/rollback
    scope used by the CLI and by producers that do not manage sessions.
Architecture position: Chain > DB.  May import from db/base.py,
    db/immutability.py and db/triggers.py.

Backends:
    PostgreSQL
        Production.  Pooled connections at READ COMMITTED; head
        serialization comes from advisory locks (services/chain_lock.py),
        not from the isolation level.
    SQLite
        Local tooling and tests.  ``sqlite://`` (in-memory) shares a single
        connection through StaticPool; a file database gets one connection
        per session.  SQLAlchemy emits BEGIN itself so savepoints nest
        correctly.

Failure modes:
    - RuntimeError from any accessor called before an engine is installed.
"""

import atexit
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from audit_chain.config import ChainSettings
from audit_chain.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "No audit chain engine; call init_engine_from_url() first."


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create an engine for ``database_url`` without installing it.

    Pool arguments apply to PostgreSQL.  For SQLite ``pool_timeout`` becomes
    the driver's busy timeout and the rest are ignored.
    """
    url = make_url(database_url)

    if url.get_backend_name() != "sqlite":
        return create_engine(
            url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": pool_timeout},
        poolclass=StaticPool if url.database in (None, "", ":memory:") else None,
    )

    # pysqlite defers BEGIN to the first DML statement, which turns an
    # early SAVEPOINT into the outer transaction; issue BEGIN ourselves
    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def init_engine_from_url(database_url: str, **engine_options) -> Engine:
    """
    Install the module engine and session factory for ``database_url``.

    Any previously installed engine is disposed.  ``engine_options`` are
    passed to ``build_engine``.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    _engine = build_engine(database_url, **engine_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, **engine_options},
    )
    return _engine


def init_engine_from_settings(settings: ChainSettings) -> Engine:
    return init_engine_from_url(
        settings.database_url,
        echo=settings.echo_sql,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that need one session per thread."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One unit of work: commit on success, roll back on error, always close.

    Chain locks taken inside the scope are released when it ends.

        with session_scope() as session:
            AuditAppender(session).append(...)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("unit_of_work_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(install_triggers: bool = True) -> None:
    """
    Create the chain tables, register the ORM immutability listeners and,
    on PostgreSQL, install the immutability triggers.
    """
    from audit_chain.db.base import Base
    from audit_chain.db.immutability import register_immutability_listeners
    from audit_chain.db.triggers import install_immutability_triggers

    import audit_chain.models  # noqa: F401  (populates Base.metadata)

    engine = get_engine()
    Base.metadata.create_all(engine)
    register_immutability_listeners()
    if install_triggers:
        install_immutability_triggers(engine)

    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop triggers and tables.  Tests and local tooling only."""
    from audit_chain.db.base import Base
    from audit_chain.db.triggers import uninstall_immutability_triggers

    import audit_chain.models  # noqa: F401

    engine = get_engine()
    uninstall_immutability_triggers(engine)
    Base.metadata.drop_all(engine)


def reset_engine() -> None:
    """Dispose and forget the module engine."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


@atexit.register
def _dispose_at_exit() -> None:
    if _engine is not None:
        _engine.dispose()
