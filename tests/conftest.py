"""
Pytest fixtures for the audit chain test suite.

Provides:
- Database sessions isolated per test by transaction rollback
- Committing session factories for concurrency tests
- Chain services wired to a DeterministicClock
- Structured log capture

Environment Variables:
- DATABASE_URL: database for the suite.  Defaults to in-memory SQLite.
  Set a ``postgresql://`` URL to run against PostgreSQL (triggers and
  advisory locks included).
"""

import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from audit_chain.config import ChainSettings
from audit_chain.db.base import Base
from audit_chain.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from audit_chain.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from audit_chain.db.triggers import (
    install_immutability_triggers,
    uninstall_immutability_triggers,
)
from audit_chain.domain.clock import DeterministicClock
from audit_chain.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from audit_chain.services.audit_appender import AuditAppender
from audit_chain.services.chain_verifier import ChainVerifier
from audit_chain.services.pow_worker import ProofOfWorkSealer

DEFAULT_DATABASE_URL = "sqlite://"

FIXED_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for chain locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Each test starts with an empty LogContext."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture audit_chain logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, appender):
            appender.append(...)
            logs = captured_logs()
            assert any(r["message"] == "audit_block_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("audit_chain")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Engine and schema, created once for the whole run
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(
        get_database_url(), echo=False,
        pool_size=30, max_overflow=20, pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _truncate_all_tables(engine):
    """Remove all rows, bypassing immutability (test cleanup only)."""
    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        else:
            for name in table_names:
                conn.execute(text(f"DELETE FROM {name}"))


# =============================================================================
# Rolled-back session per test
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Session bound to an outer transaction that is rolled back at teardown.

    ``session.commit()`` inside a test only releases a savepoint, so blocks a
    test commits never reach the next test.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Committing sessions (concurrency tests)
# =============================================================================


@pytest.fixture(scope="function")
def committing_session_factory(db_engine, db_tables, tmp_path) -> Generator[sessionmaker, None, None]:
    """Session factory whose sessions really commit, one per thread.

    On PostgreSQL this is the suite engine, cleaned by TRUNCATE.  On SQLite
    the in-memory database has a single shared connection, so a file-backed
    database under ``tmp_path`` is used instead.
    """
    if is_postgres():
        yield get_session_factory()
        _truncate_all_tables(db_engine)
        return

    file_engine = build_engine(f"sqlite:///{tmp_path / 'chain.db'}", pool_timeout=30)
    Base.metadata.create_all(file_engine)
    yield sessionmaker(bind=file_engine, expire_on_commit=False)
    file_engine.dispose()


# =============================================================================
# Chain services
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(FIXED_TIME)


@pytest.fixture
def chain_settings() -> ChainSettings:
    """Settings for services under test: short lock waits, small PoW cap."""
    return ChainSettings(
        database_url=get_database_url(),
        pow_max_attempts=200_000,
        pow_default_difficulty=2,
        lock_timeout_seconds=5,
    )


@pytest.fixture
def sealer() -> Generator[ProofOfWorkSealer, None, None]:
    pool = ProofOfWorkSealer(workers=1, max_attempts=200_000)
    yield pool
    pool.shutdown()


@pytest.fixture
def appender(session, deterministic_clock, chain_settings, sealer) -> AuditAppender:
    return AuditAppender(
        session,
        clock=deterministic_clock,
        settings=chain_settings,
        sealer=sealer,
    )


@pytest.fixture
def verifier(session, deterministic_clock, chain_settings) -> ChainVerifier:
    return ChainVerifier(session, clock=deterministic_clock, settings=chain_settings)


@pytest.fixture
def seeded_chain(appender, deterministic_clock):
    """Genesis plus four blocks (numbers 0..4), one second apart."""
    blocks = [appender.seed_genesis()]
    for i in range(1, 5):
        deterministic_clock.tick()
        blocks.append(
            appender.append(
                "WALLET_CREATED",
                "WALLET",
                100 + i,
                7,
                {"action": "WALLET_CREATED", "walletId": 100 + i},
            )
        )
    return blocks


# =============================================================================
# Tamper simulation
# =============================================================================


@contextmanager
def _disabled_immutability(session: Session):
    """
    Disable ORM listeners and (on PostgreSQL) database triggers.

    Triggers are dropped and re-created on the session's own connection, so
    the change stays inside the test transaction.
    """
    unregister_immutability_listeners()
    if is_postgres():
        uninstall_immutability_triggers(session.connection())
    try:
        yield
    finally:
        if is_postgres():
            install_immutability_triggers(session.connection())
        register_immutability_listeners()


@pytest.fixture
def disabled_immutability():
    """Context manager factory for simulating out-of-band edits."""
    return _disabled_immutability
