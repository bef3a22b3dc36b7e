"""
Module: audit_chain.services.chain_lock
Responsibility: Critical sections around the chain head and around
    verification runs, held until the caller's transaction ends.
Architecture position: Chain > Services.  No model imports.

Invariants enforced:
    - Appends are serialized: at most one transaction at a time reads the
      head and writes ``head + 1``.
    - Verification runs are serialized so report counts describe one run.
    - A lock is released only when the session's root transaction ends
      (commit, rollback or close), never mid-transaction.

Mechanism:
    PostgreSQL
        ``pg_try_advisory_xact_lock(key)`` polled until the timeout.  The
        database releases the lock at commit/rollback.  A row lock on the
        head block would not do: under READ COMMITTED a waiter would wake
        up holding a stale head.
    Other backends (SQLite)
        One process-wide ``threading.Lock`` per name, released from an
        ``after_transaction_end`` listener on the session.  This only
        serializes writers inside one process.

Failure modes:
    - ChainLockTimeoutError if the lock is not acquired within
      ``timeout_seconds``.
"""

import hashlib
import threading
import time

from sqlalchemy import event, text
from sqlalchemy.orm import Session, SessionTransaction

from audit_chain.exceptions import ChainLockTimeoutError
from audit_chain.logging_config import get_logger

logger = get_logger("services.chain_lock")

_HELD_KEY = "audit_chain.held_locks"
_RELEASE_KEY = "audit_chain.release_on_end"

_POLL_INTERVAL_SECONDS = 0.05

_process_locks: dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def advisory_key(name: str) -> int:
    """Stable signed 64-bit advisory lock key for a lock name."""
    digest = hashlib.sha256(f"audit_chain:{name}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def _process_lock(name: str) -> threading.Lock:
    with _registry_lock:
        lock = _process_locks.get(name)
        if lock is None:
            lock = _process_locks[name] = threading.Lock()
        return lock


def _on_transaction_end(session: Session, transaction: SessionTransaction) -> None:
    # Savepoints end inside the root transaction; keep holding
    if transaction.parent is not None:
        return
    session.info.pop(_HELD_KEY, None)
    for lock in session.info.pop(_RELEASE_KEY, []):
        lock.release()


def _ensure_listener(session: Session) -> None:
    if not event.contains(session, "after_transaction_end", _on_transaction_end):
        event.listen(session, "after_transaction_end", _on_transaction_end)


class ChainLock:
    """
    Named, transaction-scoped critical sections.

    Usage:
        ChainLock(session).acquire(ChainLock.HEAD)
        # ... read head, write head + 1, flush ...
        # released when the caller commits or rolls back
    """

    HEAD = "HEAD"
    VERIFY = "VERIFY"

    def __init__(self, session: Session, timeout_seconds: float = 30):
        self.session = session
        self.timeout_seconds = timeout_seconds

    def is_held(self, name: str) -> bool:
        return name in self.session.info.get(_HELD_KEY, set())

    def acquire(self, name: str) -> None:
        """
        Enter the critical section ``name`` for the rest of the transaction.

        Re-acquiring a lock this session already holds is a no-op.

        Raises:
            ChainLockTimeoutError: If the lock is not obtained in time.
        """
        if self.is_held(name):
            return

        _ensure_listener(self.session)
        # Begins the root transaction so its end is observable
        connection = self.session.connection()

        started = time.monotonic()
        if connection.dialect.name == "postgresql":
            self._acquire_advisory(name)
        else:
            lock = _process_lock(name)
            if not lock.acquire(timeout=self.timeout_seconds):
                self._timed_out(name)
            self.session.info.setdefault(_RELEASE_KEY, []).append(lock)

        self.session.info.setdefault(_HELD_KEY, set()).add(name)
        logger.debug(
            "chain_lock_acquired",
            extra={
                "lock_name": name,
                "waited_ms": int((time.monotonic() - started) * 1000),
            },
        )

    def _acquire_advisory(self, name: str) -> None:
        key = advisory_key(name)
        deadline = time.monotonic() + self.timeout_seconds
        while True:
            acquired = self.session.execute(
                text("SELECT pg_try_advisory_xact_lock(:key)"), {"key": key}
            ).scalar()
            if acquired:
                return
            if time.monotonic() >= deadline:
                self._timed_out(name)
            time.sleep(_POLL_INTERVAL_SECONDS)

    def _timed_out(self, name: str) -> None:
        logger.warning(
            "chain_lock_timeout",
            extra={"lock_name": name, "timeout_seconds": self.timeout_seconds},
        )
        raise ChainLockTimeoutError(name, self.timeout_seconds)
