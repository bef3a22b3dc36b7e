"""
Concurrent append tests.

Each worker thread owns a committing session, as producer request threads
do.  The HEAD lock must serialize them so that the chain stays gap-free,
fork-free and verifiable.

On SQLite these run against a file database and exercise the in-process
lock; with DATABASE_URL set to PostgreSQL they exercise advisory locks.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from audit_chain.config import ChainSettings
from audit_chain.services.audit_appender import AuditAppender
from audit_chain.services.chain_verifier import ChainVerifier

pytestmark = pytest.mark.slow_locks

THREADS = 8
APPENDS_PER_THREAD = 3


@pytest.fixture
def concurrent_settings():
    return ChainSettings(lock_timeout_seconds=60, pow_max_attempts=200_000)


def _seed(factory, settings):
    with factory() as session:
        AuditAppender(session, settings=settings).seed_genesis()
        session.commit()


def _append_worker(factory, settings, sealer, barrier, worker_id, use_pow=False):
    barrier.wait()
    numbers = []
    for i in range(APPENDS_PER_THREAD):
        with factory() as session:
            appender = AuditAppender(session, settings=settings, sealer=sealer)
            payload = {"worker": worker_id, "seq": i}
            if use_pow:
                block = appender.append_with_proof_of_work(
                    "TRANSACTION_CREATED", "TRANSACTION", worker_id, worker_id, payload, difficulty=1
                )
            else:
                block = appender.append(
                    "TRANSACTION_CREATED", "TRANSACTION", worker_id, worker_id, payload
                )
            number = block.block_number
            session.commit()
        numbers.append(number)
    return numbers


def _run_workers(factory, settings, sealer, use_pow=False):
    barrier = Barrier(THREADS)
    with ThreadPoolExecutor(max_workers=THREADS) as pool:
        futures = [
            pool.submit(_append_worker, factory, settings, sealer, barrier, worker_id, use_pow)
            for worker_id in range(THREADS)
        ]
        return [n for future in futures for n in future.result()]


class TestConcurrentAppends:
    def test_no_duplicate_or_missing_block_numbers(
        self, committing_session_factory, concurrent_settings, sealer
    ):
        _seed(committing_session_factory, concurrent_settings)

        numbers = _run_workers(committing_session_factory, concurrent_settings, sealer)

        expected = THREADS * APPENDS_PER_THREAD
        assert sorted(numbers) == list(range(1, expected + 1))

    def test_concurrently_built_chain_verifies(
        self, committing_session_factory, concurrent_settings, sealer
    ):
        _seed(committing_session_factory, concurrent_settings)
        _run_workers(committing_session_factory, concurrent_settings, sealer)

        with committing_session_factory() as session:
            report = ChainVerifier(session, settings=concurrent_settings).full_chain_verify()
            session.commit()

        assert report.status == "SUCCESS"
        assert report.total_blocks == THREADS * APPENDS_PER_THREAD + 1
        assert report.tampered_blocks == 0

    def test_sealed_appends_under_contention(
        self, committing_session_factory, concurrent_settings, sealer
    ):
        _seed(committing_session_factory, concurrent_settings)

        numbers = _run_workers(
            committing_session_factory, concurrent_settings, sealer, use_pow=True
        )

        assert len(set(numbers)) == THREADS * APPENDS_PER_THREAD
        with committing_session_factory() as session:
            report = ChainVerifier(session, settings=concurrent_settings).full_chain_verify()
            session.commit()
        assert report.is_success

    def test_concurrent_seeding_creates_one_genesis(
        self, committing_session_factory, concurrent_settings
    ):
        barrier = Barrier(4)

        def seed():
            barrier.wait()
            with committing_session_factory() as session:
                block = AuditAppender(session, settings=concurrent_settings).seed_genesis()
                current_hash = block.current_hash
                session.commit()
            return current_hash

        with ThreadPoolExecutor(max_workers=4) as pool:
            hashes = [f.result() for f in [pool.submit(seed) for _ in range(4)]]

        assert len(set(hashes)) == 1
        with committing_session_factory() as session:
            stats = AuditAppender(session, settings=concurrent_settings).chain_statistics()
        assert stats.total_blocks == 1
