"""
Module: audit_chain.services.pow_worker
Responsibility: Runs proof-of-work nonce searches on a dedicated, bounded
    thread pool so CPU-bound sealing never occupies request threads.
Architecture position: Chain > Services.  Wraps utils/hashing.py.

Invariants enforced:
    - At most ``workers`` searches run at once; further submissions queue.
    - The attempt cap is the only bound on a search.  There is no timeout
      and no cancellation once a search has started.

Failure modes:
    - RuntimeError from ``seal`` after ``shutdown``.
    - Exceptions raised by the search (ValueError, HashComputationError)
      propagate to the caller of ``seal``.
"""

import atexit
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from audit_chain.config import ChainSettings, get_settings
from audit_chain.logging_config import get_logger
from audit_chain.utils.hashing import (
    DEFAULT_POW_MAX_ATTEMPTS,
    ProofOfWorkResult,
    seal_with_proof_of_work,
)

logger = get_logger("services.pow_worker")


class ProofOfWorkSealer:
    """Background worker pool for ``seal_with_proof_of_work``."""

    def __init__(
        self,
        workers: int = 1,
        max_attempts: int = DEFAULT_POW_MAX_ATTEMPTS,
    ):
        if workers < 1:
            raise ValueError(f"workers must be positive, got {workers}")
        self.workers = workers
        self.max_attempts = max_attempts
        self._executor = ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix="pow-sealer",
        )

    def seal(
        self,
        block_number: int,
        previous_hash: str,
        event_data: dict,
        created_at: datetime,
        difficulty: int,
        max_attempts: int | None = None,
    ) -> ProofOfWorkResult:
        """Submit a nonce search and block until it finishes."""
        future = self._executor.submit(
            seal_with_proof_of_work,
            block_number,
            previous_hash,
            event_data,
            created_at,
            difficulty,
            max_attempts if max_attempts is not None else self.max_attempts,
        )
        result = future.result()

        if result.sealed:
            logger.info(
                "proof_of_work_completed",
                extra={
                    "block_number": block_number,
                    "difficulty": difficulty,
                    "nonce": result.nonce,
                    "attempts": result.attempts,
                    "mining_time_ms": result.elapsed_ms,
                },
            )
        else:
            logger.warning(
                "proof_of_work_cap_reached",
                extra={
                    "block_number": block_number,
                    "difficulty": difficulty,
                    "attempts": result.attempts,
                    "mining_time_ms": result.elapsed_ms,
                },
            )
        return result

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


_shared_sealers: dict[tuple[int, int], ProofOfWorkSealer] = {}
_shared_lock = threading.Lock()


def get_default_sealer(settings: ChainSettings | None = None) -> ProofOfWorkSealer:
    """
    Process-wide sealer for ``settings`` (global settings when omitted).

    One pool is created per distinct ``(pow_workers, pow_max_attempts)``
    and shared by every caller with those settings.
    """
    if settings is None:
        settings = get_settings()

    key = (settings.pow_workers, settings.pow_max_attempts)
    with _shared_lock:
        sealer = _shared_sealers.get(key)
        if sealer is None:
            sealer = ProofOfWorkSealer(workers=key[0], max_attempts=key[1])
            _shared_sealers[key] = sealer
        return sealer


@atexit.register
def shutdown_default_sealer() -> None:
    with _shared_lock:
        sealers = list(_shared_sealers.values())
        _shared_sealers.clear()
    for sealer in sealers:
        sealer.shutdown()
