"""
Module: audit_chain.services.chain_verifier
Responsibility: Walks a block range, re-links and recomputes hashes, writes
    integrity flags back onto the blocks, and records one VerificationReport
    per run.
Architecture position: Chain > Services.  Uses selectors/chain_selector.py,
    services/chain_lock.py, utils/hashing.py.

Invariants enforced:
    - Continue-on-error: a missing predecessor, a broken link or a hash
      mismatch is recorded and the scan moves on.  Findings are data
      (BlockCheck), never exceptions.
    - Flag writes are idempotent.  tamper_detected is only ever set, never
      cleared; is_verified/verified_at change only on the false -> true
      transition, so a second run over an unchanged range writes nothing.
    - A block once flagged tamper_detected is never marked is_verified
      again, even if it later checks clean; the two flags never both hold.
    - One run at a time: the VERIFY lock is held until the caller's
      transaction ends, so each report's counts describe exactly one pass.
    - status is SUCCESS iff tampered_blocks == 0.

Failure modes:
    - InvalidBlockRangeError: start < 0 or end < start.
    - BlockNotFoundError: verify_single on an unknown block number.
    - ChainNotInitializedError: full_chain_verify on an empty chain.
    - ChainLockTimeoutError: VERIFY lock not acquired in time.
"""

import time
from uuid import uuid4

from sqlalchemy.orm import Session

from audit_chain.config import ChainSettings
from audit_chain.domain.clock import Clock
from audit_chain.domain.verification import BlockCheck, BlockOutcome
from audit_chain.exceptions import (
    BlockNotFoundError,
    ChainNotInitializedError,
    InvalidBlockRangeError,
)
from audit_chain.logging_config import LogContext, get_logger
from audit_chain.models.block import AuditBlock
from audit_chain.models.verification_report import (
    VerificationReport,
    VerificationStatus,
)
from audit_chain.selectors.chain_selector import ChainSelector
from audit_chain.services.base import BaseService
from audit_chain.services.chain_lock import ChainLock
from audit_chain.utils.hashing import compute_block_hash

logger = get_logger("services.chain_verifier")


def check_block(block: AuditBlock, previous: AuditBlock | None) -> BlockCheck:
    """
    Check one block against its predecessor.  Pure: touches no flags.

    Block 0 is the trusted genesis axiom and always passes.
    """
    if block.block_number == 0:
        return BlockCheck(0, BlockOutcome.GENESIS)

    if previous is None:
        return BlockCheck(block.block_number, BlockOutcome.MISSING_PREDECESSOR)

    if block.previous_hash != previous.current_hash:
        return BlockCheck(
            block.block_number,
            BlockOutcome.LINKAGE_BROKEN,
            expected=previous.current_hash,
            actual=block.previous_hash,
        )

    recomputed = compute_block_hash(
        block.block_number,
        block.previous_hash,
        block.event_data,
        block.created_at,
        block.nonce,
    )
    if recomputed != block.current_hash:
        return BlockCheck(
            block.block_number,
            BlockOutcome.HASH_MISMATCH,
            expected=recomputed,
            actual=block.current_hash,
        )

    return BlockCheck(block.block_number, BlockOutcome.VERIFIED)


class ChainVerifier(BaseService):
    """
    Verifies stored blocks and records the outcome.

    Contract:
        ``verify_range`` always completes and returns a persisted report,
        whatever it finds.  Flags are flushed, not committed.

    Non-goals:
        - Does NOT repair anything.  A tampered block stays flagged; the
          remedy is a compensating block appended by the producer.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: ChainSettings | None = None,
    ):
        super().__init__(session, clock, settings)
        self._selector = ChainSelector(session)
        self._lock = ChainLock(session, self.settings.lock_timeout_seconds)

    def verify_range(self, start_block: int, end_block: int) -> VerificationReport:
        """
        Verify every stored block with ``start_block <= n <= end_block``.

        Postconditions:
            - Each tampered block has tamper_detected=True and
              is_verified=False.
            - Each passing block has is_verified=True.
            - A VerificationReport is flushed and returned.

        Raises:
            InvalidBlockRangeError: start < 0 or end < start.
        """
        if start_block < 0 or end_block < start_block:
            raise InvalidBlockRangeError(start_block, end_block)

        self._lock.acquire(ChainLock.VERIFY)

        verification_id = str(uuid4())
        started = time.perf_counter()

        with LogContext.bind(verification_id=verification_id):
            logger.info(
                "verification_started",
                extra={"start_block": start_block, "end_block": end_block},
            )

            blocks = self._selector.in_range(start_block, end_block, fresh=True)
            by_number = {block.block_number: block for block in blocks}

            checks: list[BlockCheck] = []
            for block in blocks:
                previous = None
                if block.block_number > 0:
                    previous = by_number.get(block.block_number - 1)
                    if previous is None:
                        previous = self._selector.by_number(block.block_number - 1, fresh=True)
                check = check_block(block, previous)
                self._apply(block, check)
                checks.append(check)

            self.session.flush()

            tampered = [check for check in checks if not check.passed]
            verified_count = len(checks) - len(tampered)
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            status = VerificationStatus.SUCCESS if not tampered else VerificationStatus.TAMPERED

            report = VerificationReport(
                verification_id=verification_id,
                start_block=start_block,
                end_block=end_block,
                total_blocks=len(blocks),
                verified_blocks=verified_count,
                tampered_blocks=len(tampered),
                status=status.value,
                verification_time_ms=elapsed_ms,
                details={
                    "blocks_verified": verified_count,
                    "blocks_with_tampering": len(tampered),
                    "verification_duration": f"{elapsed_ms}ms",
                    "findings": [check.to_dict() for check in tampered],
                },
                created_at=self.clock.now(),
            )
            self.session.add(report)
            self.session.flush()

            log = logger.info if status is VerificationStatus.SUCCESS else logger.warning
            log(
                "verification_completed",
                extra={
                    "start_block": start_block,
                    "end_block": end_block,
                    "total_blocks": len(blocks),
                    "verified_blocks": verified_count,
                    "tampered_blocks": len(tampered),
                    "status": status.value,
                    "duration_ms": elapsed_ms,
                },
            )

        return report

    def full_chain_verify(self) -> VerificationReport:
        """
        Verify from genesis to the current head.

        Raises:
            ChainNotInitializedError: Chain has no blocks.
        """
        head_number = self._selector.max_block_number()
        if head_number is None:
            raise ChainNotInitializedError()
        return self.verify_range(0, head_number)

    def verify_single(self, block_number: int) -> bool:
        """
        Verify one block against its immediate predecessor.

        Applies the same flag updates as ``verify_range`` but records no
        report.  Block 0 always passes.

        Raises:
            BlockNotFoundError: No block with this number.
        """
        self._lock.acquire(ChainLock.VERIFY)

        block = self._selector.by_number(block_number, fresh=True)
        if block is None:
            raise BlockNotFoundError(block_number)

        previous = None
        if block_number > 0:
            previous = self._selector.by_number(block_number - 1, fresh=True)

        check = check_block(block, previous)
        self._apply(block, check)
        self.session.flush()

        logger.info(
            "single_block_verified",
            extra={"block_number": block_number, "outcome": check.outcome.value},
        )
        return check.passed

    def _apply(self, block: AuditBlock, check: BlockCheck) -> None:
        if check.passed:
            if not block.is_verified and not block.tamper_detected:
                block.is_verified = True
                block.verified_at = self.clock.now()
            return

        event = {
            BlockOutcome.MISSING_PREDECESSOR: "predecessor_missing",
            BlockOutcome.LINKAGE_BROKEN: "chain_linkage_broken",
            BlockOutcome.HASH_MISMATCH: "block_hash_mismatch",
        }[check.outcome]
        logger.error(
            event,
            extra={
                "block_number": check.block_number,
                "expected_hash": check.expected,
                "actual_hash": check.actual,
            },
        )

        if not block.tamper_detected:
            block.tamper_detected = True
        if block.is_verified:
            block.is_verified = False

    # Read path

    def tampered_blocks(self) -> list[AuditBlock]:
        """All blocks currently flagged tamper_detected, oldest first."""
        return self._selector.tampered()

    def verification_history(self, limit: int | None = None) -> list[VerificationReport]:
        """Most recent reports first."""
        if limit is None:
            limit = self.settings.verification_history_limit
        return self._selector.recent_reports(limit)

    def get_report(self, verification_id: str) -> VerificationReport | None:
        return self._selector.report_by_id(verification_id)

    def reports_by_status(self, status: VerificationStatus | str) -> list[VerificationReport]:
        return self._selector.reports_by_status(status)
