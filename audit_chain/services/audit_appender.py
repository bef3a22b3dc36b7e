"""
Module: audit_chain.services.audit_appender
Responsibility: The write path of the audit chain.  Accepts event
    descriptions from producers, links them to the current head, seals them
    with the Hashing Engine and persists them.  Also seeds the genesis block
    and answers the read queries producers and operators need.
Architecture position: Chain > Services.  Uses selectors/chain_selector.py,
    services/chain_lock.py, services/pow_worker.py, utils/hashing.py.

Invariants enforced:
    - block_number sequence has no gaps and no duplicates: the head is read
      and ``head + 1`` written inside the HEAD critical section.
    - previous_hash of a new block is the head's current_hash.
    - current_hash = H(block_number, previous_hash, event_data, created_at,
      nonce) over the normalized payload, and that same normalized payload
      is what gets stored.
    - New blocks start with is_verified=False, tamper_detected=False.

Failure modes:
    - ChainNotInitializedError: no genesis block.  Fatal, not retryable.
    - ProofOfWorkCapExceededError: PoW search hit its cap and the caller
      did not accept an unsealed block.  Nothing is written.
    - ChainForkError: the store rejected the block as a duplicate (a writer
      bypassed the HEAD lock).  Nothing is written.
    - ChainLockTimeoutError: the HEAD lock was not acquired in time.
    - InvalidPayloadError / HashComputationError propagate.

Audit relevance:
    The service flushes and never commits.  The producer's business write
    and its audit block share one transaction: both land or neither does.
"""

from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from audit_chain.config import ChainSettings
from audit_chain.domain.clock import Clock
from audit_chain.domain.events import AuditEventType, EntityType, enum_value
from audit_chain.domain.payload import normalize_payload
from audit_chain.domain.verification import ChainStatistics
from audit_chain.exceptions import (
    BlockNotFoundError,
    ChainForkError,
    ChainNotInitializedError,
    ProofOfWorkCapExceededError,
)
from audit_chain.logging_config import LogContext, get_logger
from audit_chain.models.block import AuditBlock
from audit_chain.selectors.chain_selector import ChainSelector
from audit_chain.services.base import BaseService
from audit_chain.services.chain_lock import ChainLock
from audit_chain.services.pow_worker import ProofOfWorkSealer, get_default_sealer
from audit_chain.utils.hashing import (
    GENESIS_PREVIOUS_HASH,
    canonical_timestamp,
    compute_block_hash,
    compute_payload_digest,
    to_utc,
)

logger = get_logger("services.audit_appender")

GENESIS_EVENT_DATA = {"action": "GENESIS", "message": "Audit chain genesis block"}


def generate_audit_id(event_type: str, block_number: int) -> str:
    """``<EVENT_TYPE>-<block_number>-<8 hex chars>``; lookup only, not hashed."""
    return f"{event_type}-{block_number}-{uuid4().hex[:8]}"


class AuditAppender(BaseService):
    """
    Appends hash-linked blocks to the audit chain.

    Contract:
        ``append`` and its variants run inside the caller's transaction,
        hold the HEAD lock until that transaction ends, and return the
        flushed AuditBlock.

    Non-goals:
        - Does NOT retry on ChainForkError or ChainLockTimeoutError; the
          caller's transaction is expected to fail and be retried whole.
        - Does NOT verify existing blocks (ChainVerifier does).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: ChainSettings | None = None,
        sealer: ProofOfWorkSealer | None = None,
    ):
        super().__init__(session, clock, settings)
        self._selector = ChainSelector(session)
        self._lock = ChainLock(session, self.settings.lock_timeout_seconds)
        self._sealer = sealer

    @property
    def sealer(self) -> ProofOfWorkSealer:
        if self._sealer is None:
            self._sealer = get_default_sealer(self.settings)
        return self._sealer

    # Write path

    def seed_genesis(self, event_data: Mapping[str, Any] | None = None) -> AuditBlock:
        """
        Create block 0 if it does not exist.

        Idempotent: an existing genesis block is returned unchanged.
        """
        self._lock.acquire(ChainLock.HEAD)

        existing = self._selector.by_number(0)
        if existing is not None:
            logger.debug("genesis_block_exists", extra={"current_hash": existing.current_hash})
            return existing

        payload = normalize_payload(
            GENESIS_EVENT_DATA if event_data is None else event_data
        )
        created_at = to_utc(self.clock.now())
        current_hash = compute_block_hash(0, GENESIS_PREVIOUS_HASH, payload, created_at, 0)

        block = AuditBlock(
            block_number=0,
            audit_id=generate_audit_id(AuditEventType.GENESIS.value, 0),
            event_type=AuditEventType.GENESIS.value,
            entity_type=EntityType.SYSTEM.value,
            entity_id=None,
            user_id=None,
            current_hash=current_hash,
            previous_hash=GENESIS_PREVIOUS_HASH,
            merkle_root=compute_payload_digest(payload),
            nonce=0,
            event_data=payload,
            block_metadata={
                "chain_length": 0,
                "timestamp": canonical_timestamp(created_at),
            },
            created_at=created_at,
            is_verified=False,
            tamper_detected=False,
        )
        self._persist(block)

        logger.info(
            "genesis_block_seeded",
            extra={"audit_id": block.audit_id, "current_hash": current_hash},
        )
        return block

    def append(
        self,
        event_type: str | AuditEventType,
        entity_type: str | EntityType,
        entity_id: int | None,
        user_id: int | None,
        event_data: Mapping[str, Any] | None,
    ) -> AuditBlock:
        """
        Append one block at ``head + 1`` with nonce 0.

        Preconditions:
            - The genesis block exists.

        Raises:
            ChainNotInitializedError: Chain has no blocks.
            ChainForkError: block_number or hash already taken.
            ChainLockTimeoutError: HEAD lock not acquired in time.
            InvalidPayloadError: ``event_data`` is not representable as JSON.
        """
        return self._append(event_type, entity_type, entity_id, user_id, event_data)

    def append_with_proof_of_work(
        self,
        event_type: str | AuditEventType,
        entity_type: str | EntityType,
        entity_id: int | None,
        user_id: int | None,
        event_data: Mapping[str, Any] | None,
        difficulty: int | None = None,
        accept_unsealed: bool = False,
    ) -> AuditBlock:
        """
        Append one block sealed by a proof-of-work nonce search.

        The search runs on the background sealer.  If it exhausts its
        attempt cap, ProofOfWorkCapExceededError is raised and nothing is
        written, unless ``accept_unsealed`` is True, in which case the
        block is written with the last nonce tried and
        ``metadata["proof_of_work"]["sealed"] == False``.

        Args:
            difficulty: Leading hex zeros required.  Defaults to
                ``settings.pow_default_difficulty``.
            accept_unsealed: Persist a capped-out block instead of failing.
        """
        if difficulty is None:
            difficulty = self.settings.pow_default_difficulty
        return self._append(
            event_type,
            entity_type,
            entity_id,
            user_id,
            event_data,
            difficulty=difficulty,
            accept_unsealed=accept_unsealed,
        )

    def _append(
        self,
        event_type: str | AuditEventType,
        entity_type: str | EntityType,
        entity_id: int | None,
        user_id: int | None,
        event_data: Mapping[str, Any] | None,
        difficulty: int | None = None,
        accept_unsealed: bool = False,
    ) -> AuditBlock:
        event_type = enum_value(event_type)
        entity_type = enum_value(entity_type)
        payload = normalize_payload(event_data)

        self._lock.acquire(ChainLock.HEAD)

        head = self._selector.head()
        if head is None:
            logger.error("chain_not_initialized", extra={"event_type": event_type})
            raise ChainNotInitializedError()

        block_number = head.block_number + 1
        previous_hash = head.current_hash
        created_at = to_utc(self.clock.now())

        metadata: dict[str, Any] = {
            "previous_block_number": head.block_number,
            "chain_length": block_number,
            "timestamp": canonical_timestamp(created_at),
        }

        if difficulty is None:
            nonce = 0
            current_hash = compute_block_hash(
                block_number, previous_hash, payload, created_at, nonce
            )
        else:
            result = self.sealer.seal(
                block_number,
                previous_hash,
                payload,
                created_at,
                difficulty,
                max_attempts=self.settings.pow_max_attempts,
            )
            if not result.sealed and not accept_unsealed:
                raise ProofOfWorkCapExceededError(block_number, difficulty, result.attempts)
            nonce = result.nonce
            current_hash = result.hash
            metadata["proof_of_work"] = {
                "difficulty": difficulty,
                "nonce": result.nonce,
                "mining_time_ms": result.elapsed_ms,
                "attempts": result.attempts,
                "sealed": result.sealed,
            }

        block = AuditBlock(
            block_number=block_number,
            audit_id=generate_audit_id(event_type, block_number),
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            current_hash=current_hash,
            previous_hash=previous_hash,
            merkle_root=compute_payload_digest(payload),
            nonce=nonce,
            event_data=payload,
            block_metadata=metadata,
            created_at=created_at,
            is_verified=False,
            tamper_detected=False,
        )
        self._persist(block)

        with LogContext.bind(audit_id=block.audit_id):
            logger.info(
                "audit_block_created",
                extra={
                    "block_number": block_number,
                    "event_type": event_type,
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "current_hash": current_hash,
                    "nonce": nonce,
                },
            )
        return block

    def _persist(self, block: AuditBlock) -> None:
        # Savepoint so a rejected insert leaves the caller's transaction usable
        savepoint = self.session.begin_nested()
        try:
            self.session.add(block)
            self.session.flush()
        except IntegrityError as exc:
            savepoint.rollback()
            logger.error(
                "chain_fork_detected",
                extra={
                    "block_number": block.block_number,
                    "previous_hash": block.previous_hash,
                },
            )
            raise ChainForkError(block.block_number, block.previous_hash) from exc
        savepoint.commit()

    # Producer recorders

    def record_wallet_created(
        self,
        wallet_id: int,
        user_id: int,
        details: Mapping[str, Any] | None = None,
    ) -> AuditBlock:
        event_data: dict[str, Any] = {"walletId": wallet_id, "action": "WALLET_CREATED"}
        event_data.update(details or {})
        return self.append(
            AuditEventType.WALLET_CREATED, EntityType.WALLET, wallet_id, user_id, event_data
        )

    def record_transaction(
        self,
        transaction_id: int,
        user_id: int,
        transaction_type: str,
        amount: Any,
        currency: str,
        status: str,
        completed: bool = False,
    ) -> AuditBlock:
        """Record a transaction; ``completed`` selects TRANSACTION_COMPLETED."""
        event_type = (
            AuditEventType.TRANSACTION_COMPLETED if completed
            else AuditEventType.TRANSACTION_CREATED
        )
        return self.append(
            event_type,
            EntityType.TRANSACTION,
            transaction_id,
            user_id,
            {
                "transactionId": transaction_id,
                "transactionType": transaction_type,
                "amount": amount,
                "currency": currency,
                "status": status,
                "timestamp": self.clock.now(),
            },
        )

    def record_balance_update(
        self,
        account_id: int,
        user_id: int,
        currency: str,
        old_balance: Any,
        new_balance: Any,
        reason: str,
    ) -> AuditBlock:
        return self.append(
            AuditEventType.BALANCE_UPDATED,
            EntityType.CURRENCY_ACCOUNT,
            account_id,
            user_id,
            {
                "accountId": account_id,
                "currency": currency,
                "oldBalance": old_balance,
                "newBalance": new_balance,
                "reason": reason,
                "timestamp": self.clock.now(),
            },
        )

    def record_conversion(
        self,
        transaction_id: int,
        user_id: int,
        from_currency: str,
        to_currency: str,
        amount: Any,
        converted_amount: Any,
        exchange_rate: Any,
    ) -> AuditBlock:
        return self.append(
            AuditEventType.CONVERSION_EXECUTED,
            EntityType.TRANSACTION,
            transaction_id,
            user_id,
            {
                "transactionId": transaction_id,
                "fromCurrency": from_currency,
                "toCurrency": to_currency,
                "amount": amount,
                "convertedAmount": converted_amount,
                "exchangeRate": exchange_rate,
                "timestamp": self.clock.now(),
            },
        )

    def record_disbursement(
        self,
        batch_id: int,
        admin_id: int,
        status: str,
        total_count: int,
        total_amount: Any,
        currency: str,
        processed: bool = False,
    ) -> AuditBlock:
        """Record a disbursement batch; ``processed`` selects DISBURSEMENT_PROCESSED."""
        event_type = (
            AuditEventType.DISBURSEMENT_PROCESSED if processed
            else AuditEventType.DISBURSEMENT_CREATED
        )
        return self.append(
            event_type,
            EntityType.DISBURSEMENT_BATCH,
            batch_id,
            admin_id,
            {
                "batchId": batch_id,
                "status": status,
                "totalCount": total_count,
                "totalAmount": total_amount,
                "currency": currency,
                "timestamp": self.clock.now(),
            },
        )

    def record_risk_score(
        self,
        risk_score_id: int,
        transaction_id: int,
        user_id: int,
        risk_level: str,
        risk_score: Any,
        factors: Any,
    ) -> AuditBlock:
        return self.append(
            AuditEventType.RISK_SCORE_CREATED,
            EntityType.RISK_SCORE,
            risk_score_id,
            user_id,
            {
                "riskScoreId": risk_score_id,
                "transactionId": transaction_id,
                "riskLevel": risk_level,
                "riskScore": risk_score,
                "factors": factors,
                "timestamp": self.clock.now(),
            },
        )

    def record_risk_review(
        self,
        risk_score_id: int,
        reviewer_id: int,
        approved: bool,
        notes: str | None = None,
    ) -> AuditBlock:
        event_type = (
            AuditEventType.RISK_REVIEW_APPROVED if approved
            else AuditEventType.RISK_REVIEW_REJECTED
        )
        return self.append(
            event_type,
            EntityType.RISK_SCORE,
            risk_score_id,
            reviewer_id,
            {
                "riskScoreId": risk_score_id,
                "reviewerId": reviewer_id,
                "decision": "APPROVED" if approved else "REJECTED",
                "notes": notes,
                "timestamp": self.clock.now(),
            },
        )

    # Read path

    def head(self) -> AuditBlock:
        """
        Latest block in the chain.

        Raises:
            ChainNotInitializedError: Chain has no blocks.
        """
        block = self._selector.head()
        if block is None:
            raise ChainNotInitializedError()
        return block

    def get_block(self, block_number: int) -> AuditBlock:
        block = self._selector.by_number(block_number)
        if block is None:
            raise BlockNotFoundError(block_number)
        return block

    def trail_for_entity(self, entity_type: str | EntityType, entity_id: int) -> list[AuditBlock]:
        """All blocks about one business object, oldest first."""
        return self._selector.by_entity(enum_value(entity_type), entity_id)

    def trail_for_user(self, user_id: int) -> list[AuditBlock]:
        """All blocks attributed to one user, oldest first."""
        return self._selector.by_user(user_id)

    def blocks_by_event_type(self, event_type: str | AuditEventType) -> list[AuditBlock]:
        return self._selector.by_event_type(enum_value(event_type))

    def chain_statistics(self) -> ChainStatistics:
        head = self._selector.head()
        stats = ChainStatistics(
            total_blocks=self._selector.count_blocks(),
            latest_block_number=head.block_number if head is not None else 0,
            verified_blocks=self._selector.count_verified(),
            tampered_blocks=self._selector.count_tampered(),
            latest_block_hash=head.current_hash if head is not None else None,
            latest_block_time=head.created_at if head is not None else None,
        )
        logger.info("chain_statistics_computed", extra=stats.to_dict())
        return stats

