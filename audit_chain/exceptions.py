"""
Typed Exception Hierarchy for the Audit Chain.

===============================================================================
ERROR CONTRACT
===============================================================================

Callers of the audit chain are other services (wallet, transaction, KYC,
disbursement, risk).  They must be able to tell "the chain was never
seeded" apart from "someone else forked the head" without parsing message
strings.  Each failure is its own class, carries a stable ``code`` string
that is safe to return over an API, and keeps the values it was raised
with as attributes.

Example:
    try:
        appender.append(...)
    except ChainNotInitializedError as e:
        api_response(code=e.code)          # "CHAIN_NOT_INITIALIZED"
    except ChainForkError as e:
        log.error("fork at %s", e.block_number)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AuditChainError (base)
    |
    +-- ChainError
    |   +-- ChainNotInitializedError
    |   +-- BlockNotFoundError
    |   +-- InvalidBlockRangeError
    |
    +-- HashingError
    |   +-- HashComputationError
    |   +-- ProofOfWorkCapExceededError
    |
    +-- PayloadError
    |   +-- InvalidPayloadError
    |
    +-- ConcurrencyError
    |   +-- ChainForkError
    |   +-- ChainLockTimeoutError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Chain           | CHAIN_NOT_INITIALIZED       | No genesis block; store never seeded
                | BLOCK_NOT_FOUND             | Block number / audit id doesn't exist
                | INVALID_BLOCK_RANGE         | start < 0 or end < start
----------------|-----------------------------|-----------------------------------------
Hashing         | HASH_COMPUTATION_FAILURE    | SHA-256 unavailable / digest failed
                | POW_CAP_EXCEEDED            | Nonce search hit its attempt cap
----------------|-----------------------------|-----------------------------------------
Payload         | INVALID_PAYLOAD             | Event data not representable as JSON
----------------|-----------------------------|-----------------------------------------
Concurrency     | CHAIN_FORK                  | Two writers produced the same block
                | CHAIN_LOCK_TIMEOUT          | Critical section not acquired in time
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a sealed block or a report

===============================================================================
WHAT IS NOT AN EXCEPTION
===============================================================================

A broken link or a recomputed-hash mismatch found while VERIFYING the
chain is data, not control flow.  Those findings are recorded as
``BlockOutcome`` values on the block and aggregated in the verification
report (see ``audit_chain.domain.verification``).  The scan always
completes.

===============================================================================
"""


class AuditChainError(Exception):
    """
    Base exception for all audit chain errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "AUDIT_CHAIN_ERROR"


# Chain state exceptions


class ChainError(AuditChainError):
    """Base exception for chain state errors."""

    code: str = "CHAIN_ERROR"


class ChainNotInitializedError(ChainError):
    """
    The chain has no genesis block.

    Fatal and non-retryable: the store was never seeded.  Run the one-time
    seeding operation (``AuditAppender.seed_genesis`` / ``audit-chain seed``).
    """

    code: str = "CHAIN_NOT_INITIALIZED"

    def __init__(self):
        super().__init__(
            "Genesis block not found; the audit chain has not been seeded"
        )


class BlockNotFoundError(ChainError):
    """Block with given number was not found."""

    code: str = "BLOCK_NOT_FOUND"

    def __init__(self, block_number: int):
        self.block_number = block_number
        super().__init__(f"Block not found: {block_number}")


class InvalidBlockRangeError(ChainError):
    """Requested verification range is malformed."""

    code: str = "INVALID_BLOCK_RANGE"

    def __init__(self, start_block: int, end_block: int):
        self.start_block = start_block
        self.end_block = end_block
        super().__init__(
            f"Invalid block range [{start_block}, {end_block}]"
        )


# Hashing exceptions


class HashingError(AuditChainError):
    """Base exception for hashing errors."""

    code: str = "HASHING_ERROR"


class HashComputationError(HashingError):
    """
    The digest algorithm is unavailable or failed.

    Fatal and unexpected.  Must abort the operation and propagate.
    """

    code: str = "HASH_COMPUTATION_FAILURE"

    def __init__(self, algorithm: str, reason: str):
        self.algorithm = algorithm
        self.reason = reason
        super().__init__(f"Failed to compute {algorithm} digest: {reason}")


class ProofOfWorkCapExceededError(HashingError):
    """
    Nonce search hit its attempt cap without meeting the target.

    The caller decides whether to accept an unsealed block or retry with a
    lower difficulty.
    """

    code: str = "POW_CAP_EXCEEDED"

    def __init__(self, block_number: int, difficulty: int, attempts: int):
        self.block_number = block_number
        self.difficulty = difficulty
        self.attempts = attempts
        super().__init__(
            f"Proof of work for block {block_number} did not reach "
            f"difficulty {difficulty} within {attempts} attempts"
        )


# Payload exceptions


class PayloadError(AuditChainError):
    """Base exception for event payload errors."""

    code: str = "PAYLOAD_ERROR"


class InvalidPayloadError(PayloadError):
    """Event payload contains a value with no canonical JSON encoding."""

    code: str = "INVALID_PAYLOAD"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid payload at {path}: {reason}")


# Concurrency exceptions


class ConcurrencyError(AuditChainError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ChainForkError(ConcurrencyError):
    """
    A second block was written for an already-taken block number.

    Raised when the store's unique constraints reject an append.  Nothing
    from the failed append is written.
    """

    code: str = "CHAIN_FORK"

    def __init__(self, block_number: int, previous_hash: str):
        self.block_number = block_number
        self.previous_hash = previous_hash
        super().__init__(
            f"Block {block_number} already exists; concurrent append on "
            f"head {previous_hash[:16]}"
        )


class ChainLockTimeoutError(ConcurrencyError):
    """A chain critical section could not be entered in time."""

    code: str = "CHAIN_LOCK_TIMEOUT"

    def __init__(self, lock_name: str, timeout_seconds: float):
        self.lock_name = lock_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Could not acquire chain lock {lock_name} "
            f"within {timeout_seconds}s"
        )


# Immutability exceptions


class ImmutabilityError(AuditChainError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify an immutable record or field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
