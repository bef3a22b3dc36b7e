"""
Verification result objects.

Responsibility:
    Immutable value objects describing what the Chain Verifier found for
    each block and what the chain looks like overall.  A broken link or a
    hash mismatch is represented here as data; it is never raised.

Guarantees:
    - ``BlockOutcome.is_tampered`` is True exactly for the three failure
      outcomes.
    - ``ChainStatistics.chain_health`` is HEALTHY iff no block is flagged.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class BlockOutcome(str, Enum):
    """Result of checking one block against its predecessor."""

    GENESIS = "GENESIS"
    VERIFIED = "VERIFIED"
    MISSING_PREDECESSOR = "MISSING_PREDECESSOR"
    LINKAGE_BROKEN = "LINKAGE_BROKEN"
    HASH_MISMATCH = "HASH_MISMATCH"

    @property
    def is_tampered(self) -> bool:
        return self not in (BlockOutcome.GENESIS, BlockOutcome.VERIFIED)


@dataclass(frozen=True)
class BlockCheck:
    """
    Outcome of verifying a single block.

    ``expected``/``actual`` carry the two hashes that disagreed (predecessor
    hash vs. stored previous_hash for LINKAGE_BROKEN, recomputed vs. stored
    current_hash for HASH_MISMATCH).  Both are None otherwise.
    """

    block_number: int
    outcome: BlockOutcome
    expected: str | None = None
    actual: str | None = None

    @property
    def passed(self) -> bool:
        return not self.outcome.is_tampered

    def to_dict(self) -> dict[str, Any]:
        return {
            "block_number": self.block_number,
            "outcome": self.outcome.value,
            "expected": self.expected,
            "actual": self.actual,
        }


class ChainHealth(str, Enum):
    HEALTHY = "HEALTHY"
    COMPROMISED = "COMPROMISED"


@dataclass(frozen=True)
class ChainStatistics:
    """Snapshot of chain size and integrity flags."""

    total_blocks: int
    latest_block_number: int
    verified_blocks: int
    tampered_blocks: int
    latest_block_hash: str | None = None
    latest_block_time: datetime | None = None

    @property
    def chain_health(self) -> ChainHealth:
        if self.tampered_blocks == 0:
            return ChainHealth.HEALTHY
        return ChainHealth.COMPROMISED

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_blocks": self.total_blocks,
            "latest_block_number": self.latest_block_number,
            "verified_blocks": self.verified_blocks,
            "tampered_blocks": self.tampered_blocks,
            "chain_health": self.chain_health.value,
            "latest_block_hash": self.latest_block_hash,
            "latest_block_time": (
                self.latest_block_time.isoformat() if self.latest_block_time else None
            ),
        }
