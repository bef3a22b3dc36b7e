"""
Module: audit_chain.models.block
Responsibility: ORM persistence for the tamper-evident, hash-linked audit chain.
Architecture position: Chain > Models.  May import from db/base.py only.

Invariants enforced:
    - block_number is unique; sequence has no gaps (Appender holds the head
      lock while computing ``head + 1``).
    - previous_hash == current_hash of block_number - 1 (block 0 carries the
      all-zero sentinel).
    - current_hash == H(block_number, previous_hash, event_data, created_at,
      nonce).  Validated by ChainVerifier.
    - Sealed fields are immutable; only is_verified / verified_at /
      tamper_detected may change (ORM listener + DB trigger).

Failure modes:
    - IntegrityError on duplicate block_number / current_hash / audit_id
      (surfaced by the Appender as ChainForkError).
    - ImmutabilityViolationError on any UPDATE of a sealed field or DELETE.
"""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from audit_chain.db.base import Base, JSONColumn, UTCDateTime

# Columns the Verifier may write after creation.  Everything else is sealed.
MUTABLE_FLAG_COLUMNS = frozenset({"is_verified", "verified_at", "tamper_detected"})


class AuditBlock(Base):
    """
    One hash-sealed record of an audited business event.

    Contract:
        Created exactly once by AuditAppender, never deleted.  Correcting
        history means appending a compensating block.

    Non-goals:
        - This model does NOT compute or check hashes; that is the
          Hashing Engine's job, driven by AuditAppender and ChainVerifier.
    """

    __tablename__ = "audit_blocks"

    __table_args__ = (
        Index("idx_block_entity", "entity_type", "entity_id"),
        Index("idx_block_user", "user_id"),
        Index("idx_block_event_type", "event_type"),
        Index("idx_block_tampered", "tamper_detected"),
    )

    block_number: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
        index=True,
    )

    # Lookup/debugging only, never part of the hash
    audit_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Business-object references, not enforced foreign keys
    entity_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    current_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Single-leaf Merkle root: SHA-256 of canonical event_data
    merkle_root: Mapped[str] = mapped_column(String(64), nullable=False)

    nonce: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    event_data: Mapped[dict] = mapped_column(JSONColumn, nullable=False)

    # Not integrity-bearing
    block_metadata: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONColumn,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Verifier-owned flags
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    tamper_detected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<AuditBlock #{self.block_number} {self.event_type} {self.current_hash[:12]}>"

    @property
    def is_genesis(self) -> bool:
        return self.block_number == 0

    def to_dict(self) -> dict:
        """Plain-JSON view for operator tooling."""
        return {
            "block_number": self.block_number,
            "audit_id": self.audit_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "current_hash": self.current_hash,
            "previous_hash": self.previous_hash,
            "merkle_root": self.merkle_root,
            "nonce": self.nonce,
            "event_data": self.event_data,
            "metadata": self.block_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "is_verified": self.is_verified,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "tamper_detected": self.tamper_detected,
        }
