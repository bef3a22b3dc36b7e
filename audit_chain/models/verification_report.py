"""
Module: audit_chain.models.verification_report
Responsibility: ORM persistence for the outcome of one verification pass.
Architecture position: Chain > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per verification invocation, immutable after creation
      (ORM listener + DB trigger).
    - status is SUCCESS iff tampered_blocks == 0.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from audit_chain.db.base import Base, JSONColumn, UTCDateTime


class VerificationStatus(str, Enum):
    """Aggregate result of a verification pass."""

    SUCCESS = "SUCCESS"
    TAMPERED = "TAMPERED"


class VerificationReport(Base):
    """Immutable summary record of one verification pass over a block range."""

    __tablename__ = "verification_reports"

    __table_args__ = (
        Index("idx_report_created", "created_at"),
        Index("idx_report_status", "status"),
    )

    verification_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    start_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_blocks: Mapped[int] = mapped_column(BigInteger, nullable=False)
    verified_blocks: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tampered_blocks: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    verification_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)

    details: Mapped[dict | None] = mapped_column(JSONColumn, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<VerificationReport {self.verification_id} "
            f"[{self.start_block}..{self.end_block}] {self.status_value}>"
        )

    @property
    def status_value(self) -> str:
        """Status as a plain string (column may load as str or enum)."""
        return self.status.value if isinstance(self.status, VerificationStatus) else self.status

    @property
    def is_success(self) -> bool:
        return self.status_value == VerificationStatus.SUCCESS.value

    def to_dict(self) -> dict:
        return {
            "verification_id": self.verification_id,
            "start_block": self.start_block,
            "end_block": self.end_block,
            "total_blocks": self.total_blocks,
            "verified_blocks": self.verified_blocks,
            "tampered_blocks": self.tampered_blocks,
            "status": self.status_value,
            "verification_time_ms": self.verification_time_ms,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
