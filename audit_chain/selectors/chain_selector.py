"""
Module: audit_chain.selectors.chain_selector
Responsibility: Read contract of the Chain Store: head, lookup by number,
    by audit id, by entity, by user, by event type, by range, and the
    aggregate counts behind chain statistics.
Architecture position: Chain > Selectors.  Imports models/ only.

Invariants enforced:
    - Every multi-block result is ordered by block_number ascending.
    - Read-only.

Non-goals:
    - Selectors here return AuditBlock / VerificationReport rows rather than
      DTOs.  The Verifier writes integrity flags back onto exactly these
      rows, and operator tooling serializes them via ``to_dict()``.
"""

from sqlalchemy import func, select

from audit_chain.models.block import AuditBlock
from audit_chain.models.verification_report import (
    VerificationReport,
    VerificationStatus,
)
from audit_chain.selectors.base import BaseSelector


class ChainSelector(BaseSelector[AuditBlock]):
    """
    Selector for audit chain queries.

    ``fresh=True`` on the lookups used by the Verifier re-reads rows from
    the database even when they are already in the session identity map,
    so an out-of-band edit is never masked by a cached object.
    """

    def head(self) -> AuditBlock | None:
        """Block with the highest block_number, or None on an empty chain."""
        stmt = select(AuditBlock).order_by(AuditBlock.block_number.desc()).limit(1)
        return self._first(stmt)

    def max_block_number(self) -> int | None:
        return self._scalar(select(func.max(AuditBlock.block_number)))

    def by_number(self, block_number: int, fresh: bool = False) -> AuditBlock | None:
        stmt = select(AuditBlock).where(AuditBlock.block_number == block_number)
        return self._first(stmt, fresh)

    def by_audit_id(self, audit_id: str) -> AuditBlock | None:
        stmt = select(AuditBlock).where(AuditBlock.audit_id == audit_id)
        return self._first(stmt)

    def in_range(
        self, start_block: int, end_block: int, fresh: bool = False
    ) -> list[AuditBlock]:
        """Blocks with ``start_block <= block_number <= end_block``."""
        stmt = (
            select(AuditBlock)
            .where(AuditBlock.block_number >= start_block)
            .where(AuditBlock.block_number <= end_block)
            .order_by(AuditBlock.block_number)
        )
        return self._all(stmt, fresh)

    def by_entity(self, entity_type: str, entity_id: int) -> list[AuditBlock]:
        stmt = (
            select(AuditBlock)
            .where(AuditBlock.entity_type == entity_type)
            .where(AuditBlock.entity_id == entity_id)
            .order_by(AuditBlock.block_number)
        )
        return self._all(stmt)

    def by_user(self, user_id: int) -> list[AuditBlock]:
        stmt = (
            select(AuditBlock)
            .where(AuditBlock.user_id == user_id)
            .order_by(AuditBlock.block_number)
        )
        return self._all(stmt)

    def by_event_type(self, event_type: str) -> list[AuditBlock]:
        stmt = (
            select(AuditBlock)
            .where(AuditBlock.event_type == event_type)
            .order_by(AuditBlock.block_number)
        )
        return self._all(stmt)

    def tampered(self) -> list[AuditBlock]:
        stmt = (
            select(AuditBlock)
            .where(AuditBlock.tamper_detected.is_(True))
            .order_by(AuditBlock.block_number)
        )
        return self._all(stmt)

    def count_blocks(self) -> int:
        return self.session.execute(select(func.count(AuditBlock.id))).scalar_one()

    def count_verified(self) -> int:
        stmt = select(func.count(AuditBlock.id)).where(AuditBlock.is_verified.is_(True))
        return self.session.execute(stmt).scalar_one()

    def count_tampered(self) -> int:
        stmt = select(func.count(AuditBlock.id)).where(AuditBlock.tamper_detected.is_(True))
        return self.session.execute(stmt).scalar_one()

    # Verification reports

    def recent_reports(self, limit: int = 10) -> list[VerificationReport]:
        """Most recent reports first."""
        stmt = (
            select(VerificationReport)
            .order_by(VerificationReport.created_at.desc(), VerificationReport.id)
            .limit(limit)
        )
        return self._all(stmt)

    def report_by_id(self, verification_id: str) -> VerificationReport | None:
        stmt = select(VerificationReport).where(
            VerificationReport.verification_id == verification_id
        )
        return self._first(stmt)

    def reports_by_status(self, status: VerificationStatus | str) -> list[VerificationReport]:
        value = status.value if isinstance(status, VerificationStatus) else status
        stmt = (
            select(VerificationReport)
            .where(VerificationReport.status == value)
            .order_by(VerificationReport.created_at.desc(), VerificationReport.id)
        )
        return self._all(stmt)
