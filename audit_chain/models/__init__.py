"""ORM models for the audit chain."""

from audit_chain.models.block import MUTABLE_FLAG_COLUMNS, AuditBlock
from audit_chain.models.verification_report import (
    VerificationReport,
    VerificationStatus,
)

__all__ = [
    "AuditBlock",
    "MUTABLE_FLAG_COLUMNS",
    "VerificationReport",
    "VerificationStatus",
]
