"""
Audited event vocabulary.

The chain accepts any ``event_type`` / ``entity_type`` string; these enums
name the ones the platform's producers emit so call sites do not spell
them by hand.
"""

from enum import Enum


class AuditEventType(str, Enum):
    """Business events recorded on the chain."""

    GENESIS = "GENESIS"
    WALLET_CREATED = "WALLET_CREATED"
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_COMPLETED = "TRANSACTION_COMPLETED"
    BALANCE_UPDATED = "BALANCE_UPDATED"
    CONVERSION_EXECUTED = "CONVERSION_EXECUTED"
    DISBURSEMENT_CREATED = "DISBURSEMENT_CREATED"
    DISBURSEMENT_PROCESSED = "DISBURSEMENT_PROCESSED"
    RISK_SCORE_CREATED = "RISK_SCORE_CREATED"
    RISK_REVIEW_APPROVED = "RISK_REVIEW_APPROVED"
    RISK_REVIEW_REJECTED = "RISK_REVIEW_REJECTED"


class EntityType(str, Enum):
    """Kinds of business object a block can be about."""

    SYSTEM = "SYSTEM"
    WALLET = "WALLET"
    TRANSACTION = "TRANSACTION"
    CURRENCY_ACCOUNT = "CURRENCY_ACCOUNT"
    DISBURSEMENT_BATCH = "DISBURSEMENT_BATCH"
    RISK_SCORE = "RISK_SCORE"


def enum_value(value: str | Enum) -> str:
    """Plain string for a vocabulary member or a free-form string."""
    return value.value if isinstance(value, Enum) else value
