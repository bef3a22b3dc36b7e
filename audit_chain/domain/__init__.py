"""
Pure domain layer.

No ORM, no database, no I/O.  Clock, payload normalization, event
vocabulary and verification value objects.
"""

from audit_chain.domain.clock import Clock, DeterministicClock, SystemClock
from audit_chain.domain.events import AuditEventType, EntityType
from audit_chain.domain.payload import JSONValue, Payload, normalize_payload
from audit_chain.domain.verification import (
    BlockCheck,
    BlockOutcome,
    ChainHealth,
    ChainStatistics,
)

__all__ = [
    "AuditEventType",
    "BlockCheck",
    "BlockOutcome",
    "ChainHealth",
    "ChainStatistics",
    "Clock",
    "DeterministicClock",
    "EntityType",
    "JSONValue",
    "Payload",
    "SystemClock",
    "normalize_payload",
]
