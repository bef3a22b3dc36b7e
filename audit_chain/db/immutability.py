"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

A block's hash covers block_number, previous_hash, event_data, created_at
and nonce.  If application code could rewrite those fields, the chain
would still be "detectably" broken, but the evidence of the original
event would be gone.  Sealed fields are therefore write-once.

  Layer 1: this module (ORM event listeners)
    - Rejects edits made to mapped objects before any SQL is emitted

  Layer 2: db/triggers.py (PostgreSQL triggers)
    - Rejects Core and raw SQL UPDATE/DELETE, including psql sessions

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Mutable columns                              | Delete
--------------------|----------------------------------------------|--------
AuditBlock          | is_verified, verified_at, tamper_detected    | never
VerificationReport  | none                                         | never

===============================================================================
USAGE
===============================================================================

Called once at startup (``db.engine.create_tables`` does it):

    from audit_chain.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To simulate an out-of-band edit (TESTS ONLY):

    unregister_immutability_listeners()
    # ... forbidden operation ...
    register_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect

from audit_chain.exceptions import ImmutabilityViolationError
from audit_chain.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_audit_block_immutability(mapper, connection, target):
    """
    Allow only verification flags to change on an existing block.
    """
    from audit_chain.models.block import MUTABLE_FLAG_COLUMNS, AuditBlock

    if not isinstance(target, AuditBlock):
        return

    state = inspect(target)
    changed = sorted(
        attr.key
        for attr in state.attrs
        if attr.key not in MUTABLE_FLAG_COLUMNS and attr.history.has_changes()
    )
    if not changed:
        return

    _blocked(
        "AuditBlock",
        str(target.block_number),
        "UPDATE",
        f"sealed fields cannot be modified: {', '.join(changed)}",
        fields=changed,
    )


def _check_audit_block_delete(mapper, connection, target):
    from audit_chain.models.block import AuditBlock

    if not isinstance(target, AuditBlock):
        return

    _blocked(
        "AuditBlock",
        str(target.block_number),
        "DELETE",
        "audit blocks cannot be deleted",
    )


def _check_report_immutability(mapper, connection, target):
    from audit_chain.models.verification_report import VerificationReport

    if not isinstance(target, VerificationReport):
        return

    _blocked(
        "VerificationReport",
        target.verification_id,
        "UPDATE",
        "verification reports are immutable",
    )


def _check_report_delete(mapper, connection, target):
    from audit_chain.models.verification_report import VerificationReport

    if not isinstance(target, VerificationReport):
        return

    _blocked(
        "VerificationReport",
        target.verification_id,
        "DELETE",
        "verification reports cannot be deleted",
    )


def _listeners():
    from audit_chain.models.block import AuditBlock
    from audit_chain.models.verification_report import VerificationReport

    return [
        (AuditBlock, "before_update", _check_audit_block_immutability),
        (AuditBlock, "before_delete", _check_audit_block_delete),
        (VerificationReport, "before_update", _check_report_immutability),
        (VerificationReport, "before_delete", _check_report_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Detach the listeners so tests can forge an out-of-band edit.

    WARNING: Only use this in tests that intentionally violate
    immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
