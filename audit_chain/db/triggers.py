"""
Module: audit_chain.db.triggers
Responsibility: Installing, removing, and checking PostgreSQL immutability
    triggers (Layer 2 of 2).  Database-level complement to the ORM listeners
    in db/immutability.py.
Architecture position: Chain > DB.  MUST NOT import from models/, services/,
    selectors/, or domain/.

Invariants enforced:
    - audit_blocks: UPDATE may only change is_verified, verified_at,
      tamper_detected.  DELETE is rejected.
    - verification_reports: UPDATE and DELETE are rejected.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on violation (surfaces as
      sqlalchemy.exc.InternalError / DBAPIError).
    - No-op on non-PostgreSQL engines; those rely on Layer 1 only.
"""

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from audit_chain.logging_config import get_logger

logger = get_logger("db.triggers")

ALL_TRIGGER_NAMES = [
    "trg_audit_block_immutability_update",
    "trg_audit_block_immutability_delete",
    "trg_verification_report_immutability_update",
    "trg_verification_report_immutability_delete",
]

_INSTALL_SQL = [
    """
    CREATE OR REPLACE FUNCTION audit_block_immutability_update()
    RETURNS TRIGGER AS $$
    BEGIN
        IF NEW.block_number IS DISTINCT FROM OLD.block_number
           OR NEW.audit_id IS DISTINCT FROM OLD.audit_id
           OR NEW.event_type IS DISTINCT FROM OLD.event_type
           OR NEW.entity_type IS DISTINCT FROM OLD.entity_type
           OR NEW.entity_id IS DISTINCT FROM OLD.entity_id
           OR NEW.user_id IS DISTINCT FROM OLD.user_id
           OR NEW.current_hash IS DISTINCT FROM OLD.current_hash
           OR NEW.previous_hash IS DISTINCT FROM OLD.previous_hash
           OR NEW.merkle_root IS DISTINCT FROM OLD.merkle_root
           OR NEW.nonce IS DISTINCT FROM OLD.nonce
           OR NEW.event_data::text IS DISTINCT FROM OLD.event_data::text
           OR NEW.metadata::text IS DISTINCT FROM OLD.metadata::text
           OR NEW.created_at IS DISTINCT FROM OLD.created_at THEN
            RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: audit block % sealed fields cannot be modified',
                OLD.block_number;
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql;
    """,
    """
    CREATE OR REPLACE FUNCTION audit_block_immutability_delete()
    RETURNS TRIGGER AS $$
    BEGIN
        RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: audit block % cannot be deleted',
            OLD.block_number;
    END;
    $$ LANGUAGE plpgsql;
    """,
    """
    CREATE OR REPLACE FUNCTION verification_report_immutability()
    RETURNS TRIGGER AS $$
    BEGIN
        RAISE EXCEPTION 'IMMUTABILITY_VIOLATION: verification report % is immutable',
            OLD.verification_id;
    END;
    $$ LANGUAGE plpgsql;
    """,
    "DROP TRIGGER IF EXISTS trg_audit_block_immutability_update ON audit_blocks",
    """
    CREATE TRIGGER trg_audit_block_immutability_update
        BEFORE UPDATE ON audit_blocks
        FOR EACH ROW EXECUTE FUNCTION audit_block_immutability_update()
    """,
    "DROP TRIGGER IF EXISTS trg_audit_block_immutability_delete ON audit_blocks",
    """
    CREATE TRIGGER trg_audit_block_immutability_delete
        BEFORE DELETE ON audit_blocks
        FOR EACH ROW EXECUTE FUNCTION audit_block_immutability_delete()
    """,
    "DROP TRIGGER IF EXISTS trg_verification_report_immutability_update ON verification_reports",
    """
    CREATE TRIGGER trg_verification_report_immutability_update
        BEFORE UPDATE ON verification_reports
        FOR EACH ROW EXECUTE FUNCTION verification_report_immutability()
    """,
    "DROP TRIGGER IF EXISTS trg_verification_report_immutability_delete ON verification_reports",
    """
    CREATE TRIGGER trg_verification_report_immutability_delete
        BEFORE DELETE ON verification_reports
        FOR EACH ROW EXECUTE FUNCTION verification_report_immutability()
    """,
]

_DROP_SQL = [
    "DROP TRIGGER IF EXISTS trg_audit_block_immutability_update ON audit_blocks",
    "DROP TRIGGER IF EXISTS trg_audit_block_immutability_delete ON audit_blocks",
    "DROP TRIGGER IF EXISTS trg_verification_report_immutability_update ON verification_reports",
    "DROP TRIGGER IF EXISTS trg_verification_report_immutability_delete ON verification_reports",
    "DROP FUNCTION IF EXISTS audit_block_immutability_update()",
    "DROP FUNCTION IF EXISTS audit_block_immutability_delete()",
    "DROP FUNCTION IF EXISTS verification_report_immutability()",
]


def _is_postgres(bind: Engine | Connection) -> bool:
    return bind.dialect.name == "postgresql"


def _execute_all(bind: Engine | Connection, statements: list[str]) -> None:
    # A Connection runs inside the caller's transaction; an Engine gets its own
    if isinstance(bind, Connection):
        for statement in statements:
            bind.execute(text(statement))
        return
    with bind.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))


def install_immutability_triggers(bind: Engine | Connection) -> None:
    """Install all triggers.  No-op off PostgreSQL."""
    if not _is_postgres(bind):
        return
    _execute_all(bind, _INSTALL_SQL)
    logger.info("immutability_triggers_installed", extra={"count": len(ALL_TRIGGER_NAMES)})


def uninstall_immutability_triggers(bind: Engine | Connection) -> None:
    """Drop all triggers and their functions.  No-op off PostgreSQL."""
    if not _is_postgres(bind):
        return
    _execute_all(bind, _DROP_SQL)
    logger.info("immutability_triggers_uninstalled")


def installed_triggers(bind: Engine | Connection) -> list[str]:
    """Names of our triggers currently present in the database."""
    if not _is_postgres(bind):
        return []
    query = text(
        "SELECT tgname FROM pg_trigger "
        "WHERE NOT tgisinternal AND tgname = ANY(:names)"
    )
    if isinstance(bind, Connection):
        rows = bind.execute(query, {"names": ALL_TRIGGER_NAMES}).all()
    else:
        with bind.connect() as conn:
            rows = conn.execute(query, {"names": ALL_TRIGGER_NAMES}).all()
    return sorted(row[0] for row in rows)
