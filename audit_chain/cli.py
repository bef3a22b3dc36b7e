"""
Operator command line for the audit chain.

Usage:
    audit-chain init-db
    audit-chain seed
    audit-chain stats
    audit-chain latest
    audit-chain trail --entity-type WALLET --entity-id 123
    audit-chain user-trail 42
    audit-chain verify [--start 0 --end 100]
    audit-chain verify-block 7
    audit-chain reports [--limit 10]
    audit-chain tampered

Every command prints JSON on stdout.  Exit status: 0 on success, 1 when a
verification finds tampering or a block fails, 2 on error.
"""

import argparse
import dataclasses
import json
import sys
from typing import Any, Callable

from sqlalchemy.orm import Session

from audit_chain.config import ChainSettings, load_settings
from audit_chain.db.engine import create_tables, init_engine_from_settings, session_scope
from audit_chain.db.immutability import register_immutability_listeners
from audit_chain.exceptions import AuditChainError
from audit_chain.logging_config import configure_logging
from audit_chain.services.audit_appender import AuditAppender
from audit_chain.services.chain_verifier import ChainVerifier

EXIT_OK = 0
EXIT_TAMPERED = 1
EXIT_ERROR = 2


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _cmd_init_db(session: Session, settings: ChainSettings, args) -> int:
    _emit({"tables_created": True})
    return EXIT_OK


def _cmd_seed(session: Session, settings: ChainSettings, args) -> int:
    block = AuditAppender(session, settings=settings).seed_genesis()
    _emit(block.to_dict())
    return EXIT_OK


def _cmd_stats(session: Session, settings: ChainSettings, args) -> int:
    _emit(AuditAppender(session, settings=settings).chain_statistics().to_dict())
    return EXIT_OK


def _cmd_latest(session: Session, settings: ChainSettings, args) -> int:
    _emit(AuditAppender(session, settings=settings).head().to_dict())
    return EXIT_OK


def _cmd_trail(session: Session, settings: ChainSettings, args) -> int:
    blocks = AuditAppender(session, settings=settings).trail_for_entity(
        args.entity_type, args.entity_id
    )
    _emit([block.to_dict() for block in blocks])
    return EXIT_OK


def _cmd_user_trail(session: Session, settings: ChainSettings, args) -> int:
    blocks = AuditAppender(session, settings=settings).trail_for_user(args.user_id)
    _emit([block.to_dict() for block in blocks])
    return EXIT_OK


def _cmd_verify(session: Session, settings: ChainSettings, args) -> int:
    verifier = ChainVerifier(session, settings=settings)
    if args.start is None and args.end is None:
        report = verifier.full_chain_verify()
    else:
        start = args.start if args.start is not None else 0
        end = args.end
        if end is None:
            end = AuditAppender(session, settings=settings).head().block_number
        report = verifier.verify_range(start, end)
    _emit(report.to_dict())
    return EXIT_OK if report.is_success else EXIT_TAMPERED


def _cmd_verify_block(session: Session, settings: ChainSettings, args) -> int:
    passed = ChainVerifier(session, settings=settings).verify_single(args.block_number)
    _emit({"block_number": args.block_number, "verified": passed})
    return EXIT_OK if passed else EXIT_TAMPERED


def _cmd_reports(session: Session, settings: ChainSettings, args) -> int:
    reports = ChainVerifier(session, settings=settings).verification_history(args.limit)
    _emit([report.to_dict() for report in reports])
    return EXIT_OK


def _cmd_tampered(session: Session, settings: ChainSettings, args) -> int:
    blocks = ChainVerifier(session, settings=settings).tampered_blocks()
    _emit([block.to_dict() for block in blocks])
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="audit-chain",
        description="Inspect, seed and verify the tamper-evident audit chain.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  audit-chain --db-url sqlite:///audit.db init-db\n"
            "  audit-chain seed\n"
            "  audit-chain verify --start 0 --end 100\n"
        ),
    )
    parser.add_argument(
        "--db-url", type=str, default=None,
        help="Database URL (default: from settings)",
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="YAML settings overlay",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables (and triggers on PostgreSQL)").set_defaults(
        handler=_cmd_init_db
    )
    sub.add_parser("seed", help="Create the genesis block if missing").set_defaults(
        handler=_cmd_seed
    )
    sub.add_parser("stats", help="Chain statistics").set_defaults(handler=_cmd_stats)
    sub.add_parser("latest", help="Latest block").set_defaults(handler=_cmd_latest)

    trail = sub.add_parser("trail", help="Audit trail for one business object")
    trail.add_argument("--entity-type", required=True)
    trail.add_argument("--entity-id", type=int, required=True)
    trail.set_defaults(handler=_cmd_trail)

    user_trail = sub.add_parser("user-trail", help="Audit trail for one user")
    user_trail.add_argument("user_id", type=int)
    user_trail.set_defaults(handler=_cmd_user_trail)

    verify = sub.add_parser("verify", help="Verify the whole chain or a range")
    verify.add_argument("--start", type=int, default=None)
    verify.add_argument("--end", type=int, default=None)
    verify.set_defaults(handler=_cmd_verify)

    verify_block = sub.add_parser("verify-block", help="Verify one block")
    verify_block.add_argument("block_number", type=int)
    verify_block.set_defaults(handler=_cmd_verify_block)

    reports = sub.add_parser("reports", help="Recent verification reports")
    reports.add_argument("--limit", type=int, default=None)
    reports.set_defaults(handler=_cmd_reports)

    sub.add_parser("tampered", help="Blocks flagged as tampered").set_defaults(
        handler=_cmd_tampered
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    configure_logging(level=settings.log_level, stream=sys.stderr)

    if args.db_url:
        settings = dataclasses.replace(settings, database_url=args.db_url)
    init_engine_from_settings(settings)
    register_immutability_listeners()
    if args.command == "init-db":
        create_tables()

    handler: Callable[..., int] = args.handler
    try:
        with session_scope() as session:
            return handler(session, settings, args)
    except AuditChainError as exc:
        print(json.dumps({"error": exc.code, "message": str(exc)}), file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
