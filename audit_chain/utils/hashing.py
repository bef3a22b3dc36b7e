"""
Deterministic hashing utilities -- the Hashing Engine.

All hashing in the audit chain must be deterministic and reproducible.
This module provides the canonical encodings and the block hash contract:

    current_hash = SHA-256(
        "BLOCK:<n>|PREV:<previous_hash>|DATA:<canonical_json(event_data)>"
        "|TIME:<canonical_timestamp(created_at)>|NONCE:<nonce>"
    )

Every function here is pure: no I/O, no logging, no ambient state.
"""

import hashlib
import json
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from audit_chain.exceptions import HashComputationError, InvalidPayloadError

HASH_ALGORITHM = "sha256"

# Trusted axiom: previous_hash of block 0
GENESIS_PREVIOUS_HASH = "0" * 64

DEFAULT_POW_MAX_ATTEMPTS = 1_000_000

MAX_DIFFICULTY = 64


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 1.50 and 1.5 encode identically
        return format(obj.normalize(), "f")
    if isinstance(obj, datetime):
        return canonical_timestamp(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted
    - No whitespace
    - ASCII-only output (non-ASCII escaped as \\uXXXX)
    - NaN / Infinity rejected
    - Consistent handling of special types (Decimal, datetime, UUID)

    Raises:
        TypeError: Unsupported value type.
        ValueError: Non-finite float.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        allow_nan=False,
        default=_json_serializer,
    )


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def canonical_timestamp(value: datetime) -> str:
    """
    Render a timestamp for hashing.

    Always UTC, microsecond precision, no offset suffix:
    ``2024-01-01T12:00:00.000000``.
    """
    return to_utc(value).replace(tzinfo=None).isoformat(timespec="microseconds")


def _new_digest():
    try:
        return hashlib.new(HASH_ALGORITHM)
    except (ValueError, TypeError) as exc:
        raise HashComputationError(HASH_ALGORITHM, str(exc)) from exc


def _hex_digest(material: str) -> str:
    digest = _new_digest()
    digest.update(material.encode("utf-8"))
    return digest.hexdigest()


def _canonical_event_data(event_data: dict | None) -> str:
    try:
        return canonicalize_json(event_data if event_data is not None else {})
    except (TypeError, ValueError) as exc:
        raise InvalidPayloadError("$", str(exc)) from exc


def _hash_prefix(
    block_number: int,
    previous_hash: str,
    event_data: dict | None,
    created_at: datetime,
) -> str:
    return (
        f"BLOCK:{block_number}"
        f"|PREV:{previous_hash}"
        f"|DATA:{_canonical_event_data(event_data)}"
        f"|TIME:{canonical_timestamp(created_at)}"
        f"|NONCE:"
    )


def build_block_hash_input(
    block_number: int,
    previous_hash: str,
    event_data: dict | None,
    created_at: datetime,
    nonce: int,
) -> str:
    """Return the exact pre-image string that ``compute_block_hash`` digests."""
    return _hash_prefix(block_number, previous_hash, event_data, created_at) + str(nonce)


def compute_block_hash(
    block_number: int,
    previous_hash: str,
    event_data: dict | None,
    created_at: datetime,
    nonce: int = 0,
) -> str:
    """
    Compute the hash of a block.

    Args:
        block_number: Position of the block in the chain.
        previous_hash: ``current_hash`` of block ``block_number - 1``.
        event_data: The audited payload.
        created_at: Block creation timestamp.
        nonce: Proof-of-work nonce (0 when unsealed).

    Returns:
        Lowercase hex SHA-256 digest (64 characters).

    Raises:
        HashComputationError: SHA-256 is unavailable.
        InvalidPayloadError: ``event_data`` has no canonical encoding.
    """
    return _hex_digest(
        build_block_hash_input(block_number, previous_hash, event_data, created_at, nonce)
    )


def compute_payload_digest(event_data: dict | None) -> str:
    """
    SHA-256 of the canonical JSON of ``event_data`` alone.

    Stored as the block's ``merkle_root``: a single-leaf Merkle root, not a
    tree of hashes.
    """
    return _hex_digest(_canonical_event_data(event_data))


def verify_block_hash(
    expected_hash: str,
    block_number: int,
    previous_hash: str,
    event_data: dict | None,
    created_at: datetime,
    nonce: int,
) -> bool:
    """Recompute the block hash and compare for exact string equality."""
    return expected_hash == compute_block_hash(
        block_number, previous_hash, event_data, created_at, nonce
    )


def meets_difficulty(block_hash: str, difficulty: int) -> bool:
    """True if ``block_hash`` starts with ``difficulty`` ``'0'`` characters."""
    return block_hash.startswith("0" * difficulty)


@dataclass(frozen=True)
class ProofOfWorkResult:
    """
    Outcome of a nonce search.

    ``sealed`` is False when the attempt cap was reached first; ``nonce`` and
    ``hash`` are then the last pair tried, which is still a valid block hash
    for that nonce.
    """

    nonce: int
    hash: str
    elapsed_ms: int
    attempts: int
    difficulty: int
    sealed: bool


def seal_with_proof_of_work(
    block_number: int,
    previous_hash: str,
    event_data: dict | None,
    created_at: datetime,
    difficulty: int,
    max_attempts: int = DEFAULT_POW_MAX_ATTEMPTS,
) -> ProofOfWorkResult:
    """
    Search nonces from 0 upward until the hash has ``difficulty`` leading zeros.

    At most ``max_attempts`` nonces are tried.  There is no other
    cancellation mechanism.

    Raises:
        ValueError: ``difficulty`` outside ``0..64`` or ``max_attempts < 1``.
        HashComputationError: SHA-256 is unavailable.
    """
    if not 0 <= difficulty <= MAX_DIFFICULTY:
        raise ValueError(f"difficulty must be between 0 and {MAX_DIFFICULTY}, got {difficulty}")
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be positive, got {max_attempts}")

    target = "0" * difficulty
    base = _new_digest()
    base.update(
        _hash_prefix(block_number, previous_hash, event_data, created_at).encode("utf-8")
    )

    started = time.perf_counter()
    nonce = 0
    block_hash = ""
    sealed = False
    for nonce in range(max_attempts):
        digest = base.copy()
        digest.update(str(nonce).encode("ascii"))
        block_hash = digest.hexdigest()
        if block_hash.startswith(target):
            sealed = True
            break
    elapsed_ms = int((time.perf_counter() - started) * 1000)

    return ProofOfWorkResult(
        nonce=nonce,
        hash=block_hash,
        elapsed_ms=elapsed_ms,
        attempts=nonce + 1,
        difficulty=difficulty,
        sealed=sealed,
    )
