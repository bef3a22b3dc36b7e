"""Utility modules for the audit chain."""

from audit_chain.utils.hashing import (
    GENESIS_PREVIOUS_HASH,
    ProofOfWorkResult,
    canonicalize_json,
    compute_block_hash,
    compute_payload_digest,
    seal_with_proof_of_work,
    verify_block_hash,
)

__all__ = [
    "GENESIS_PREVIOUS_HASH",
    "ProofOfWorkResult",
    "canonicalize_json",
    "compute_block_hash",
    "compute_payload_digest",
    "seal_with_proof_of_work",
    "verify_block_hash",
]
