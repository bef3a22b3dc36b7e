"""Services for the audit chain (write side)."""

from audit_chain.services.audit_appender import AuditAppender
from audit_chain.services.chain_lock import ChainLock
from audit_chain.services.chain_verifier import ChainVerifier, check_block
from audit_chain.services.pow_worker import ProofOfWorkSealer, get_default_sealer

__all__ = [
    "AuditAppender",
    "ChainLock",
    "ChainVerifier",
    "ProofOfWorkSealer",
    "check_block",
    "get_default_sealer",
]
