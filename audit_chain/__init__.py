"""
Audit Chain

A tamper-evident, append-only ledger of business events with:
- Deterministic SHA-256 block hashing over canonical JSON
- Hash linkage from every block to its predecessor
- Serialized appends (one writer at the chain head)
- Continue-on-error verification sweeps with persisted reports
- Optional proof-of-work block sealing
"""

__version__ = "0.1.0"
