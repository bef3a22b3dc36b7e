"""Read-only query selectors for the audit chain."""

from audit_chain.selectors.chain_selector import ChainSelector

__all__ = ["ChainSelector"]
