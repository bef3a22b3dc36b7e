"""
Common constructor for chain services.

A service works inside the caller's session: it flushes, it never commits
or rolls back.  The producer's own write and the audit block it appends
therefore land in the same transaction, and chain locks taken by the
service are held until that transaction ends.
"""

from abc import ABC

from sqlalchemy.orm import Session

from audit_chain.config import ChainSettings, get_settings
from audit_chain.domain.clock import Clock, SystemClock


class BaseService(ABC):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: ChainSettings | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
