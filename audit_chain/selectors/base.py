"""
Module: audit_chain.selectors.base
Responsibility: Shared plumbing for read-only selectors.
Architecture position: Chain > Selectors.  May import from db/ and models/,
    never from services/.

Selectors run queries inside the caller's session and transaction and never
add, delete, flush or commit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.orm import Session

from audit_chain.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _refreshing(stmt: Select, fresh: bool) -> Select:
        # populate_existing overwrites identity-map state with database values
        if fresh:
            return stmt.execution_options(populate_existing=True)
        return stmt

    def _first(self, stmt: Select, fresh: bool = False):
        return self.session.execute(self._refreshing(stmt, fresh)).scalars().first()

    def _all(self, stmt: Select, fresh: bool = False) -> list:
        return list(self.session.execute(self._refreshing(stmt, fresh)).scalars().all())

    def _scalar(self, stmt: Select):
        return self.session.execute(stmt).scalar()
