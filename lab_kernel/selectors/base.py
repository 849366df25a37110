"""
Module: lab_kernel.selectors.base
Responsibility: Common base for the read side consumed by reporting
    collaborators (stock levels, ledger history, request allocation status).
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    the domain DTOs, never from services/.

Selectors never add, delete, flush or commit, and they return frozen DTOs
rather than ORM instances so callers cannot mutate ledger state through
a query result.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from lab_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    def __init__(self, session: Session):
        self.session = session
