"""
BaseService -- shared constructor for the write-side services.

Services flush inside the caller's transaction and never commit.  The
only rollbacks a service performs are of the per-line SAVEPOINTs it
opened itself (allocation and return batches); the caller decides
whether the surrounding transaction commits.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from lab_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Holds the caller's session.  ``ModelType`` names the row the service owns."""

    def __init__(self, session: Session):
        self.session = session
