"""
Module: lab_kernel.db.base
Responsibility: Declarative bases shared by every ORM model: the UUID primary
    key, the column type map, and the audit columns.
Architecture position: Kernel > DB.  The lowest import target in the kernel;
    must not import from models/, services/, selectors/ or domain/.

Quantities use ``Quantity``: ``Numeric(38, 9)`` on PostgreSQL, and an integer
count of 10**-9 units on SQLite, whose NUMERIC affinity would otherwise store
fractional chemical amounts (12.5 mL, 0.3 L) as binary floats.
"""

from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as CHAR-like text so SQLite and PostgreSQL share one schema."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Quantity(TypeDecorator):
    """
    Exact decimal quantity at scale 9.

    SQLite keeps the value as a scaled integer so that guarded comparisons
    (``quantity >= :amount``) and in-place arithmetic stay exact.  Literals
    compared with or added to a ``Quantity`` column are scaled the same way.
    """

    impl = Numeric(38, 9)
    cache_ok = True

    SCALE = 9

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(BigInteger())
        return dialect.type_descriptor(Numeric(38, self.SCALE))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = value if isinstance(value, Decimal) else Decimal(str(value))
        if dialect.name != "sqlite":
            return value
        return int(value.scaleb(self.SCALE).to_integral_value(rounding=ROUND_HALF_EVEN))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if dialect.name != "sqlite":
            return value if isinstance(value, Decimal) else Decimal(str(value))
        return Decimal(int(value)).scaleb(-self.SCALE)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Quantity(),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds who/when audit columns.

    ``created_at`` is stamped by the database on INSERT; ``updated_at``
    moves on every UPDATE.  ``created_by_id`` is the acting user and is
    required.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
