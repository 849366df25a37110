"""
SequenceService -- monotonic sequence numbers from counter rows.

Responsibility:
    Hands out strictly increasing ``seq`` values for ledger entries.  Each
    named sequence is one row in ``sequence_counters``; a value is taken
    by an in-place ``UPDATE ... SET current_value = current_value + 1``,
    which holds the row lock until the caller's transaction ends, and is
    then read back inside the same transaction.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by LedgerWriter.

Invariants enforced:
    - Values are never derived from ``MAX(seq) + 1`` over the ledger.
    - A rolled-back savepoint (a failed allocation line) gives its value
      back; ordering is promised, gap-free numbering is not.
"""

from sqlalchemy import BigInteger, String, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from lab_kernel.db.base import Base
from lab_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"


class SequenceService:
    LEDGER_ENTRY = "ledger_entry"

    def __init__(self, session: Session):
        self._session = session

    def _increment(self, sequence_name: str) -> bool:
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _create(self, sequence_name: str) -> bool:
        """Insert the counter at 1; False if a concurrent caller created it first."""
        savepoint = self._session.begin_nested()
        try:
            self._session.add(SequenceCounter(name=sequence_name, current_value=1))
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": sequence_name})
            return False
        savepoint.commit()
        return True

    def next_value(self, sequence_name: str) -> int:
        """Next value for ``sequence_name``; must run inside a transaction."""
        if not self._increment(sequence_name) and not self._create(sequence_name):
            if not self._increment(sequence_name):
                raise RuntimeError(f"Sequence counter {sequence_name!r} could not be created")

        value = self._session.scalar(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        )
        logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
        return value
