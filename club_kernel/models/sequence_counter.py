"""Named counters backing SequenceService."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from club_kernel.db.base import Base


class SequenceCounter(Base):
    """
    One row per named sequence.

    Row-level locking on this table keeps allocation monotonic under
    concurrency.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g. "audit_entry")
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
