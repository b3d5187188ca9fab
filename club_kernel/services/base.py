"""
BaseService -- common constructor for kernel write services.

Services receive a SQLAlchemy ``Session`` and use ``session.flush()``;
they never commit or roll back.  The workflow engine (or the caller) owns
transaction boundaries so a mutation and its audit entry land together.
Query-only code belongs in ``club_kernel/selectors/``.
"""

from abc import ABC

from sqlalchemy.orm import Session

from club_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - Never calls ``session.commit()`` or ``session.rollback()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    @property
    def clock(self) -> Clock:
        return self._clock
