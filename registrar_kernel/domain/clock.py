"""
Clock -- Injectable time source.

Responsibility:
    Provides an injectable clock interface so that domain and service code
    never call ``datetime.now()`` directly.  Period-reset decisions and audit
    timestamps are both traceable to one injected Clock instance.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock and
    TransactionClock, the two sanctioned I/O boundaries for time).

Invariants enforced:
    - All callers allocating from the same counter compare periods against
      the same time source.  In production that is TransactionClock (the
      database server's transaction timestamp), never per-node wall clocks.

Failure modes:
    - SequentialClock raises RuntimeError if exhausted and no fallback time.
    - TransactionClock raises RuntimeError if the database returns no time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Iterator


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time receive a Clock instance via
        constructor injection.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
        - ``now_utc()`` returns a UTC-normalized ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def now_utc(self) -> datetime:
        """Get the current UTC time."""
        return self.now().astimezone(timezone.utc)


class SystemClock(Clock):
    """
    Production clock that returns the local node's system time.

    Non-goals:
        Not suitable for period-reset decisions across several nodes; use
        TransactionClock there.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TransactionClock(Clock):
    """
    Clock that reads the database's transaction timestamp.

    Contract:
        Bound to a Session.  ``now()`` issues ``SELECT CURRENT_TIMESTAMP``
        inside that session's transaction, so every caller on every node sees
        the same server-side time source.

    Guarantees:
        - Result is timezone-aware UTC.  Backends that return a naive value
          or a string (SQLite) are interpreted as UTC.
    """

    def __init__(self, session):
        self._session = session

    def now(self) -> datetime:
        from sqlalchemy import func, select

        value = self._session.execute(select(func.current_timestamp())).scalar()
        if value is None:
            raise RuntimeError("Database returned no CURRENT_TIMESTAMP")
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until ``advance()``
          or ``set_time()`` is called.
        - ``tick()`` advances by exactly 1 second and returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._advance_seconds += seconds

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()


class SequentialClock(Clock):
    """
    Clock that returns sequential times from a predefined list.

    After exhaustion, repeats the last value.

    Raises:
        ValueError: If initialized with an empty list.
    """

    def __init__(self, times: list[datetime]):
        if not times:
            raise ValueError("SequentialClock requires at least one time")
        self._times: Iterator[datetime] = iter(times)
        self._last_time: datetime | None = None
        self._exhausted = False

    def now(self) -> datetime:
        if self._exhausted:
            if self._last_time is None:
                raise RuntimeError("SequentialClock has no times")
            return self._last_time

        try:
            self._last_time = next(self._times)
            return self._last_time
        except StopIteration:
            self._exhausted = True
            if self._last_time is None:
                raise RuntimeError("SequentialClock exhausted with no times")
            return self._last_time
