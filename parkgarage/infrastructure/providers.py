# File: parkgarage/infrastructure/providers.py
"""
Injectable capabilities for the garage service

1. Clocks - where "now" comes from (system time or a manually driven clock)
2. Id Generators - where ticket and payment ids come from (random or sequential)

The service never reads the system clock or calls uuid directly, so fee
calculations and ids are reproducible in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional
import threading
import uuid


# ============================================================================
# CLOCKS
# ============================================================================

class Clock(ABC):
    """Source of the current time"""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    """Wall clock time, naive local datetimes"""

    def now(self) -> datetime:
        return datetime.now()


class ManualClock(Clock):
    """
    Clock that only moves when told to

    Starts at the given instant (or a fixed default) and advances through
    advance()/set().
    """

    DEFAULT_START = datetime(2024, 1, 1, 8, 0, 0)

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or self.DEFAULT_START
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(minutes=minutes, seconds=seconds)
            return self._now

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._now = instant


# ============================================================================
# ID GENERATORS
# ============================================================================

class IdGenerator(ABC):
    """Source of ticket and payment identifiers"""

    @abstractmethod
    def next_ticket_id(self) -> str:
        pass

    @abstractmethod
    def next_payment_id(self) -> str:
        pass


class UuidIdGenerator(IdGenerator):
    """
    Random ids derived from UUID4

    Ticket ids: 8 upper-case hex characters (4 billion possibilities).
    Payment ids: 'P-' plus 7 upper-case hex characters.
    """

    def next_ticket_id(self) -> str:
        return uuid.uuid4().hex[:8].upper()

    def next_payment_id(self) -> str:
        return f"P-{uuid.uuid4().hex[:7].upper()}"


class SequentialIdGenerator(IdGenerator):
    """Deterministic ids: T-0001, T-0002, ... and P-0001, P-0002, ..."""

    def __init__(self, ticket_prefix: str = "T-", payment_prefix: str = "P-", width: int = 4):
        self.ticket_prefix = ticket_prefix
        self.payment_prefix = payment_prefix
        self.width = width
        self._ticket_seq = 0
        self._payment_seq = 0
        self._lock = threading.Lock()

    def next_ticket_id(self) -> str:
        with self._lock:
            self._ticket_seq += 1
            return f"{self.ticket_prefix}{self._ticket_seq:0{self.width}d}"

    def next_payment_id(self) -> str:
        with self._lock:
            self._payment_seq += 1
            return f"{self.payment_prefix}{self._payment_seq:0{self.width}d}"
