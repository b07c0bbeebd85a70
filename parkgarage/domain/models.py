# File: parkgarage/domain/models.py
"""
Domain Models for the Parking Garage

This module contains:
1. Enums: vehicle categories and spot types
2. Value Objects: immutable objects with no identity (Vehicle)
3. Entities: objects with identity and lifecycle (Spot, Ticket, Payment)
4. Domain Events: records of business occurrences raised by the aggregates

Monetary amounts are Decimal throughout.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class _ParseableEnum(Enum):
    """Enum accepting either the member name or its value, case-insensitively"""

    @classmethod
    def parse(cls, raw: Any) -> 'Enum':
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str) or not raw.strip():
            raise ValueError(f"Invalid {cls.__name__}: {raw!r}")

        text = raw.strip()
        for member in cls:
            if text.upper() == member.name or text.lower() == member.value:
                return member

        allowed = ", ".join(member.name for member in cls)
        raise ValueError(f"Invalid {cls.__name__}: {raw!r} (expected one of {allowed})")

    def __str__(self) -> str:
        return self.name


class VehicleCategory(_ParseableEnum):
    """Fixed set of vehicle categories accepted at the entry gate"""
    CAR = "car"
    TRUCK = "truck"
    MOTORBIKE = "motorbike"
    VAN = "van"


class SpotType(_ParseableEnum):
    """Fixed set of physical spot types"""
    COMPACT = "compact"
    REGULAR = "regular"
    LARGE = "large"
    MOTORBIKE = "motorbike"
    HANDICAPPED = "handicapped"


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class Vehicle:
    """
    Value Object: the vehicle presented at entry
    Plate is stripped of surrounding whitespace and must not be empty.
    """
    plate: str
    category: VehicleCategory

    def __post_init__(self):
        if not isinstance(self.plate, str) or not self.plate.strip():
            raise ValueError("Plate number cannot be empty")
        if not isinstance(self.category, VehicleCategory):
            raise ValueError(f"Invalid vehicle category: {self.category!r}")
        object.__setattr__(self, 'plate', self.plate.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {"plate": self.plate, "category": self.category.name}

    def __str__(self) -> str:
        return f"{self.plate} ({self.category.name})"


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Spot:
    """
    Entity: a single physical parking space of one fixed type

    A spot is unavailable for new assignment exactly when it holds a ticket id.
    Occupancy changes only through assign() and release().
    """

    def __init__(self, spot_id: int, spot_type: SpotType):
        if not isinstance(spot_id, int) or spot_id < 1:
            raise ValueError(f"Spot id must be a positive integer, got {spot_id!r}")
        self.id = spot_id
        self.spot_type = spot_type
        self._occupied_by: Optional[str] = None

    @property
    def occupied_by(self) -> Optional[str]:
        """Ticket id currently holding this spot, if any"""
        return self._occupied_by

    @property
    def is_available(self) -> bool:
        return self._occupied_by is None

    def assign(self, ticket_id: str) -> bool:
        """
        Occupy the spot for a ticket
        Returns: False without changing anything if the spot is already taken
        """
        if self._occupied_by is not None:
            return False
        self._occupied_by = ticket_id
        return True

    def release(self) -> None:
        """Clear occupancy; releasing a free spot is a no-op"""
        self._occupied_by = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "spot_type": self.spot_type.name,
            "occupied": not self.is_available,
            "ticket_id": self._occupied_by,
        }

    def __repr__(self) -> str:
        return f"Spot(id={self.id}, type={self.spot_type.name})"

    def __str__(self) -> str:
        status = "(OCCUPIED)" if self._occupied_by else "(FREE)"
        return f"Spot[{self.id}:{self.spot_type.name}] {status}"


class Ticket:
    """
    Entity: the record of one vehicle's stay, from entry to exit

    Exit time and fee are both unset while the ticket is open and both set
    once it is closed. A closed ticket never changes again.
    """

    def __init__(
        self,
        ticket_id: str,
        vehicle: Vehicle,
        spot_id: int,
        entry_time: datetime
    ):
        if not ticket_id:
            raise ValueError("Ticket id cannot be empty")
        self._id = ticket_id
        self._vehicle = vehicle
        self._spot_id = spot_id
        self._entry_time = entry_time
        self._exit_time: Optional[datetime] = None
        self._fee: Optional[Decimal] = None

    @property
    def id(self) -> str:
        return self._id

    @property
    def vehicle(self) -> Vehicle:
        return self._vehicle

    @property
    def spot_id(self) -> int:
        return self._spot_id

    @property
    def entry_time(self) -> datetime:
        return self._entry_time

    @property
    def exit_time(self) -> Optional[datetime]:
        return self._exit_time

    @property
    def fee(self) -> Optional[Decimal]:
        return self._fee

    @property
    def is_open(self) -> bool:
        return self._exit_time is None

    def elapsed_minutes(self, until: datetime) -> int:
        """Whole minutes between entry and the given instant, truncated"""
        seconds = (until - self._entry_time).total_seconds()
        return int(seconds // 60)

    def close(self, exit_time: datetime, fee: Decimal) -> None:
        """
        Close the ticket with its final fee
        Raises: ValueError if the ticket was already closed or the fee is negative
        """
        if not self.is_open:
            raise ValueError(f"Ticket {self._id} is already closed")
        if fee < Decimal('0'):
            raise ValueError("Fee cannot be negative")
        if exit_time < self._entry_time:
            raise ValueError("Exit time cannot precede entry time")
        self._exit_time = exit_time
        self._fee = fee

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self._id,
            "vehicle": self._vehicle.to_dict(),
            "spot_id": self._spot_id,
            "entry_time": self._entry_time.isoformat(),
            "exit_time": self._exit_time.isoformat() if self._exit_time else None,
            "fee": str(self._fee) if self._fee is not None else None,
        }

    def __repr__(self) -> str:
        return f"Ticket(id={self._id}, spot={self._spot_id}, open={self.is_open})"


@dataclass(frozen=True)
class Payment:
    """
    Entity: immutable record of one accepted settlement

    The amount is the fee that was due, never the cash tendered.
    """
    id: str
    ticket_id: str
    amount: Decimal
    paid_at: datetime
    method: str

    def __post_init__(self):
        if not self.id:
            raise ValueError("Payment id cannot be empty")
        if self.amount < Decimal('0'):
            raise ValueError("Payment amount cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "amount": str(self.amount),
            "paid_at": self.paid_at.isoformat(),
            "method": self.method,
        }


# ============================================================================
# DOMAIN EVENTS
# ============================================================================

class DomainEvent(ABC):
    """
    Base class for all domain events
    Events represent something that happened in the garage
    """

    event_type: str = "domain.event"

    def __init__(self, timestamp: Optional[datetime] = None):
        self.event_id = str(uuid.uuid4())
        self.timestamp = timestamp or datetime.now()

    @abstractmethod
    def payload(self) -> Dict[str, Any]:
        """Event specific data"""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "data": self.payload(),
        }

    def __str__(self) -> str:
        return f"{self.__class__.__name__} at {self.timestamp}"


class SpotsAddedEvent(DomainEvent):
    """Raised when spots are added to the inventory"""

    event_type = "spots_added"

    def __init__(self, spot_type: SpotType, spot_ids: List[int], timestamp: Optional[datetime] = None):
        super().__init__(timestamp)
        self.spot_type = spot_type
        self.spot_ids = list(spot_ids)

    def payload(self) -> Dict[str, Any]:
        return {"spot_type": self.spot_type.name, "spot_ids": self.spot_ids}


class TariffChangedEvent(DomainEvent):
    """Raised when the active tariff is replaced"""

    event_type = "tariff_changed"

    def __init__(self, rate_per_hour: Decimal, grace_minutes: int, timestamp: Optional[datetime] = None):
        super().__init__(timestamp)
        self.rate_per_hour = rate_per_hour
        self.grace_minutes = grace_minutes

    def payload(self) -> Dict[str, Any]:
        return {"rate_per_hour": str(self.rate_per_hour), "grace_minutes": self.grace_minutes}


class VehicleEnteredEvent(DomainEvent):
    """Raised when a ticket is issued"""

    event_type = "vehicle_entered"

    def __init__(self, ticket: Ticket):
        super().__init__(ticket.entry_time)
        self.ticket_id = ticket.id
        self.spot_id = ticket.spot_id
        self.vehicle = ticket.vehicle

    def payload(self) -> Dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "spot_id": self.spot_id,
            "plate": self.vehicle.plate,
            "category": self.vehicle.category.name,
        }


class VehicleExitedEvent(DomainEvent):
    """Raised when a ticket is closed and its spot released"""

    event_type = "vehicle_exited"

    def __init__(self, ticket: Ticket, duration_minutes: int):
        super().__init__(ticket.exit_time)
        self.ticket_id = ticket.id
        self.spot_id = ticket.spot_id
        self.plate = ticket.vehicle.plate
        self.duration_minutes = duration_minutes
        self.fee = ticket.fee

    def payload(self) -> Dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "spot_id": self.spot_id,
            "plate": self.plate,
            "duration_minutes": self.duration_minutes,
            "fee": str(self.fee),
        }


class PaymentRecordedEvent(DomainEvent):
    """Raised when a settlement is stored"""

    event_type = "payment_recorded"

    def __init__(self, payment: Payment):
        super().__init__(payment.paid_at)
        self.payment = payment

    def payload(self) -> Dict[str, Any]:
        return self.payment.to_dict()
