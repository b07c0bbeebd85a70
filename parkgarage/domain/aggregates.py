# File: parkgarage/domain/aggregates.py
"""
Aggregate Roots for the Parking Garage
Following Domain-Driven Design (DDD) Aggregate Pattern

Aggregates:
1. SpotInventory - typed spots in configuration order, allocation search
2. TicketLedger - open and archived tickets keyed by ticket id
3. GarageState - single owner of inventory, ledger, payments and tariff

Key Concepts:
- Aggregate roots enforce their own invariants
- Domain events are raised for state changes and drained by the service
- Nothing here is thread-safe; the application service serializes access
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional
import logging

from .models import (
    DomainEvent, Payment, PaymentRecordedEvent, Spot, SpotType,
    SpotsAddedEvent, TariffChangedEvent, Ticket, Vehicle,
    VehicleEnteredEvent, VehicleExitedEvent
)
from .strategies import CompatibilityPolicy, GracePeriodTariff


class DuplicateTicketError(ValueError):
    """Ticket id already present among active or archived tickets"""


class TicketNotActiveError(LookupError):
    """Ticket id is unknown or already closed"""


# ============================================================================
# BASE AGGREGATE ROOT
# ============================================================================

class AggregateRoot:
    """
    Base class for all aggregate roots
    Provides domain event collection and versioning
    """

    def __init__(self):
        self._version: int = 1
        self._changes: List[DomainEvent] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def version(self) -> int:
        return self._version

    def _increment_version(self) -> None:
        self._version += 1

    def _add_domain_event(self, event: DomainEvent) -> None:
        self._changes.append(event)
        self._logger.debug(f"Added domain event: {event.__class__.__name__}")

    def clear_events(self) -> List[DomainEvent]:
        """Clear and return all domain events"""
        events = self._changes.copy()
        self._changes.clear()
        return events

    @property
    def has_changes(self) -> bool:
        return len(self._changes) > 0


# ============================================================================
# SPOT INVENTORY
# ============================================================================

class SpotInventory(AggregateRoot):
    """
    Aggregate Root: the garage's spots, kept in configuration order

    Spot ids come from a counter starting at 1 and are never reused.
    Allocation is deterministic: for the same occupancy it always picks
    the same spot.
    """

    def __init__(self, policy: Optional[CompatibilityPolicy] = None):
        super().__init__()
        self.policy = policy or CompatibilityPolicy()
        self._spots: Dict[int, Spot] = {}
        self._next_spot_id = 1

    def add_spots(
        self,
        spot_type: SpotType,
        count: int,
        timestamp: Optional[datetime] = None
    ) -> List[int]:
        """
        Add count spots of one type
        Returns: ids of the created spots
        """
        if not isinstance(spot_type, SpotType):
            raise ValueError(f"Invalid spot type: {spot_type!r}")
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValueError(f"Spot count must be a positive integer, got {count!r}")

        created = []
        for _ in range(count):
            spot = Spot(self._next_spot_id, spot_type)
            self._spots[spot.id] = spot
            created.append(spot.id)
            self._next_spot_id += 1

        self._increment_version()
        self._add_domain_event(SpotsAddedEvent(spot_type, created, timestamp))
        self._logger.info(f"Added {count} {spot_type.name} spot(s): {created[0]}-{created[-1]}")
        return created

    def get(self, spot_id: int) -> Optional[Spot]:
        return self._spots.get(spot_id)

    def find_first_available(self, spot_type: SpotType) -> Optional[Spot]:
        """First free spot of the given type in configuration order"""
        for spot in self._spots.values():
            if spot.spot_type == spot_type and spot.is_available:
                return spot
        return None

    def find_allocatable(self, vehicle: Vehicle) -> Optional[Spot]:
        """
        Pick a spot for the vehicle
        Walks the policy's preferred types in order, then the fallback types.
        Returns: None when nothing compatible is free
        """
        for spot_type in self.policy.search_order(vehicle.category):
            spot = self.find_first_available(spot_type)
            if spot is not None:
                self._logger.debug(f"Selected {spot} for {vehicle}")
                return spot

        self._logger.debug(f"No compatible spot for {vehicle}")
        return None

    def assign(self, spot: Spot, ticket_id: str) -> bool:
        """Mark the spot as held by the ticket; False if it was already held"""
        assigned = spot.assign(ticket_id)
        if assigned:
            self._increment_version()
        else:
            self._logger.warning(f"Spot {spot.id} already held by {spot.occupied_by}")
        return assigned

    def release(self, spot: Spot) -> None:
        spot.release()
        self._increment_version()

    def __iter__(self) -> Iterator[Spot]:
        return iter(list(self._spots.values()))

    def __len__(self) -> int:
        return len(self._spots)

    @property
    def total_spots(self) -> int:
        return len(self._spots)

    @property
    def occupied_spots(self) -> int:
        return sum(1 for spot in self._spots.values() if not spot.is_available)

    @property
    def free_spots(self) -> int:
        return self.total_spots - self.occupied_spots

    def get_spots_by_type(self, spot_type: SpotType) -> List[Spot]:
        return [spot for spot in self._spots.values() if spot.spot_type == spot_type]


# ============================================================================
# TICKET LEDGER
# ============================================================================

class TicketLedger(AggregateRoot):
    """
    Aggregate Root: open and archived tickets

    A ticket id is unique across both sets. Moving a ticket from active to
    archived happens once; a second close sees the ticket as not active.
    """

    def __init__(self):
        super().__init__()
        self._active: Dict[str, Ticket] = {}
        self._archived: Dict[str, Ticket] = {}

    def contains(self, ticket_id: str) -> bool:
        return ticket_id in self._active or ticket_id in self._archived

    def open_ticket(
        self,
        ticket_id: str,
        vehicle: Vehicle,
        spot_id: int,
        entry_time: datetime
    ) -> Ticket:
        if self.contains(ticket_id):
            raise DuplicateTicketError(f"Ticket id {ticket_id} already exists")

        ticket = Ticket(ticket_id, vehicle, spot_id, entry_time)
        self._active[ticket_id] = ticket
        self._increment_version()
        self._add_domain_event(VehicleEnteredEvent(ticket))
        return ticket

    def get_active(self, ticket_id: str) -> Optional[Ticket]:
        return self._active.get(ticket_id)

    def get_archived(self, ticket_id: str) -> Optional[Ticket]:
        return self._archived.get(ticket_id)

    def close_ticket(self, ticket_id: str, exit_time: datetime, fee: Decimal) -> Ticket:
        """
        Close an active ticket and archive it
        Raises: TicketNotActiveError for unknown and already-closed ids alike
        """
        ticket = self._active.get(ticket_id)
        if ticket is None:
            raise TicketNotActiveError(f"Ticket {ticket_id} is not an open ticket")

        ticket.close(exit_time, fee)
        self._add_domain_event(VehicleExitedEvent(ticket, ticket.elapsed_minutes(exit_time)))
        del self._active[ticket_id]
        self._archived[ticket_id] = ticket
        self._increment_version()
        return ticket

    @property
    def active_tickets(self) -> List[Ticket]:
        return list(self._active.values())

    @property
    def archived_tickets(self) -> List[Ticket]:
        return list(self._archived.values())


# ============================================================================
# GARAGE STATE
# ============================================================================

class GarageState:
    """
    Explicitly owned garage state: inventory, ledger, payments and tariff

    One instance per garage; no module-level state, so independent garages
    can live side by side.
    """

    def __init__(
        self,
        tariff: GracePeriodTariff,
        policy: Optional[CompatibilityPolicy] = None
    ):
        self.inventory = SpotInventory(policy)
        self.ledger = TicketLedger()
        self._payments: Dict[str, Payment] = {}
        self._tariff = tariff
        self._changes: List[DomainEvent] = []

    @property
    def tariff(self) -> GracePeriodTariff:
        return self._tariff

    def replace_tariff(self, tariff: GracePeriodTariff, timestamp: Optional[datetime] = None) -> None:
        """Swap the active tariff; closed tickets keep the fee they were charged"""
        self._tariff = tariff
        self._changes.append(TariffChangedEvent(tariff.rate_per_hour, tariff.grace_minutes, timestamp))

    def record_payment(self, payment: Payment) -> None:
        if payment.id in self._payments:
            raise ValueError(f"Payment id {payment.id} already recorded")
        self._payments[payment.id] = payment
        self._changes.append(PaymentRecordedEvent(payment))

    def has_payment(self, payment_id: str) -> bool:
        return payment_id in self._payments

    @property
    def payments(self) -> List[Payment]:
        return list(self._payments.values())

    def clear_events(self) -> List[DomainEvent]:
        """Drain events from inventory, ledger and state, in that order"""
        events = self.inventory.clear_events() + self.ledger.clear_events() + self._changes
        self._changes = []
        return events
