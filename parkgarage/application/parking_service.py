# File: parkgarage/application/parking_service.py
"""
Garage Application Service

Orchestrates the garage use cases on top of the domain aggregates:
1. Tariff configuration
2. Spot configuration (single type or batch with partial success)
3. Vehicle entry: policy -> inventory -> ledger
4. Vehicle exit: ledger -> tariff -> payment check -> release -> archive
5. Read models: fee quote, occupancy snapshot, ticket and payment listings

Every public operation runs under one re-entrant lock per garage, so entry
and exit are atomic with respect to each other. A failed entry or exit
leaves no partial change behind. Domain events collected during an
operation are published after the lock is released.
"""

from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Iterable, List, Optional, Tuple
import logging
import threading

from ..domain.aggregates import DuplicateTicketError, GarageState, TicketNotActiveError
from ..domain.models import DomainEvent, Payment, SpotType, Vehicle, VehicleCategory
from ..domain.strategies import CENT, CompatibilityPolicy, GracePeriodTariff, to_amount
from ..infrastructure.messaging import MessageBus
from ..infrastructure.providers import Clock, IdGenerator, SystemClock, UuidIdGenerator
from .dtos import (
    AddSpotsResultDTO, ExitReceiptDTO, FeeQuoteDTO, OccupancySnapshotDTO,
    PaymentDTO, RejectedSpotEntryDTO, SpotStatusDTO, TariffDTO, TicketDTO,
    TicketListingDTO
)


PAYMENT_TOLERANCE = Decimal('0.000000001')


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ParkingServiceError(Exception):
    """Base exception for garage service errors"""


class InvalidInputError(ParkingServiceError, ValueError):
    """Malformed or unknown input; nothing was changed"""


class NoAvailableSpotError(ParkingServiceError):
    """No free spot of any type the vehicle may use"""


class AllocationConflictError(ParkingServiceError):
    """The chosen spot was already held; indicates a consistency bug"""


class InvalidTicketError(ParkingServiceError):
    """Ticket id is unknown or already closed"""


class InsufficientPaymentError(ParkingServiceError):
    """Tendered amount is below the fee due"""

    def __init__(self, ticket_id: str, required: Decimal, provided: Decimal):
        self.ticket_id = ticket_id
        self.required = required
        self.provided = provided
        super().__init__(
            f"Payment insufficient for ticket {ticket_id}. "
            f"Required: {required:.2f}, Provided: {provided.quantize(CENT, rounding=ROUND_FLOOR)}"
        )


# ============================================================================
# MAIN GARAGE SERVICE
# ============================================================================

class GarageService:
    """
    Main application service for one garage

    Collaborators are injected: the clock decides "now", the id generator
    issues ticket and payment ids, and the optional message bus receives
    domain events.
    """

    DEFAULT_RATE_PER_HOUR = Decimal('40.00')
    DEFAULT_GRACE_MINUTES = 10

    def __init__(
        self,
        tariff: Optional[GracePeriodTariff] = None,
        policy: Optional[CompatibilityPolicy] = None,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
        message_bus: Optional[MessageBus] = None,
        max_id_attempts: int = 5
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.state = GarageState(
            tariff or GracePeriodTariff(self.DEFAULT_RATE_PER_HOUR, self.DEFAULT_GRACE_MINUTES),
            policy
        )
        self.clock = clock or SystemClock()
        self.id_generator = id_generator or UuidIdGenerator()
        self.message_bus = message_bus
        self.max_id_attempts = max_id_attempts
        self._lock = threading.RLock()

        self.logger.info(f"GarageService initialized ({self.state.tariff.describe()})")

    # ========================================================================
    # CONFIGURATION
    # ========================================================================

    def configure_tariff(self, rate_per_hour: Any, grace_minutes: Any) -> TariffDTO:
        """
        Replace the active tariff
        Open tickets are billed with whatever tariff is active when they exit.
        Raises: InvalidInputError for negative or non-numeric values
        """
        try:
            tariff = GracePeriodTariff(rate_per_hour, grace_minutes)
        except ValueError as e:
            self.logger.warning(f"Tariff rejected: {e}")
            raise InvalidInputError(str(e)) from e

        with self._lock:
            self.state.replace_tariff(tariff, self.clock.now())
            events = self.state.clear_events()

        self.logger.info(f"Tariff updated: {tariff.describe()}")
        self._publish(events)
        return TariffDTO.from_tariff(tariff)

    def get_tariff(self) -> TariffDTO:
        with self._lock:
            return TariffDTO.from_tariff(self.state.tariff)

    def add_spots(self, spot_type: Any, count: Any) -> List[int]:
        """
        Add count spots of one type
        Returns: the new spot ids
        Raises: InvalidInputError for an unknown type or a non-positive count
        """
        parsed_type, parsed_count = self._parse_spot_entry(spot_type, count)

        with self._lock:
            created = self.state.inventory.add_spots(parsed_type, parsed_count, self.clock.now())
            events = self.state.clear_events()

        self._publish(events)
        return created

    def add_spot_batch(self, entries: Iterable[Tuple[Any, Any]]) -> AddSpotsResultDTO:
        """
        Add several (type, count) entries, skipping the invalid ones
        Returns: created ids plus every rejected entry with its reason
        """
        created: List[int] = []
        rejected: List[RejectedSpotEntryDTO] = []

        with self._lock:
            for entry in entries:
                try:
                    spot_type, count = entry
                except (TypeError, ValueError):
                    self.logger.warning(f"Skipping malformed spot entry {entry!r}")
                    rejected.append(RejectedSpotEntryDTO(
                        spot_type=repr(entry), count=None, reason=f"Malformed spot entry: {entry!r}"
                    ))
                    continue
                try:
                    parsed_type, parsed_count = self._parse_spot_entry(spot_type, count)
                except InvalidInputError as e:
                    self.logger.warning(f"Skipping invalid spot entry {spot_type}:{count}: {e}")
                    rejected.append(RejectedSpotEntryDTO(spot_type=str(spot_type), count=count, reason=str(e)))
                    continue
                created.extend(self.state.inventory.add_spots(parsed_type, parsed_count, self.clock.now()))
            events = self.state.clear_events()

        self._publish(events)
        return AddSpotsResultDTO(created_spot_ids=created, rejected=rejected)

    @staticmethod
    def _parse_spot_entry(spot_type: Any, count: Any) -> Tuple[SpotType, int]:
        try:
            parsed_type = SpotType.parse(spot_type)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

        if isinstance(count, str):
            try:
                count = int(count.strip())
            except ValueError as e:
                raise InvalidInputError(f"Spot count must be an integer, got {count!r}") from e
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidInputError(f"Spot count must be a positive integer, got {count!r}")

        return parsed_type, count

    # ========================================================================
    # ENTRY
    # ========================================================================

    def enter_vehicle(self, plate: Any, category: Any, *,
                      entry_time: Optional[datetime] = None) -> TicketDTO:
        """
        Issue a ticket for an arriving vehicle

        Use Case: Vehicle Entry
        1. Validate plate and category
        2. Find an allocatable spot (NoAvailableSpotError if none)
        3. Generate a ticket id unique across the whole ledger
        4. Assign the spot (AllocationConflictError if it was taken)
        5. Open the ticket at entry_time, or at the current time if omitted
        """
        try:
            vehicle = Vehicle(plate if isinstance(plate, str) else "", VehicleCategory.parse(category))
        except ValueError as e:
            self.logger.warning(f"Entry rejected for {plate!r}: {e}")
            raise InvalidInputError(str(e)) from e

        with self._lock:
            spot = self.state.inventory.find_allocatable(vehicle)
            if spot is None:
                self.logger.warning(f"No suitable spot available for {vehicle}. Entry denied.")
                raise NoAvailableSpotError(f"No suitable spot available for {vehicle}")

            ticket_id = self._generate_ticket_id()

            if not self.state.inventory.assign(spot, ticket_id):
                self.logger.error(f"Allocation conflict on spot {spot.id} for {vehicle}")
                raise AllocationConflictError(f"Spot {spot.id} is already occupied")

            try:
                opened_at = entry_time if entry_time is not None else self.clock.now()
                ticket = self.state.ledger.open_ticket(ticket_id, vehicle, spot.id, opened_at)
            except DuplicateTicketError as e:
                self.state.inventory.release(spot)
                raise AllocationConflictError(str(e)) from e

            result = TicketDTO.from_ticket(ticket)
            events = self.state.clear_events()

        self.logger.info(f"Ticket {ticket_id} issued: {vehicle} -> spot {spot.id}")
        self._publish(events)
        return result

    def _generate_ticket_id(self) -> str:
        for _ in range(self.max_id_attempts):
            ticket_id = self.id_generator.next_ticket_id()
            if not self.state.ledger.contains(ticket_id):
                return ticket_id
            self.logger.warning(f"Generated ticket id {ticket_id} collides with an existing ticket")
        raise AllocationConflictError(
            f"Could not generate a unique ticket id after {self.max_id_attempts} attempts"
        )

    def _generate_payment_id(self) -> str:
        for _ in range(self.max_id_attempts):
            payment_id = self.id_generator.next_payment_id()
            if not self.state.has_payment(payment_id):
                return payment_id
        raise ParkingServiceError(
            f"Could not generate a unique payment id after {self.max_id_attempts} attempts"
        )

    # ========================================================================
    # EXIT
    # ========================================================================

    def quote_fee(self, ticket_id: str) -> FeeQuoteDTO:
        """
        Fee due if the vehicle left now; changes nothing
        Raises: InvalidTicketError for unknown or closed tickets
        """
        with self._lock:
            ticket = self._require_active(ticket_id)
            now = self.clock.now()
            minutes, fee = self._compute_fee(ticket, now)
            return FeeQuoteDTO(
                ticket=TicketDTO.from_ticket(ticket),
                quoted_at=now,
                duration_minutes=minutes,
                amount_due=fee,
                tariff=TariffDTO.from_tariff(self.state.tariff)
            )

    def exit_vehicle(self, ticket_id: str, paid_amount: Any, method: str = "CASH") -> ExitReceiptDTO:
        """
        Settle a ticket and release its spot

        Use Case: Vehicle Exit
        1. Look up the open ticket (InvalidTicketError if absent)
        2. Compute the fee with the tariff active now
        3. Reject payments below the fee (InsufficientPaymentError)
        4. Close the ticket with the fee due, release the spot, record the
           payment for the fee due and report change separately
        """
        try:
            paid = to_amount(paid_amount)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        if paid < Decimal('0'):
            raise InvalidInputError("Paid amount cannot be negative")
        if not isinstance(method, str) or not method.strip():
            raise InvalidInputError("Payment method is required")
        method = method.strip().upper()

        with self._lock:
            ticket = self._require_active(ticket_id)
            now = self.clock.now()
            minutes, required = self._compute_fee(ticket, now)

            if paid + PAYMENT_TOLERANCE < required:
                self.logger.warning(
                    f"Payment insufficient for {ticket.id}. Required: {required:.2f}, "
                    f"Provided: {paid.quantize(CENT, rounding=ROUND_FLOOR)}"
                )
                raise InsufficientPaymentError(ticket.id, required, paid)

            payment_id = self._generate_payment_id()
            closed = self.state.ledger.close_ticket(ticket.id, now, required)

            spot = self.state.inventory.get(closed.spot_id)
            if spot is not None:
                self.state.inventory.release(spot)

            payment = Payment(payment_id, closed.id, required, now, method)
            self.state.record_payment(payment)

            change = max(Decimal('0.00'), paid - required).quantize(Decimal('0.01'))
            receipt = ExitReceiptDTO(
                ticket=TicketDTO.from_ticket(closed),
                payment=PaymentDTO.from_payment(payment),
                duration_minutes=minutes,
                amount_due=required,
                amount_paid=paid,
                change=change
            )
            events = self.state.clear_events()

        self.logger.info(
            f"Ticket {closed.id} closed after {minutes} min. Fee: {required:.2f}, change: {change:.2f}"
        )
        self._publish(events)
        return receipt

    def _require_active(self, ticket_id: Any):
        key = ticket_id.strip() if isinstance(ticket_id, str) else ticket_id
        ticket = self.state.ledger.get_active(key) if isinstance(key, str) else None
        if ticket is None:
            self.logger.warning(f"Invalid or already-closed ticket id: {ticket_id!r}")
            raise InvalidTicketError(f"Invalid or already-closed ticket id: {ticket_id}")
        return ticket

    def _compute_fee(self, ticket, now) -> Tuple[int, Decimal]:
        minutes = ticket.elapsed_minutes(now)
        try:
            return minutes, self.state.tariff.compute_fee(minutes)
        except ValueError as e:
            raise InvalidInputError(f"Cannot bill ticket {ticket.id}: {e}") from e

    # ========================================================================
    # QUERIES
    # ========================================================================

    def occupancy_snapshot(self) -> OccupancySnapshotDTO:
        with self._lock:
            inventory = self.state.inventory
            spots = []
            for spot in inventory:
                ticket = self.state.ledger.get_active(spot.occupied_by) if spot.occupied_by else None
                spots.append(SpotStatusDTO.from_spot(spot, ticket))
            return OccupancySnapshotDTO(
                total=inventory.total_spots,
                occupied=inventory.occupied_spots,
                free=inventory.free_spots,
                spots=spots,
                taken_at=self.clock.now()
            )

    def list_tickets(self) -> TicketListingDTO:
        with self._lock:
            return TicketListingDTO(
                active=[TicketDTO.from_ticket(t) for t in self.state.ledger.active_tickets],
                archived=[TicketDTO.from_ticket(t) for t in self.state.ledger.archived_tickets]
            )

    def list_payments(self) -> List[PaymentDTO]:
        with self._lock:
            return [PaymentDTO.from_payment(p) for p in self.state.payments]

    # ========================================================================
    # EVENTS
    # ========================================================================

    def _publish(self, events: List[DomainEvent]) -> None:
        if not events or self.message_bus is None:
            return
        try:
            self.message_bus.publish_events(events)
        except Exception as e:
            self.logger.error(f"Failed to publish {len(events)} event(s): {e}")
