# File: parkgarage/application/dtos.py
"""
Data Transfer Objects (DTOs) for the Parking Garage

Everything the service hands back to its caller is a DTO: a frozen
snapshot built from the domain objects, safe to render or serialize
without touching live garage state.

1. Input DTOs - entry and exit requests, validated at creation
2. Output DTOs - tickets, payments, receipts, snapshots and listings
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import json

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..domain.models import Payment, Spot, Ticket, VehicleCategory
from ..domain.strategies import GracePeriodTariff


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        return self.model_dump(exclude_none=exclude_none, **kwargs)

    def to_json(self, **kwargs) -> str:
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        return cls(**json.loads(json_str))


# ============================================================================
# INPUT DTOs
# ============================================================================

class EntryRequestDTO(BaseDTO):
    """Vehicle entry request"""
    plate: str
    category: VehicleCategory

    @field_validator('plate')
    @classmethod
    def validate_plate(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Plate number is required")
        return v

    @field_validator('category', mode='before')
    @classmethod
    def parse_category(cls, v: Any) -> VehicleCategory:
        return VehicleCategory.parse(v)


class ExitRequestDTO(BaseDTO):
    """Vehicle exit request with the tendered payment"""
    ticket_id: str
    paid_amount: Decimal = Field(ge=0)
    method: str = "CASH"

    @field_validator('ticket_id', 'method')
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Value cannot be blank")
        return v


# ============================================================================
# OUTPUT DTOs
# ============================================================================

class TariffDTO(BaseDTO):
    rate_per_hour: Decimal
    grace_minutes: int

    @classmethod
    def from_tariff(cls, tariff: GracePeriodTariff) -> 'TariffDTO':
        return cls(rate_per_hour=tariff.rate_per_hour, grace_minutes=tariff.grace_minutes)


class TicketDTO(BaseDTO):
    ticket_id: str
    plate: str
    category: str
    spot_id: int
    entry_time: datetime
    exit_time: Optional[datetime] = None
    fee: Optional[Decimal] = None

    @property
    def is_open(self) -> bool:
        return self.exit_time is None

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> 'TicketDTO':
        return cls(
            ticket_id=ticket.id,
            plate=ticket.vehicle.plate,
            category=ticket.vehicle.category.name,
            spot_id=ticket.spot_id,
            entry_time=ticket.entry_time,
            exit_time=ticket.exit_time,
            fee=ticket.fee
        )


class PaymentDTO(BaseDTO):
    payment_id: str
    ticket_id: str
    amount: Decimal
    paid_at: datetime
    method: str

    @classmethod
    def from_payment(cls, payment: Payment) -> 'PaymentDTO':
        return cls(
            payment_id=payment.id,
            ticket_id=payment.ticket_id,
            amount=payment.amount,
            paid_at=payment.paid_at,
            method=payment.method
        )


class FeeQuoteDTO(BaseDTO):
    """Amount due if the vehicle left now"""
    ticket: TicketDTO
    quoted_at: datetime
    duration_minutes: int
    amount_due: Decimal
    tariff: TariffDTO


class ExitReceiptDTO(BaseDTO):
    """
    Result of a successful exit
    change is reporting only; it is never stored.
    """
    ticket: TicketDTO
    payment: PaymentDTO
    duration_minutes: int
    amount_due: Decimal
    amount_paid: Decimal
    change: Decimal


class SpotStatusDTO(BaseDTO):
    spot_id: int
    spot_type: str
    occupied: bool
    ticket_id: Optional[str] = None
    plate: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_spot(cls, spot: Spot, ticket: Optional[Ticket] = None) -> 'SpotStatusDTO':
        return cls(
            spot_id=spot.id,
            spot_type=spot.spot_type.name,
            occupied=not spot.is_available,
            ticket_id=spot.occupied_by,
            plate=ticket.vehicle.plate if ticket else None,
            category=ticket.vehicle.category.name if ticket else None
        )


class OccupancySnapshotDTO(BaseDTO):
    total: int
    occupied: int
    free: int
    spots: List[SpotStatusDTO] = Field(default_factory=list)
    taken_at: datetime


class TicketListingDTO(BaseDTO):
    active: List[TicketDTO] = Field(default_factory=list)
    archived: List[TicketDTO] = Field(default_factory=list)


class RejectedSpotEntryDTO(BaseDTO):
    spot_type: str
    count: Any
    reason: str


class AddSpotsResultDTO(BaseDTO):
    """Outcome of a batch spot configuration; partial success is allowed"""
    created_spot_ids: List[int] = Field(default_factory=list)
    rejected: List[RejectedSpotEntryDTO] = Field(default_factory=list)

    @property
    def has_rejections(self) -> bool:
        return len(self.rejected) > 0
