# File: parkgarage/domain/strategies.py
"""
Strategy Pattern Implementation for the Parking Garage

Two families of interchangeable rules live here:
1. Pricing Strategies - turn elapsed minutes into a fee (GracePeriodTariff)
2. Compatibility Policies - map a vehicle category to the spot types it may
   use, most preferred first (CompatibilityPolicy)

Both are plain data plus pure functions, so the inventory and the service
can be handed a different strategy without any code change.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_CEILING, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .models import SpotType, VehicleCategory


CENT = Decimal('0.01')


def to_amount(value: Any) -> Decimal:
    """
    Convert an int/float/str/Decimal into a Decimal amount
    Floats go through str() so 46.67 stays 46.67.
    Raises: ValueError for anything that is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount


# ============================================================================
# PRICING STRATEGIES
# ============================================================================

class PricingStrategy(ABC):
    """
    Abstract base class for pricing strategies
    Defines the interface for fee calculation algorithms
    """

    @abstractmethod
    def compute_fee(self, duration_minutes: int) -> Decimal:
        """
        Calculate the fee for a stay of the given length
        Returns: non-negative amount, a multiple of 0.01
        """

    def describe(self) -> str:
        return self.__class__.__name__


class GracePeriodTariff(PricingStrategy):
    """
    Strategy: flat hourly rate billed per minute after a free grace period

    - Stays up to and including grace_minutes are free
    - Longer stays pay duration * rate / 60 for the whole duration
    - The result is rounded up to the next cent, never down
    """

    def __init__(self, rate_per_hour: Any, grace_minutes: int):
        rate = to_amount(rate_per_hour)
        if rate < Decimal('0'):
            raise ValueError("Rate per hour cannot be negative")
        if isinstance(grace_minutes, bool) or not isinstance(grace_minutes, int):
            raise ValueError(f"Grace minutes must be an integer, got {grace_minutes!r}")
        if grace_minutes < 0:
            raise ValueError("Grace minutes cannot be negative")

        self._rate_per_hour = rate
        self._grace_minutes = grace_minutes

    @property
    def rate_per_hour(self) -> Decimal:
        return self._rate_per_hour

    @property
    def grace_minutes(self) -> int:
        return self._grace_minutes

    def compute_fee(self, duration_minutes: int) -> Decimal:
        if duration_minutes < 0:
            raise ValueError(f"Duration cannot be negative: {duration_minutes}")
        if duration_minutes <= self._grace_minutes:
            return Decimal('0.00')

        # multiply before dividing so exact results stay exact
        raw = Decimal(duration_minutes) * self._rate_per_hour / Decimal(60)
        return raw.quantize(CENT, rounding=ROUND_CEILING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rate_per_hour": str(self._rate_per_hour),
            "grace_minutes": self._grace_minutes,
        }

    def describe(self) -> str:
        return f"Tariff: {self._rate_per_hour:.2f} per hour, {self._grace_minutes} min grace"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GracePeriodTariff):
            return NotImplemented
        return (self._rate_per_hour, self._grace_minutes) == (other._rate_per_hour, other._grace_minutes)

    def __hash__(self) -> int:
        return hash((self._rate_per_hour, self._grace_minutes))

    def __repr__(self) -> str:
        return f"GracePeriodTariff(rate_per_hour={self._rate_per_hour}, grace_minutes={self._grace_minutes})"


# ============================================================================
# COMPATIBILITY POLICIES
# ============================================================================

DEFAULT_PREFERENCES: Dict[VehicleCategory, Tuple[SpotType, ...]] = {
    VehicleCategory.MOTORBIKE: (SpotType.MOTORBIKE, SpotType.COMPACT, SpotType.REGULAR),
    VehicleCategory.TRUCK: (SpotType.LARGE,),
    VehicleCategory.VAN: (SpotType.REGULAR,),
    VehicleCategory.CAR: (SpotType.COMPACT, SpotType.REGULAR, SpotType.LARGE),
}

DEFAULT_FALLBACK: Tuple[SpotType, ...] = (SpotType.HANDICAPPED,)


class CompatibilityPolicy:
    """
    Lookup table from vehicle category to acceptable spot types

    Any category missing from the table gets the CAR preferences.
    Fallback types are tried for every category once the preferences are
    exhausted; by default that is HANDICAPPED, with no permit check.
    """

    def __init__(
        self,
        preferences: Optional[Mapping[VehicleCategory, Sequence[SpotType]]] = None,
        fallback: Sequence[SpotType] = DEFAULT_FALLBACK,
        default_category: VehicleCategory = VehicleCategory.CAR
    ):
        table = preferences if preferences is not None else DEFAULT_PREFERENCES
        self._preferences: Dict[VehicleCategory, Tuple[SpotType, ...]] = {
            category: tuple(types) for category, types in table.items()
        }
        self._fallback = tuple(fallback)
        self._default = self._preferences.get(default_category, ())

    def preferred_spot_types(self, category: VehicleCategory) -> Tuple[SpotType, ...]:
        """Ordered spot types for the category, most preferred first"""
        return self._preferences.get(category, self._default)

    @property
    def fallback_spot_types(self) -> Tuple[SpotType, ...]:
        return self._fallback

    def search_order(self, category: VehicleCategory) -> Tuple[SpotType, ...]:
        """Preferences followed by fallback types not already listed"""
        preferred = self.preferred_spot_types(category)
        extra = tuple(t for t in self._fallback if t not in preferred)
        return preferred + extra
