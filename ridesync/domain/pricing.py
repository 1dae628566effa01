"""
Fare & Promo Engine  (Strategy Pattern)
=======================================

Formula
-------
Subtotal = max(Base + Km x Per_Km + Min x Per_Minute, Min_Fare)
Total    = round(round(Subtotal x Surge_Multiplier) - Discount)

* **Surge_Multiplier** = 1.0, x1.15 in the peak windows [06,09) and
  [17,20), x1.05 on Saturday / Sunday, rounded to 2 decimals.
* **Discount** is picked by the promo's kind (percentage / fixed /
  free delivery) and is always computed fresh from the surged subtotal,
  then clamped to ``[0, surged subtotal]``.

Rounding: components stay at full precision; the surged subtotal, the
discount and the total are rounded half-up to whole currency units.

Complexity: O(1) per fare.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Sequence

from .enums import DiscountKind
from .promos import PromoCode
from .vehicles import VehicleClass

logger = logging.getLogger(__name__)

SATURDAY, SUNDAY = 5, 6


def round_half_up(value: float, places: int = 0) -> float:
    """Round like a cashier does (2.5 -> 3), not like ``round`` (2.5 -> 2)."""
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return float(rounded)


# ── Value objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Fare:
    base: float
    distance: float
    time: float
    subtotal: float  # surged, pre-discount
    total: float
    surge: Optional[float] = None
    discount: Optional[float] = None

    def to_document(self) -> dict[str, Any]:
        """Fare breakdown with only the non-zero optional fields."""
        doc: dict[str, Any] = {
            "base": self.base,
            "distance": self.distance,
            "time": self.time,
            "total": self.total,
        }
        if self.surge:
            doc["surge"] = self.surge
        if self.discount:
            doc["discount"] = self.discount
        return doc


@dataclass(frozen=True)
class FareQuote:
    """A fare together with the inputs it was computed from."""

    vehicle_class: VehicleClass
    distance_m: float
    duration_s: float
    surge_multiplier: float
    fare: Fare
    promo: Optional[PromoCode] = None


# ── Discount strategies ───────────────────────────────────────────────


class DiscountStrategy(ABC):
    @abstractmethod
    def calculate(self, promo: PromoCode, subtotal: float) -> float: ...


class PercentageDiscount(DiscountStrategy):
    def calculate(self, promo: PromoCode, subtotal: float) -> float:
        discount = subtotal * promo.value / 100
        if promo.max_discount is not None:
            discount = min(discount, promo.max_discount)
        return discount


class FixedDiscount(DiscountStrategy):
    def calculate(self, promo: PromoCode, subtotal: float) -> float:
        return promo.value


class FreeDeliveryDiscount(DiscountStrategy):
    """The delivery-fee waiver applies to order subtotals, never ride fares."""

    def calculate(self, promo: PromoCode, subtotal: float) -> float:
        return 0.0


DISCOUNT_STRATEGIES: dict[DiscountKind, DiscountStrategy] = {
    DiscountKind.PERCENTAGE: PercentageDiscount(),
    DiscountKind.FIXED: FixedDiscount(),
    DiscountKind.FREE_DELIVERY: FreeDeliveryDiscount(),
}


# ── Engine facade ─────────────────────────────────────────────────────


class FareEngine:
    """High-level API used by the ride session and the API layer."""

    def __init__(
        self,
        peak_windows: Sequence[tuple[int, int]] = ((6, 9), (17, 20)),
        peak_multiplier: float = 1.15,
        weekend_multiplier: float = 1.05,
    ):
        self.peak_windows = tuple(peak_windows)
        self.peak_multiplier = peak_multiplier
        self.weekend_multiplier = weekend_multiplier

    def compute_surge_multiplier(self, now: datetime) -> float:
        """Time-of-day / weekend multiplier for the local wall-clock *now*."""
        multiplier = 1.0
        if any(start <= now.hour < end for start, end in self.peak_windows):
            multiplier *= self.peak_multiplier
        if now.weekday() in (SATURDAY, SUNDAY):
            multiplier *= self.weekend_multiplier
        return round_half_up(multiplier, 2)

    @staticmethod
    def compute_discount(promo: Optional[PromoCode], subtotal: float) -> float:
        if promo is None:
            return 0.0
        strategy = DISCOUNT_STRATEGIES.get(promo.kind)  # type: ignore[arg-type]
        if strategy is None:
            logger.warning(
                "Promo %s has unknown discount kind %r; no discount applied",
                promo.code,
                promo.kind,
            )
            return 0.0
        return strategy.calculate(promo, subtotal)

    def compute_fare(
        self,
        vehicle_class: VehicleClass,
        distance_m: float,
        duration_s: float,
        surge_multiplier: float = 1.0,
        promo: Optional[PromoCode] = None,
    ) -> Fare:
        """Price one trip.

        The surged subtotal and the discount are each rounded half-up to whole
        units; the total is their difference, never below zero.  Only
        percentage promos are capped by ``max_discount``.
        """
        base = vehicle_class.base_fare
        distance = distance_m / 1000 * vehicle_class.per_km
        time = duration_s / 60 * vehicle_class.per_minute
        raw_subtotal = max(base + distance + time, vehicle_class.min_fare)

        subtotal = round_half_up(raw_subtotal * surge_multiplier)
        surge = subtotal - round_half_up(raw_subtotal)

        discount = round_half_up(self.compute_discount(promo, subtotal))
        discount = min(max(discount, 0.0), subtotal)

        return Fare(
            base=base,
            distance=distance,
            time=time,
            subtotal=subtotal,
            total=round_half_up(subtotal - discount),
            surge=surge if surge > 0 else None,
            discount=discount if discount > 0 else None,
        )

    def quote(
        self,
        vehicle_class: VehicleClass,
        distance_m: float,
        duration_s: float,
        surge_multiplier: float = 1.0,
        promo: Optional[PromoCode] = None,
    ) -> FareQuote:
        fare = self.compute_fare(
            vehicle_class, distance_m, duration_s, surge_multiplier, promo
        )
        return FareQuote(
            vehicle_class, distance_m, duration_s, surge_multiplier, fare, promo
        )

    def with_promo(self, quote: FareQuote, promo: Optional[PromoCode]) -> FareQuote:
        """Recompute *quote* from its inputs with *promo* (or none)."""
        fare = self.compute_fare(
            quote.vehicle_class,
            quote.distance_m,
            quote.duration_s,
            quote.surge_multiplier,
            promo,
        )
        return replace(quote, fare=fare, promo=promo)

    def remove_promo(self, quote: FareQuote) -> Fare:
        return self.with_promo(quote, None).fare
