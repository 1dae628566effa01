"""
Promo codes and their usability rules.

Validation order (first failure wins) once the code has been found:
inactive -> outside validity window -> usage limit reached -> service not
covered -> subtotal below minimum order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from .entities import parse_timestamp
from .enums import DiscountKind
from .errors import (
    PromoBelowMinimum,
    PromoExpired,
    PromoInactive,
    PromoLimitReached,
    PromoNotApplicable,
)

RIDES_SERVICE = "rides"

# Older documents spell the waiver kind in camelCase
_KIND_ALIASES = {"freeDelivery": DiscountKind.FREE_DELIVERY}


def normalize_code(code: str) -> str:
    return code.strip().upper()


def parse_kind(raw: Any) -> Union[DiscountKind, str]:
    """Known kinds become ``DiscountKind``; anything else stays a raw string."""
    if raw in _KIND_ALIASES:
        return _KIND_ALIASES[raw]
    try:
        return DiscountKind(raw)
    except ValueError:
        return str(raw)


@dataclass(frozen=True)
class PromoCode:
    code: str
    kind: Union[DiscountKind, str]
    value: float
    max_discount: Optional[float] = None
    min_order: Optional[float] = None
    usage_limit: Optional[int] = None
    used_count: int = 0
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    applicable_services: tuple[str, ...] = (RIDES_SERVICE,)

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> PromoCode:
        def first(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        return cls(
            code=normalize_code(data["code"]),
            kind=parse_kind(data.get("type")),
            value=float(data.get("value", 0)),
            max_discount=first("maxDiscount"),
            min_order=first("minOrder", "minOrderAmount"),
            usage_limit=first("usageLimit"),
            used_count=int(first("usedCount", "usageCount") or 0),
            is_active=bool(data.get("isActive", False)),
            valid_from=parse_timestamp(first("validFrom")),
            valid_to=parse_timestamp(first("validTo", "validUntil")),
            applicable_services=tuple(
                first("applicableServices", "applicableTo") or ()
            ),
        )

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "code": self.code,
            "type": self.kind.value if isinstance(self.kind, DiscountKind) else self.kind,
            "value": self.value,
            "maxDiscount": self.max_discount,
            "minOrder": self.min_order,
            "usageLimit": self.usage_limit,
            "usedCount": self.used_count,
            "isActive": self.is_active,
            "validFrom": self.valid_from,
            "validTo": self.valid_to,
            "applicableServices": list(self.applicable_services),
        }
        return {k: v for k, v in doc.items() if v is not None}


def validate_promo(
    promo: PromoCode,
    now: datetime,
    service: str = RIDES_SERVICE,
    subtotal: Optional[float] = None,
) -> PromoCode:
    """Return *promo* if usable for *service* at *now*, else raise.

    ``subtotal`` is the pre-discount (surged) fare, when one exists.
    """
    if not promo.is_active:
        raise PromoInactive("This promo code is no longer active")

    if (promo.valid_from and now < promo.valid_from) or (
        promo.valid_to and now > promo.valid_to
    ):
        raise PromoExpired("This promo code has expired")

    if promo.usage_limit and promo.used_count >= promo.usage_limit:
        raise PromoLimitReached("This promo code has reached its usage limit")

    if service not in promo.applicable_services:
        raise PromoNotApplicable(f"This promo code is not valid for {service}")

    if promo.min_order and subtotal is not None and subtotal < promo.min_order:
        raise PromoBelowMinimum(
            f"Minimum fare of {promo.min_order:g} required",
            {"min_order": promo.min_order},
        )

    return promo
