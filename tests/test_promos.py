"""Unit tests for promo-code parsing and validation."""

from datetime import datetime, timedelta, timezone

import pytest

from ridesync.domain.enums import DiscountKind
from ridesync.domain.errors import (
    PromoBelowMinimum,
    PromoExpired,
    PromoInactive,
    PromoLimitReached,
    PromoNotApplicable,
)
from ridesync.domain.promos import PromoCode, normalize_code, parse_kind, validate_promo

NOW = datetime(2026, 3, 4, 4, 0, tzinfo=timezone.utc)


def promo(**overrides) -> PromoCode:
    fields = dict(
        code="SAVE20",
        kind=DiscountKind.PERCENTAGE,
        value=20,
        valid_from=NOW - timedelta(days=1),
        valid_to=NOW + timedelta(days=1),
    )
    fields.update(overrides)
    return PromoCode(**fields)


class TestParsing:
    def test_codes_are_case_insensitive(self):
        assert normalize_code("  save20 ") == "SAVE20"

    def test_kind_aliases(self):
        assert parse_kind("percentage") is DiscountKind.PERCENTAGE
        assert parse_kind("freeDelivery") is DiscountKind.FREE_DELIVERY
        assert parse_kind("bogo") == "bogo"

    def test_from_document(self):
        p = PromoCode.from_document(
            {
                "id": "abc",
                "code": "save20",
                "type": "percentage",
                "value": 20,
                "maxDiscount": 50,
                "minOrder": 100,
                "usageLimit": 10,
                "usedCount": 3,
                "isActive": True,
                "validFrom": "2026-03-01T00:00:00Z",
                "validTo": "2026-04-01T00:00:00+00:00",
                "applicableServices": ["rides", "food"],
            }
        )
        assert p.code == "SAVE20"
        assert p.kind is DiscountKind.PERCENTAGE
        assert p.max_discount == 50
        assert p.min_order == 100
        assert p.used_count == 3
        assert p.valid_from == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert p.applicable_services == ("rides", "food")

    def test_from_document_accepts_older_field_names(self):
        p = PromoCode.from_document(
            {
                "code": "OLD",
                "type": "fixed",
                "value": 25,
                "minOrderAmount": 150,
                "usageCount": 7,
                "validUntil": "2026-04-01T00:00:00Z",
                "applicableTo": ["rides"],
                "isActive": True,
            }
        )
        assert p.min_order == 150
        assert p.used_count == 7
        assert p.valid_to == datetime(2026, 4, 1, tzinfo=timezone.utc)
        assert p.applicable_services == ("rides",)

    def test_missing_active_flag_means_inactive(self):
        p = PromoCode.from_document({"code": "X", "type": "fixed", "value": 5})
        assert p.is_active is False

    def test_document_round_trip_drops_unset_fields(self):
        doc = promo(max_discount=None).to_document()
        assert "maxDiscount" not in doc
        assert doc["type"] == "percentage"
        assert PromoCode.from_document(doc) == promo(max_discount=None)


class TestValidation:
    def test_valid_promo_is_returned(self):
        p = promo()
        assert validate_promo(p, NOW, "rides", 80) is p

    def test_inactive(self):
        with pytest.raises(PromoInactive):
            validate_promo(promo(is_active=False), NOW)

    def test_not_yet_valid(self):
        with pytest.raises(PromoExpired):
            validate_promo(promo(valid_from=NOW + timedelta(hours=1)), NOW)

    def test_expired(self):
        with pytest.raises(PromoExpired):
            validate_promo(promo(valid_to=NOW - timedelta(seconds=1)), NOW)

    def test_window_bounds_are_inclusive(self):
        validate_promo(promo(valid_from=NOW), NOW)
        validate_promo(promo(valid_to=NOW), NOW)

    def test_open_ended_window(self):
        validate_promo(promo(valid_from=None, valid_to=None), NOW)

    def test_usage_limit_reached(self):
        with pytest.raises(PromoLimitReached):
            validate_promo(promo(usage_limit=10, used_count=10), NOW)

    def test_zero_usage_limit_means_unlimited(self):
        validate_promo(promo(usage_limit=0, used_count=99), NOW)

    def test_other_service_only(self):
        with pytest.raises(PromoNotApplicable):
            validate_promo(promo(applicable_services=("food",)), NOW, "rides")

    def test_below_minimum(self):
        with pytest.raises(PromoBelowMinimum) as exc:
            validate_promo(promo(min_order=100), NOW, "rides", 80)
        assert exc.value.details == {"min_order": 100}

    def test_minimum_not_checked_without_a_fare(self):
        validate_promo(promo(min_order=100), NOW, "rides", None)

    def test_minimum_is_inclusive(self):
        validate_promo(promo(min_order=80), NOW, "rides", 80)

    def test_first_failure_wins(self):
        stale = dict(valid_to=NOW - timedelta(days=2), usage_limit=1, used_count=1)
        with pytest.raises(PromoInactive):
            validate_promo(promo(is_active=False, **stale), NOW)
        with pytest.raises(PromoExpired):
            validate_promo(promo(**stale), NOW)
