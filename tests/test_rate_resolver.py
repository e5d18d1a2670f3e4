"""Unit tests for customer and supplier rate resolution."""

from __future__ import annotations

from decimal import Decimal

import pytest

from milk_center import rate_resolver
from milk_center.data_manager import (
    CustomerProductRateRecord,
    SupplierProductRateRecord,
    parse_date,
)
from milk_center.exceptions import MissingReferenceError


def _supplier_rate(rate_id: str, rate: str, effective: str, *, active: bool = True, product_id: str = "P1"):
    return SupplierProductRateRecord(
        rate_id=rate_id,
        supplier_id="S1",
        product_id=product_id,
        rate=Decimal(rate),
        effective_date=parse_date(effective),
        is_active=active,
    )


# ---------------------------------------------------------------------------
# Customer rates
# ---------------------------------------------------------------------------


def test_customer_override_wins_over_product_price(dairy_store):
    assert rate_resolver.resolve_customer_rate(dairy_store, "C1", "P1") == Decimal("45.00")


def test_product_price_used_without_override(dairy_store):
    assert rate_resolver.resolve_customer_rate(dairy_store, "C2", "P1") == Decimal("50.00")
    assert rate_resolver.resolve_customer_rate(dairy_store, "C1", "P2") == Decimal("30.00")


def test_unknown_product_resolves_to_zero(dairy_store):
    assert rate_resolver.resolve_customer_rate(dairy_store, "C1", "P404") == Decimal("0")


def test_override_still_applies_after_product_is_removed(dairy_store):
    dairy_store.products[:] = [product for product in dairy_store.products if product.product_id != "P1"]

    assert rate_resolver.resolve_customer_rate(dairy_store, "C1", "P1") == Decimal("45.00")
    assert rate_resolver.resolve_customer_rate(dairy_store, "C2", "P1") == Decimal("0")


def test_strict_mode_raises_for_unknown_product(dairy_store):
    with pytest.raises(MissingReferenceError):
        rate_resolver.resolve_customer_rate(dairy_store, "C1", "P404", strict=True)


def test_lookup_customer_rate_distinguishes_missing_from_zero(dairy_store):
    assert rate_resolver.lookup_customer_rate(dairy_store, "C1", "P404") is None
    assert rate_resolver.lookup_customer_rate(dairy_store, "C1", "P1") == Decimal("45.00")


def test_first_matching_override_wins_regardless_of_effective_date(dairy_store):
    """Overrides are not effective-dated: the first stored match is used."""

    dairy_store.customer_product_rates.append(
        CustomerProductRateRecord("CPR2", "C1", "P1", Decimal("40.00"), parse_date("2024-06-01"))
    )

    assert rate_resolver.resolve_customer_rate(dairy_store, "C1", "P1") == Decimal("45.00")


def test_get_customer_product_rates_filters_by_customer(dairy_store):
    rates = rate_resolver.get_customer_product_rates(dairy_store, "C1")
    assert [rate.rate_id for rate in rates] == ["CPR1"]
    assert rate_resolver.get_customer_product_rates(dairy_store, "C2") == []


# ---------------------------------------------------------------------------
# Supplier rates
# ---------------------------------------------------------------------------


def test_supplier_rate_is_latest_active_entry(dairy_store):
    dairy_store.supplier_product_rates.extend(
        [
            _supplier_rate("R1", "40", "2024-01-01"),
            _supplier_rate("R2", "42", "2024-03-01"),
            _supplier_rate("R3", "44", "2024-02-01"),
        ]
    )

    assert rate_resolver.resolve_supplier_rate(dairy_store, "S1", "P1") == Decimal("42")


def test_supplier_rate_skips_inactive_entries(dairy_store):
    dairy_store.supplier_product_rates.extend(
        [
            _supplier_rate("R1", "40", "2024-01-01"),
            _supplier_rate("R2", "42", "2024-03-01", active=False),
        ]
    )

    assert rate_resolver.resolve_supplier_rate(dairy_store, "S1", "P1") == Decimal("40")


def test_supplier_rate_none_when_not_configured(dairy_store):
    assert rate_resolver.resolve_supplier_rate(dairy_store, "S1", "P1") is None
    dairy_store.supplier_product_rates.append(_supplier_rate("R1", "40", "2024-01-01", active=False))
    assert rate_resolver.resolve_supplier_rate(dairy_store, "S1", "P1") is None


def test_supplier_rate_tie_prefers_first_inserted(dairy_store):
    dairy_store.supplier_product_rates.extend(
        [
            _supplier_rate("R1", "41", "2024-03-01"),
            _supplier_rate("R2", "43", "2024-03-01"),
        ]
    )

    assert rate_resolver.resolve_supplier_rate(dairy_store, "S1", "P1") == Decimal("41")


def test_rate_history_is_newest_first_and_includes_inactive(dairy_store):
    dairy_store.supplier_product_rates.extend(
        [
            _supplier_rate("R1", "40", "2024-01-01"),
            _supplier_rate("R2", "42", "2024-03-01", active=False),
            _supplier_rate("R3", "44", "2024-02-01"),
            _supplier_rate("R4", "99", "2024-04-01", product_id="P2"),
        ]
    )

    history = rate_resolver.get_supplier_rate_history(dairy_store, "S1", "P1")

    assert [rate.rate_id for rate in history] == ["R2", "R3", "R1"]


def test_supplier_product_rates_lists_active_entries_only(dairy_store):
    dairy_store.supplier_product_rates.extend(
        [
            _supplier_rate("R1", "40", "2024-01-01"),
            _supplier_rate("R2", "42", "2024-03-01", active=False),
            _supplier_rate("R3", "20", "2024-02-01", product_id="P2"),
        ]
    )

    rates = rate_resolver.get_supplier_product_rates(dairy_store, "S1")

    assert [rate.rate_id for rate in rates] == ["R1", "R3"]
