"""Effective unit prices for customer and supplier product pairs.

Customer prices resolve by precedence: a customer-specific override wins over
the product's default price. Supplier prices resolve by recency: the active
entry with the latest effective date is the current rate.

All functions are pure reads over the :class:`~milk_center.data_manager.DataStore`
passed in by the caller.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from . import log
from .data_manager import (
    CustomerProductRateRecord,
    DataStore,
    ProductRecord,
    SupplierProductRateRecord,
)
from .exceptions import MissingReferenceError


def _find_customer_override(
    store: DataStore, customer_id: str, product_id: str
) -> Optional[CustomerProductRateRecord]:
    # The first matching override wins; its effective date is not consulted.
    for rate in store.customer_product_rates:
        if rate.customer_id == customer_id and rate.product_id == product_id:
            return rate
    return None


def _find_product(store: DataStore, product_id: str) -> Optional[ProductRecord]:
    for product in store.products:
        if product.product_id == product_id:
            return product
    return None


def lookup_customer_rate(store: DataStore, customer_id: str, product_id: str) -> Optional[Decimal]:
    """Return the customer's effective rate, or ``None`` when nothing is configured.

    Args:
        store (DataStore): Collections holding overrides and products.
        customer_id (str): Customer being billed.
        product_id (str): Product being priced.

    Returns:
        Decimal | None: The override rate when one exists, otherwise the
            product's default price, otherwise ``None`` for an unknown product.
    """

    override = _find_customer_override(store, customer_id, product_id)
    if override is not None:
        return override.rate
    product = _find_product(store, product_id)
    return product.price if product is not None else None


def resolve_customer_rate(
    store: DataStore, customer_id: str, product_id: str, *, strict: bool = False
) -> Decimal:
    """Return the unit price a customer pays for a product.

    An unknown product without an override degrades to ``Decimal("0")``. This
    keeps historical ledgers readable after a product is deleted; callers that
    would rather fail pass ``strict=True``.

    Args:
        store (DataStore): Collections holding overrides and products.
        customer_id (str): Customer being billed.
        product_id (str): Product being priced.
        strict (bool): Raise instead of degrading to zero.

    Returns:
        Decimal: Effective unit rate.

    Raises:
        MissingReferenceError: If ``strict`` is set and neither an override nor
            the product exists.
    """

    rate = lookup_customer_rate(store, customer_id, product_id)
    if rate is not None:
        return rate
    if strict:
        log.warning("No rate available for customer '%s' and product '%s'", customer_id, product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    log.debug("Product '%s' not found; billing customer '%s' at zero", product_id, customer_id)
    return Decimal("0")


def get_customer_product_rates(store: DataStore, customer_id: str) -> List[CustomerProductRateRecord]:
    return [rate for rate in store.customer_product_rates if rate.customer_id == customer_id]


def get_supplier_rate_history(
    store: DataStore, supplier_id: str, product_id: str
) -> List[SupplierProductRateRecord]:
    """Return every rate entry for the pair, newest effective date first.

    Inactive entries are included. Entries sharing an effective date keep
    their insertion order because the sort is stable.
    """

    matches = [
        rate
        for rate in store.supplier_product_rates
        if rate.supplier_id == supplier_id and rate.product_id == product_id
    ]
    return sorted(matches, key=lambda rate: rate.effective_date, reverse=True)


def resolve_supplier_rate(store: DataStore, supplier_id: str, product_id: str) -> Optional[Decimal]:
    """Return the supplier's current rate, or ``None`` when none is configured.

    The current rate is the active entry with the latest effective date. On a
    tie the entry inserted first wins.
    """

    for rate in get_supplier_rate_history(store, supplier_id, product_id):
        if rate.is_active:
            return rate.rate
    return None


def get_supplier_product_rates(store: DataStore, supplier_id: str) -> List[SupplierProductRateRecord]:
    """Active rate entries for every product of a supplier."""

    return [
        rate
        for rate in store.supplier_product_rates
        if rate.supplier_id == supplier_id and rate.is_active
    ]
