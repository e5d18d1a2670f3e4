"""Business logic layer for Milk Center.

This module owns the runtime context and every mutation of the in-memory
collections: master data, daily orders, customer and supplier payments, and
stock receipts. Payment and stock-receipt events keep the running
``outstanding_balance`` of the affected customer or supplier in step.

Every mutation updates the :class:`~milk_center.data_manager.DataStore` first
and then writes the touched collections back through the data access layer.
The writes are not transactional; a failed write leaves the stored copy
behind the in-memory one.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from . import configure_file_logging, data_manager, log, rate_resolver
from .constants import EXPECTED_SCHEMA_VERSION, PaymentMethod, StorageKey
from .data_manager import (
    CustomerProductRateRecord,
    CustomerRecord,
    DataStore,
    OrderItemRecord,
    OrderRecord,
    PaymentRecord,
    ProductRecord,
    StockEntryItemRecord,
    StockEntryRecord,
    StockRecord,
    SupplierPaymentRecord,
    SupplierProductRateRecord,
    SupplierRecord,
)
from .exceptions import BusinessRuleViolation, MissingReferenceError


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the backing store, and loaded collections."""

    settings: data_manager.ConfigSettings
    kv_store: data_manager.KeyValueStore
    data: DataStore


@dataclass(frozen=True)
class OrderCommand:
    """User intent for entering a day's order batch."""

    order_date: date | str
    items: Sequence[OrderItemRecord]
    vehicle_id: Optional[str] = None
    salesman_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for recording money received from a customer."""

    customer_id: str
    amount: Decimal
    payment_date: Optional[date | str] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PaymentPatch:
    """Partial update for a customer payment; ``None`` leaves a field as is."""

    amount: Optional[Decimal] = None
    payment_date: Optional[date | str] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class SupplierPaymentCommand:
    """User intent for recording money paid to a supplier."""

    supplier_id: str
    amount: Decimal
    payment_date: Optional[date | str] = None
    payment_method: Optional[PaymentMethod] = None
    invoice_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class SupplierPaymentPatch:
    amount: Optional[Decimal] = None
    payment_date: Optional[date | str] = None
    payment_method: Optional[PaymentMethod] = None
    invoice_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class StockEntryCommand:
    """User intent for goods received from a supplier on credit.

    ``total_amount`` defaults to the sum of ``quantity * rate`` over the items.
    """

    supplier_id: str
    items: Sequence[StockEntryItemRecord]
    entry_date: Optional[date | str] = None
    total_amount: Optional[Decimal] = None
    invoice_number: Optional[str] = None


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and every stored collection.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context backed by a :class:`FileKeyValueStore` rooted at
            the configured data directory.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
        ValueError: If a stored collection cannot be decoded.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    configure_file_logging(settings.log_dir or settings.data_dir / "logs")
    kv_store = data_manager.FileKeyValueStore(settings.data_dir)
    data = data_manager.load_data_store(kv_store)
    log.info("Loaded runtime context from '%s'", settings.data_dir)
    return RuntimeContext(settings=settings, kv_store=kv_store, data=data)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate that the configured schema version matches the code.

    Raises:
        RuntimeError: If ``SchemaVersion`` in ``config.ini`` differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Data schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Data schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload every collection from storage, discarding in-memory state."""
    data = data_manager.load_data_store(context.kv_store)
    log.info("Reloaded collections from storage")
    return RuntimeContext(settings=context.settings, kv_store=context.kv_store, data=data)


def _persist(context: RuntimeContext, *keys: StorageKey) -> None:
    data_manager.save_collections(context.kv_store, context.data, keys)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_record_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier such as ``PAY20240501093000123456``."""
    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def _new_id(prefix: str, existing: Iterable[str]) -> str:
    taken = set(existing)
    candidate = generate_record_id(prefix=prefix)
    # Identifiers only carry microseconds; bump until unused.
    suffix = 1
    base = candidate
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def _today() -> date:
    return datetime.now().date()


def _resolve_date(candidate: Optional[date | str]) -> date:
    return data_manager.parse_date(candidate) if candidate is not None else _today()


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is not finite, or is zero or negative.
    """
    if not quantity.is_finite() or quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_positive_money(amount: Decimal) -> None:
    """Validate that a payment amount is strictly positive.

    Raises:
        ValueError: If ``amount`` is not finite, or is zero or negative.
    """
    if not amount.is_finite() or amount <= Decimal("0"):
        log.error("Payment amount validation failed: %s", amount)
        raise ValueError("Amount must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is zero or positive.

    Raises:
        ValueError: If ``amount`` is not finite or is less than zero.
    """
    if not amount.is_finite() or amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def _index_of(records: Sequence[Any], attribute: str, value: str) -> Optional[int]:
    for index, record in enumerate(records):
        if getattr(record, attribute) == value:
            return index
    return None


def _patched(record: Any, field_values: Mapping[str, Any], *, id_field: str) -> Any:
    """Return ``record`` with ``field_values`` applied.

    Values for ``Decimal`` fields go through :func:`data_manager.to_decimal`,
    so ints, floats and numeric strings are stored as decimals.

    Raises:
        KeyError: If a field is unknown or attempts to change the identifier.
        ValueError: If a decimal field receives a non-numeric, non-finite or
            missing value.
    """
    allowed = {item.name: item for item in fields(record) if item.name != id_field}
    values = {}
    for name, value in field_values.items():
        if name not in allowed:
            raise KeyError(f"Unknown or read-only field: {name}")
        annotation = str(allowed[name].type)
        if "Decimal" in annotation:
            value = data_manager.to_decimal(value, default=None)
            if value is None and "Optional" not in annotation:
                raise ValueError(f"Field {name} requires a numeric value")
        values[name] = value
    return replace(record, **values)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_customer(context: RuntimeContext, customer_id: str) -> CustomerRecord:
    """Resolve a customer by identifier.

    Raises:
        MissingReferenceError: If ``customer_id`` is unknown.
    """
    index = _index_of(context.data.customers, "customer_id", customer_id)
    if index is None:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}")
    return context.data.customers[index]


def get_product(context: RuntimeContext, product_id: str) -> ProductRecord:
    """Resolve a product by identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """
    index = _index_of(context.data.products, "product_id", product_id)
    if index is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}")
    return context.data.products[index]


def get_supplier(context: RuntimeContext, supplier_id: str) -> SupplierRecord:
    """Resolve a supplier by identifier.

    Raises:
        MissingReferenceError: If ``supplier_id`` is unknown.
    """
    index = _index_of(context.data.suppliers, "supplier_id", supplier_id)
    if index is None:
        log.warning("Supplier lookup failed for id '%s'", supplier_id)
        raise MissingReferenceError(f"Unknown supplier id: {supplier_id}")
    return context.data.suppliers[index]


def get_order(context: RuntimeContext, order_id: str) -> OrderRecord:
    index = _index_of(context.data.orders, "order_id", order_id)
    if index is None:
        log.warning("Order lookup failed for id '%s'", order_id)
        raise MissingReferenceError(f"Unknown order id: {order_id}")
    return context.data.orders[index]


def get_payment(context: RuntimeContext, payment_id: str) -> PaymentRecord:
    index = _index_of(context.data.payments, "payment_id", payment_id)
    if index is None:
        log.warning("Payment lookup failed for id '%s'", payment_id)
        raise MissingReferenceError(f"Unknown payment id: {payment_id}")
    return context.data.payments[index]


def get_supplier_payment(context: RuntimeContext, payment_id: str) -> SupplierPaymentRecord:
    index = _index_of(context.data.supplier_payments, "payment_id", payment_id)
    if index is None:
        log.warning("Supplier payment lookup failed for id '%s'", payment_id)
        raise MissingReferenceError(f"Unknown supplier payment id: {payment_id}")
    return context.data.supplier_payments[index]


def list_customers(context: RuntimeContext) -> List[CustomerRecord]:
    return list(context.data.customers)


def list_products(context: RuntimeContext) -> List[ProductRecord]:
    return list(context.data.products)


def list_suppliers(context: RuntimeContext) -> List[SupplierRecord]:
    return list(context.data.suppliers)


# ---------------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------------


def add_customer(
    context: RuntimeContext,
    *,
    name: str,
    phone: str = "",
    address: str = "",
    email: Optional[str] = None,
    outstanding_balance: Decimal = Decimal("0"),
    area: Optional[str] = None,
    customer_id: Optional[str] = None,
) -> CustomerRecord:
    """Register a customer, optionally carrying over an existing balance.

    Raises:
        BusinessRuleViolation: If ``customer_id`` is already taken.
        ValueError: If ``name`` is blank.
    """
    if not name.strip():
        raise ValueError("Customer name must not be empty")
    existing_ids = [customer.customer_id for customer in context.data.customers]
    if customer_id is None:
        customer_id = _new_id("C", existing_ids)
    elif customer_id in existing_ids:
        raise BusinessRuleViolation(f"Customer '{customer_id}' already exists")

    customer = CustomerRecord(
        customer_id=customer_id,
        name=name.strip(),
        phone=phone,
        address=address,
        email=email,
        outstanding_balance=data_manager.to_decimal(outstanding_balance),
        area=area,
    )
    context.data.customers.append(customer)
    _persist(context, StorageKey.CUSTOMERS)
    log.info("Added customer '%s' (%s)", customer.customer_id, customer.name)
    return customer


def update_customer(
    context: RuntimeContext, customer_id: str, *, field_values: Mapping[str, Any]
) -> CustomerRecord:
    """Replace selected fields of a customer record.

    Raises:
        MissingReferenceError: If the customer is unknown.
        KeyError: If a field does not exist or is the identifier.
    """
    get_customer(context, customer_id)
    index = _index_of(context.data.customers, "customer_id", customer_id)
    updated = _patched(context.data.customers[index], field_values, id_field="customer_id")
    context.data.customers[index] = updated
    _persist(context, StorageKey.CUSTOMERS)
    log.info("Updated customer '%s' fields: %s", customer_id, ", ".join(field_values))
    return updated


def delete_customer(context: RuntimeContext, customer_id: str) -> None:
    """Remove a customer. Orders and payments referencing it are kept."""
    get_customer(context, customer_id)
    context.data.customers[:] = [
        customer for customer in context.data.customers if customer.customer_id != customer_id
    ]
    _persist(context, StorageKey.CUSTOMERS)
    log.info("Deleted customer '%s'", customer_id)


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    price: Decimal,
    unit: str = "",
    category: str = "",
    description: str = "",
    sku: str = "",
    min_stock_level: Optional[Decimal] = None,
    product_id: Optional[str] = None,
) -> ProductRecord:
    """Register a product with its default unit rate.

    Raises:
        BusinessRuleViolation: If ``product_id`` is already taken.
        ValueError: If the name is blank or the price is negative.
    """
    if not name.strip():
        raise ValueError("Product name must not be empty")
    price = data_manager.to_decimal(price)
    require_nonnegative_money(price)
    existing_ids = [product.product_id for product in context.data.products]
    if product_id is None:
        product_id = _new_id("P", existing_ids)
    elif product_id in existing_ids:
        raise BusinessRuleViolation(f"Product '{product_id}' already exists")

    product = ProductRecord(
        product_id=product_id,
        name=name.strip(),
        price=price,
        unit=unit,
        category=category,
        description=description,
        sku=sku,
        min_stock_level=min_stock_level,
    )
    context.data.products.append(product)
    _persist(context, StorageKey.PRODUCTS)
    log.info("Added product '%s' (%s) at %s", product.product_id, product.name, product.price)
    return product


def update_product(
    context: RuntimeContext, product_id: str, *, field_values: Mapping[str, Any]
) -> ProductRecord:
    get_product(context, product_id)
    index = _index_of(context.data.products, "product_id", product_id)
    updated = _patched(context.data.products[index], field_values, id_field="product_id")
    require_nonnegative_money(updated.price)
    context.data.products[index] = updated
    _persist(context, StorageKey.PRODUCTS)
    log.info("Updated product '%s' fields: %s", product_id, ", ".join(field_values))
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product. Historical orders keep their items; see the rate resolver."""
    get_product(context, product_id)
    context.data.products[:] = [
        product for product in context.data.products if product.product_id != product_id
    ]
    _persist(context, StorageKey.PRODUCTS)
    log.info("Deleted product '%s'", product_id)


def add_supplier(
    context: RuntimeContext,
    *,
    name: str,
    phone: str = "",
    address: str = "",
    email: Optional[str] = None,
    category: Optional[str] = None,
    outstanding_balance: Decimal = Decimal("0"),
    supplier_id: Optional[str] = None,
) -> SupplierRecord:
    if not name.strip():
        raise ValueError("Supplier name must not be empty")
    existing_ids = [supplier.supplier_id for supplier in context.data.suppliers]
    if supplier_id is None:
        supplier_id = _new_id("S", existing_ids)
    elif supplier_id in existing_ids:
        raise BusinessRuleViolation(f"Supplier '{supplier_id}' already exists")

    supplier = SupplierRecord(
        supplier_id=supplier_id,
        name=name.strip(),
        phone=phone,
        address=address,
        email=email,
        category=category,
        outstanding_balance=data_manager.to_decimal(outstanding_balance),
    )
    context.data.suppliers.append(supplier)
    _persist(context, StorageKey.SUPPLIERS)
    log.info("Added supplier '%s' (%s)", supplier.supplier_id, supplier.name)
    return supplier


def update_supplier(
    context: RuntimeContext, supplier_id: str, *, field_values: Mapping[str, Any]
) -> SupplierRecord:
    get_supplier(context, supplier_id)
    index = _index_of(context.data.suppliers, "supplier_id", supplier_id)
    updated = _patched(context.data.suppliers[index], field_values, id_field="supplier_id")
    context.data.suppliers[index] = updated
    _persist(context, StorageKey.SUPPLIERS)
    log.info("Updated supplier '%s' fields: %s", supplier_id, ", ".join(field_values))
    return updated


def delete_supplier(context: RuntimeContext, supplier_id: str) -> None:
    get_supplier(context, supplier_id)
    context.data.suppliers[:] = [
        supplier for supplier in context.data.suppliers if supplier.supplier_id != supplier_id
    ]
    _persist(context, StorageKey.SUPPLIERS)
    log.info("Deleted supplier '%s'", supplier_id)


# ---------------------------------------------------------------------------
# Rate configuration
# ---------------------------------------------------------------------------


def add_customer_product_rate(
    context: RuntimeContext,
    *,
    customer_id: str,
    product_id: str,
    rate: Decimal,
    effective_date: Optional[date | str] = None,
) -> CustomerProductRateRecord:
    """Store a customer-specific price override.

    Raises:
        MissingReferenceError: If the customer or product is unknown.
        ValueError: If ``rate`` is negative.
    """
    get_customer(context, customer_id)
    get_product(context, product_id)
    rate = data_manager.to_decimal(rate)
    require_nonnegative_money(rate)
    record = CustomerProductRateRecord(
        rate_id=_new_id("CPR", (item.rate_id for item in context.data.customer_product_rates)),
        customer_id=customer_id,
        product_id=product_id,
        rate=rate,
        effective_date=_resolve_date(effective_date),
    )
    context.data.customer_product_rates.append(record)
    _persist(context, StorageKey.CUSTOMER_PRODUCT_RATES)
    log.info("Set rate %s for customer '%s' on product '%s'", rate, customer_id, product_id)
    return record


def update_customer_product_rate(
    context: RuntimeContext, rate_id: str, *, field_values: Mapping[str, Any]
) -> CustomerProductRateRecord:
    index = _index_of(context.data.customer_product_rates, "rate_id", rate_id)
    if index is None:
        raise MissingReferenceError(f"Unknown customer rate id: {rate_id}")
    values = dict(field_values)
    if "effective_date" in values:
        values["effective_date"] = data_manager.parse_date(values["effective_date"])
    updated = _patched(context.data.customer_product_rates[index], values, id_field="rate_id")
    require_nonnegative_money(updated.rate)
    context.data.customer_product_rates[index] = updated
    _persist(context, StorageKey.CUSTOMER_PRODUCT_RATES)
    log.info("Updated customer rate '%s'", rate_id)
    return updated


def delete_customer_product_rate(context: RuntimeContext, rate_id: str) -> None:
    if _index_of(context.data.customer_product_rates, "rate_id", rate_id) is None:
        raise MissingReferenceError(f"Unknown customer rate id: {rate_id}")
    context.data.customer_product_rates[:] = [
        rate for rate in context.data.customer_product_rates if rate.rate_id != rate_id
    ]
    _persist(context, StorageKey.CUSTOMER_PRODUCT_RATES)
    log.info("Deleted customer rate '%s'", rate_id)


def add_supplier_product_rate(
    context: RuntimeContext,
    *,
    supplier_id: str,
    product_id: str,
    rate: Decimal,
    effective_date: Optional[date | str] = None,
    is_active: bool = True,
    remarks: Optional[str] = None,
) -> SupplierProductRateRecord:
    """Append an entry to a supplier's rate history.

    Raises:
        MissingReferenceError: If the supplier or product is unknown.
        ValueError: If ``rate`` is negative.
    """
    get_supplier(context, supplier_id)
    get_product(context, product_id)
    rate = data_manager.to_decimal(rate)
    require_nonnegative_money(rate)
    record = SupplierProductRateRecord(
        rate_id=_new_id("SPR", (item.rate_id for item in context.data.supplier_product_rates)),
        supplier_id=supplier_id,
        product_id=product_id,
        rate=rate,
        effective_date=_resolve_date(effective_date),
        is_active=is_active,
        remarks=remarks,
    )
    context.data.supplier_product_rates.append(record)
    _persist(context, StorageKey.SUPPLIER_PRODUCT_RATES)
    log.info(
        "Added supplier rate %s for '%s' on product '%s' effective %s",
        rate,
        supplier_id,
        product_id,
        record.effective_date,
    )
    return record


def update_supplier_product_rate(
    context: RuntimeContext, rate_id: str, *, field_values: Mapping[str, Any]
) -> SupplierProductRateRecord:
    index = _index_of(context.data.supplier_product_rates, "rate_id", rate_id)
    if index is None:
        raise MissingReferenceError(f"Unknown supplier rate id: {rate_id}")
    values = dict(field_values)
    if "effective_date" in values:
        values["effective_date"] = data_manager.parse_date(values["effective_date"])
    updated = _patched(context.data.supplier_product_rates[index], values, id_field="rate_id")
    require_nonnegative_money(updated.rate)
    context.data.supplier_product_rates[index] = updated
    _persist(context, StorageKey.SUPPLIER_PRODUCT_RATES)
    log.info("Updated supplier rate '%s'", rate_id)
    return updated


def delete_supplier_product_rate(context: RuntimeContext, rate_id: str) -> None:
    if _index_of(context.data.supplier_product_rates, "rate_id", rate_id) is None:
        raise MissingReferenceError(f"Unknown supplier rate id: {rate_id}")
    context.data.supplier_product_rates[:] = [
        rate for rate in context.data.supplier_product_rates if rate.rate_id != rate_id
    ]
    _persist(context, StorageKey.SUPPLIER_PRODUCT_RATES)
    log.info("Deleted supplier rate '%s'", rate_id)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def calculate_order_amount(store: DataStore, order: OrderRecord, customer_id: str) -> Decimal:
    """Bill the items of ``order`` that belong to ``customer_id``."""
    total = Decimal("0")
    for item in order.items:
        if item.customer_id == customer_id:
            total += item.quantity * rate_resolver.resolve_customer_rate(store, customer_id, item.product_id)
    return total


def _validate_order_items(context: RuntimeContext, items: Sequence[OrderItemRecord]) -> None:
    if not items:
        raise ValueError("An order needs at least one item")
    for item in items:
        get_customer(context, item.customer_id)
        get_product(context, item.product_id)
        require_positive_quantity(item.quantity)


def add_order(context: RuntimeContext, command: OrderCommand) -> OrderRecord:
    """Record an order batch.

    Orders never touch ``outstanding_balance``; billing is derived later by
    the ledger from the order history.

    Raises:
        MissingReferenceError: If an item references an unknown customer or
            product.
        ValueError: If there are no items or a quantity is not positive.
    """
    _validate_order_items(context, command.items)
    order = OrderRecord(
        order_id=_new_id("O", (order.order_id for order in context.data.orders)),
        order_date=data_manager.parse_date(command.order_date),
        items=tuple(command.items),
        vehicle_id=command.vehicle_id,
        salesman_id=command.salesman_id,
    )
    amounts = {
        customer_id: calculate_order_amount(context.data, order, customer_id)
        for customer_id in sorted({item.customer_id for item in order.items})
    }
    context.data.orders.append(order)
    _persist(context, StorageKey.ORDERS)
    log.info(
        "Recorded order '%s' dated %s with %d items for %d customers",
        order.order_id,
        order.order_date,
        len(order.items),
        len(amounts),
    )
    for customer_id, amount in amounts.items():
        log.debug("Order '%s' bills customer '%s' %s", order.order_id, customer_id, amount)
    return order


def update_order(
    context: RuntimeContext,
    order_id: str,
    *,
    order_date: Optional[date | str] = None,
    items: Optional[Sequence[OrderItemRecord]] = None,
) -> OrderRecord:
    get_order(context, order_id)
    index = _index_of(context.data.orders, "order_id", order_id)
    current = context.data.orders[index]
    if items is not None:
        _validate_order_items(context, items)
    updated = replace(
        current,
        order_date=data_manager.parse_date(order_date) if order_date is not None else current.order_date,
        items=tuple(items) if items is not None else current.items,
    )
    context.data.orders[index] = updated
    _persist(context, StorageKey.ORDERS)
    log.info("Updated order '%s'", order_id)
    return updated


def delete_order(context: RuntimeContext, order_id: str) -> None:
    """Remove an order. Customer balances are not adjusted."""
    get_order(context, order_id)
    context.data.orders[:] = [order for order in context.data.orders if order.order_id != order_id]
    _persist(context, StorageKey.ORDERS)
    log.info("Deleted order '%s'", order_id)


# ---------------------------------------------------------------------------
# Customer payments
# ---------------------------------------------------------------------------


def _adjust_customer_balance(
    context: RuntimeContext, customer_id: str, delta: Decimal, **extra: Any
) -> bool:
    """Add ``delta`` to a customer's balance; skip quietly for orphaned payments."""
    index = _index_of(context.data.customers, "customer_id", customer_id)
    if index is None:
        log.warning("Customer '%s' no longer exists; balance adjustment of %s skipped", customer_id, delta)
        return False
    customer = context.data.customers[index]
    context.data.customers[index] = replace(
        customer, outstanding_balance=customer.outstanding_balance + delta, **extra
    )
    log.debug(
        "Customer '%s' balance %s -> %s",
        customer_id,
        customer.outstanding_balance,
        context.data.customers[index].outstanding_balance,
    )
    return True


def record_payment(context: RuntimeContext, command: PaymentCommand) -> PaymentRecord:
    """Append a customer payment and reduce the customer's balance.

    The customer's ``last_payment_date`` and ``last_payment_amount`` are set
    from the payment. If the customer does not exist the payment is still
    stored and the balance adjustment is skipped.

    Args:
        context (RuntimeContext): Runtime context holding the collections.
        command (PaymentCommand): Payment details; a missing date means today
            and a missing method uses the configured default.

    Returns:
        PaymentRecord: Newly stored payment with a generated identifier.

    Raises:
        ValueError: If the amount is not positive or the date is malformed.
    """
    require_positive_money(command.amount)
    payment = PaymentRecord(
        payment_id=_new_id("PAY", (payment.payment_id for payment in context.data.payments)),
        customer_id=command.customer_id,
        amount=command.amount,
        payment_date=_resolve_date(command.payment_date),
        payment_method=command.payment_method or context.settings.default_payment_method,
        notes=command.notes,
    )
    context.data.payments.append(payment)
    adjusted = _adjust_customer_balance(
        context,
        payment.customer_id,
        -payment.amount,
        last_payment_date=payment.payment_date,
        last_payment_amount=payment.amount,
    )
    _persist(context, StorageKey.PAYMENTS, StorageKey.CUSTOMERS)
    log.info(
        "Recorded payment '%s' of %s from customer '%s'%s",
        payment.payment_id,
        payment.amount,
        payment.customer_id,
        "" if adjusted else " (no balance adjusted)",
    )
    return payment


def update_payment(context: RuntimeContext, payment_id: str, patch: PaymentPatch) -> PaymentRecord:
    """Apply ``patch`` to a stored payment and rebalance on amount changes.

    When the amount changes, ``new - old`` is subtracted from the customer's
    balance and the customer's last-payment fields are refreshed from the
    patched payment. Other fields are applied without touching the balance.

    Raises:
        MissingReferenceError: If ``payment_id`` is unknown.
        ValueError: If the patched amount is not positive.
    """
    old = get_payment(context, payment_id)
    if patch.amount is not None:
        require_positive_money(patch.amount)
    updated = replace(
        old,
        amount=patch.amount if patch.amount is not None else old.amount,
        payment_date=_resolve_date(patch.payment_date) if patch.payment_date is not None else old.payment_date,
        payment_method=patch.payment_method or old.payment_method,
        notes=patch.notes if patch.notes is not None else old.notes,
    )
    index = _index_of(context.data.payments, "payment_id", payment_id)
    context.data.payments[index] = updated

    touched = [StorageKey.PAYMENTS]
    if patch.amount is not None and patch.amount != old.amount:
        delta = patch.amount - old.amount
        _adjust_customer_balance(
            context,
            old.customer_id,
            -delta,
            last_payment_amount=updated.amount,
            last_payment_date=updated.payment_date,
        )
        touched.append(StorageKey.CUSTOMERS)
    _persist(context, *touched)
    log.info("Updated payment '%s' (amount %s -> %s)", payment_id, old.amount, updated.amount)
    return updated


def delete_payment(context: RuntimeContext, payment_id: str) -> None:
    """Reverse a payment's balance effect, then remove it.

    Raises:
        MissingReferenceError: If ``payment_id`` is unknown.
    """
    payment = get_payment(context, payment_id)
    _adjust_customer_balance(context, payment.customer_id, payment.amount)
    context.data.payments[:] = [item for item in context.data.payments if item.payment_id != payment_id]
    _persist(context, StorageKey.PAYMENTS, StorageKey.CUSTOMERS)
    log.info("Deleted payment '%s' of %s", payment_id, payment.amount)


# ---------------------------------------------------------------------------
# Supplier payments and stock receipts
# ---------------------------------------------------------------------------


def _adjust_supplier_balance(context: RuntimeContext, supplier_id: str, delta: Decimal) -> bool:
    index = _index_of(context.data.suppliers, "supplier_id", supplier_id)
    if index is None:
        log.warning("Supplier '%s' no longer exists; balance adjustment of %s skipped", supplier_id, delta)
        return False
    supplier = context.data.suppliers[index]
    context.data.suppliers[index] = replace(
        supplier, outstanding_balance=supplier.outstanding_balance + delta
    )
    return True


def record_supplier_payment(context: RuntimeContext, command: SupplierPaymentCommand) -> SupplierPaymentRecord:
    """Append a supplier payment and reduce what is owed to the supplier."""
    require_positive_money(command.amount)
    payment = SupplierPaymentRecord(
        payment_id=_new_id("SP", (payment.payment_id for payment in context.data.supplier_payments)),
        supplier_id=command.supplier_id,
        amount=command.amount,
        payment_date=_resolve_date(command.payment_date),
        payment_method=command.payment_method or context.settings.default_payment_method,
        invoice_number=command.invoice_number,
        notes=command.notes,
    )
    context.data.supplier_payments.append(payment)
    _adjust_supplier_balance(context, payment.supplier_id, -payment.amount)
    _persist(context, StorageKey.SUPPLIER_PAYMENTS, StorageKey.SUPPLIERS)
    log.info(
        "Recorded supplier payment '%s' of %s to '%s'",
        payment.payment_id,
        payment.amount,
        payment.supplier_id,
    )
    return payment


def update_supplier_payment(
    context: RuntimeContext, payment_id: str, patch: SupplierPaymentPatch
) -> SupplierPaymentRecord:
    old = get_supplier_payment(context, payment_id)
    if patch.amount is not None:
        require_positive_money(patch.amount)
    updated = replace(
        old,
        amount=patch.amount if patch.amount is not None else old.amount,
        payment_date=_resolve_date(patch.payment_date) if patch.payment_date is not None else old.payment_date,
        payment_method=patch.payment_method or old.payment_method,
        invoice_number=patch.invoice_number if patch.invoice_number is not None else old.invoice_number,
        notes=patch.notes if patch.notes is not None else old.notes,
    )
    index = _index_of(context.data.supplier_payments, "payment_id", payment_id)
    context.data.supplier_payments[index] = updated

    touched = [StorageKey.SUPPLIER_PAYMENTS]
    if patch.amount is not None and patch.amount != old.amount:
        _adjust_supplier_balance(context, old.supplier_id, -(patch.amount - old.amount))
        touched.append(StorageKey.SUPPLIERS)
    _persist(context, *touched)
    log.info("Updated supplier payment '%s' (amount %s -> %s)", payment_id, old.amount, updated.amount)
    return updated


def delete_supplier_payment(context: RuntimeContext, payment_id: str) -> None:
    payment = get_supplier_payment(context, payment_id)
    _adjust_supplier_balance(context, payment.supplier_id, payment.amount)
    context.data.supplier_payments[:] = [
        item for item in context.data.supplier_payments if item.payment_id != payment_id
    ]
    _persist(context, StorageKey.SUPPLIER_PAYMENTS, StorageKey.SUPPLIERS)
    log.info("Deleted supplier payment '%s' of %s", payment_id, payment.amount)


def _latest_stock_record(store: DataStore, product_id: str) -> Optional[StockRecord]:
    matches = [record for record in store.stock_records if record.product_id == product_id]
    if not matches:
        return None
    # Latest date wins; among same-day records the last one appended wins.
    return max(reversed(matches), key=lambda record: record.record_date)


def current_stock(context: RuntimeContext, product_id: str) -> Decimal:
    """Closing stock of the latest stock record for a product (0 if none)."""
    latest = _latest_stock_record(context.data, product_id)
    return latest.closing_stock if latest is not None else Decimal("0")


def record_stock_entry(context: RuntimeContext, command: StockEntryCommand) -> StockEntryRecord:
    """Record goods received from a supplier on credit.

    The supplier's balance grows by the entry's total amount and every item
    appends a stock record carrying the product's previous closing stock
    forward.

    Raises:
        MissingReferenceError: If the supplier or an item's product is unknown.
        ValueError: If there are no items, a quantity is not positive, or a
            rate or the total is negative.
    """
    get_supplier(context, command.supplier_id)
    if not command.items:
        raise ValueError("A stock entry needs at least one item")
    for item in command.items:
        get_product(context, item.product_id)
        require_positive_quantity(item.quantity)
        require_nonnegative_money(item.rate)

    total_amount = command.total_amount
    if total_amount is None:
        total_amount = sum((item.quantity * item.rate for item in command.items), Decimal("0"))
    require_nonnegative_money(total_amount)

    entry = StockEntryRecord(
        entry_id=_new_id("SE", (entry.entry_id for entry in context.data.stock_entries)),
        entry_date=_resolve_date(command.entry_date),
        supplier_id=command.supplier_id,
        items=tuple(command.items),
        total_amount=total_amount,
        invoice_number=command.invoice_number,
    )
    context.data.stock_entries.append(entry)

    for item in entry.items:
        opening = current_stock(context, item.product_id)
        context.data.stock_records.append(
            StockRecord(
                record_id=_new_id("SR", (record.record_id for record in context.data.stock_records)),
                record_date=entry.entry_date,
                product_id=item.product_id,
                opening_stock=opening,
                received=item.quantity,
                dispatched=Decimal("0"),
                closing_stock=opening + item.quantity,
                supplier_id=entry.supplier_id,
            )
        )

    _adjust_supplier_balance(context, entry.supplier_id, entry.total_amount)
    _persist(context, StorageKey.STOCK_ENTRIES, StorageKey.STOCK_RECORDS, StorageKey.SUPPLIERS)
    log.info(
        "Recorded stock entry '%s' from supplier '%s' worth %s",
        entry.entry_id,
        entry.supplier_id,
        entry.total_amount,
    )
    return entry

