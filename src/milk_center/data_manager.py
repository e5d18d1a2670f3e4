"""Data access layer for Milk Center.

This module owns everything that crosses the persistence boundary. Business
rules live in :mod:`milk_center.core_logic` and :mod:`milk_center.ledger`.

The public API is organised around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Key-value storage: a tiny ``get``/``set`` string store, backed either by a
   directory of JSON files or by a dictionary.
3. Record codecs: converting the typed in-memory records to and from the
   camelCase JSON documents stored under each collection key.
4. Collection lifecycle: loading every collection into a :class:`DataStore`,
   writing collections back, and full backup/restore.
"""


from __future__ import annotations

import configparser
import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from . import log
from .constants import DATE_FORMAT, PaymentMethod, StorageKey


CONFIG_FILE_NAME = "config.ini"
BACKUP_FORMAT_VERSION = 1

_ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_dir: Path
    business_name: str
    schema_version: str
    default_payment_method: PaymentMethod
    log_dir: Optional[Path] = None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CustomerRecord:
    """A customer together with the incrementally maintained balance."""

    customer_id: str
    name: str
    phone: str = ""
    address: str = ""
    email: Optional[str] = None
    outstanding_balance: Decimal = Decimal("0")
    last_payment_date: Optional[date] = None
    last_payment_amount: Optional[Decimal] = None
    area: Optional[str] = None


@dataclass(frozen=True)
class ProductRecord:
    """A catalogue product; ``price`` is the default unit rate."""

    product_id: str
    name: str
    price: Decimal
    unit: str = ""
    category: str = ""
    description: str = ""
    sku: str = ""
    min_stock_level: Optional[Decimal] = None


@dataclass(frozen=True)
class OrderItemRecord:
    customer_id: str
    product_id: str
    quantity: Decimal


@dataclass(frozen=True)
class OrderRecord:
    """One day's order batch; items may belong to several customers."""

    order_id: str
    order_date: date
    items: Tuple[OrderItemRecord, ...]
    vehicle_id: Optional[str] = None
    salesman_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentRecord:
    payment_id: str
    customer_id: str
    amount: Decimal
    payment_date: date
    payment_method: PaymentMethod
    notes: Optional[str] = None


@dataclass(frozen=True)
class SupplierRecord:
    supplier_id: str
    name: str
    phone: str = ""
    address: str = ""
    email: Optional[str] = None
    category: Optional[str] = None
    outstanding_balance: Decimal = Decimal("0")


@dataclass(frozen=True)
class SupplierPaymentRecord:
    payment_id: str
    supplier_id: str
    amount: Decimal
    payment_date: date
    payment_method: PaymentMethod
    invoice_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CustomerProductRateRecord:
    """Customer-specific price override for a product."""

    rate_id: str
    customer_id: str
    product_id: str
    rate: Decimal
    effective_date: date


@dataclass(frozen=True)
class SupplierProductRateRecord:
    """One entry of a supplier's effective-dated rate history."""

    rate_id: str
    supplier_id: str
    product_id: str
    rate: Decimal
    effective_date: date
    is_active: bool = True
    remarks: Optional[str] = None


@dataclass(frozen=True)
class StockEntryItemRecord:
    product_id: str
    quantity: Decimal
    rate: Decimal


@dataclass(frozen=True)
class StockEntryRecord:
    """Goods received from a supplier on credit."""

    entry_id: str
    entry_date: date
    supplier_id: str
    items: Tuple[StockEntryItemRecord, ...]
    total_amount: Decimal
    invoice_number: Optional[str] = None


@dataclass(frozen=True)
class StockRecord:
    record_id: str
    record_date: date
    product_id: str
    opening_stock: Decimal
    received: Decimal
    dispatched: Decimal
    closing_stock: Decimal
    supplier_id: Optional[str] = None


@dataclass
class DataStore:
    """In-memory collections shared by the business layer.

    Every list keeps insertion order, which is also the order in which the
    collections are written back to storage.
    """

    customers: List[CustomerRecord] = field(default_factory=list)
    products: List[ProductRecord] = field(default_factory=list)
    orders: List[OrderRecord] = field(default_factory=list)
    payments: List[PaymentRecord] = field(default_factory=list)
    suppliers: List[SupplierRecord] = field(default_factory=list)
    supplier_payments: List[SupplierPaymentRecord] = field(default_factory=list)
    customer_product_rates: List[CustomerProductRateRecord] = field(default_factory=list)
    supplier_product_rates: List[SupplierProductRateRecord] = field(default_factory=list)
    stock_entries: List[StockEntryRecord] = field(default_factory=list)
    stock_records: List[StockRecord] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls where data is stored.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME`` and returns the first match.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory contains ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``System/DataDir``, ``System/BusinessName`` and ``System/SchemaVersion``
    are required. ``Defaults/PaymentMethod`` is optional and falls back to
    cash. A relative ``DataDir`` is anchored at ``base_path`` (or the current
    working directory) and resolved. ``System/LogDir`` is optional; it is
    anchored the same way and defaults to ``logs`` inside the data directory.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for a relative
            ``DataDir``.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing, or the default
            payment method is not a known :class:`PaymentMethod`.
    """

    try:
        data_dir_raw = parser.get("System", "DataDir")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    method_raw = parser.get("Defaults", "PaymentMethod", fallback=PaymentMethod.CASH.value)
    try:
        default_method = PaymentMethod(method_raw.strip().lower())
    except ValueError as exc:
        raise KeyError(f"Unknown default payment method: {method_raw}") from exc

    data_dir = Path(data_dir_raw).expanduser()
    if not data_dir.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_dir = (base_path / data_dir).resolve()

    log_dir_raw = parser.get("System", "LogDir", fallback="")
    if log_dir_raw.strip():
        log_dir = Path(log_dir_raw.strip()).expanduser()
        if not log_dir.is_absolute():
            log_dir = ((base_path or Path.cwd()) / log_dir).resolve()
    else:
        log_dir = data_dir / "logs"

    return ConfigSettings(
        data_dir=data_dir,
        business_name=business_name,
        schema_version=schema_version,
        default_payment_method=default_method,
        log_dir=log_dir,
    )


# ---------------------------------------------------------------------------
# Key-value storage
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """String store addressed by fixed keys."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self) -> List[str]:
        ...


class FileKeyValueStore:
    """Key-value store keeping each key in ``<directory>/<key>.json``."""

    suffix = ".json"

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory).expanduser().resolve()

    def _path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise KeyError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}{self.suffix}"

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_text(value, encoding="utf-8")

    def remove(self, key: str) -> None:
        path = self._path_for(key)
        if path.exists():
            path.unlink()

    def keys(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(path.stem for path in self.directory.glob(f"*{self.suffix}"))


class MemoryKeyValueStore:
    """Dictionary-backed key-value store, mainly for previews and tests."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._values)


# ---------------------------------------------------------------------------
# Scalar conversions
# ---------------------------------------------------------------------------


def parse_date(value: date | str) -> date:
    """Return ``value`` as a :class:`~datetime.date`.

    Strings must use the zero-padded ``yyyy-MM-dd`` form; anything else is
    rejected so that stored dates always sort and compare predictably.

    Raises:
        ValueError: If ``value`` is a string in any other format.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not _ISO_DATE_PATTERN.match(text):
        raise ValueError(f"Dates must use the yyyy-MM-dd format: {value!r}")
    return datetime.strptime(text, DATE_FORMAT).date()


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def to_decimal(value: Any, *, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """Convert JSON numbers or numeric strings into :class:`~decimal.Decimal`.

    Floats go through ``str`` first so ``0.1`` stays ``Decimal("0.1")``.

    Raises:
        ValueError: If ``value`` is not numeric or is infinite or NaN.
    """

    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric value: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Not a numeric value: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a finite numeric value: {value!r}")
    return result


def _optional_date(value: Any) -> Optional[date]:
    return parse_date(value) if value else None


def _optional_decimal_text(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _optional_text(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


# ---------------------------------------------------------------------------
# Record codecs
# ---------------------------------------------------------------------------


def serialize_customer(record: CustomerRecord) -> dict[str, Any]:
    return {
        "id": record.customer_id,
        "name": record.name,
        "phone": record.phone,
        "address": record.address,
        "email": record.email,
        "outstandingBalance": str(record.outstanding_balance),
        "lastPaymentDate": format_date(record.last_payment_date) if record.last_payment_date else None,
        "lastPaymentAmount": _optional_decimal_text(record.last_payment_amount),
        "area": record.area,
    }


def deserialize_customer(raw: Mapping[str, Any]) -> CustomerRecord:
    return CustomerRecord(
        customer_id=str(raw["id"]),
        name=str(raw.get("name", "")),
        phone=str(raw.get("phone") or ""),
        address=str(raw.get("address") or ""),
        email=_optional_text(raw.get("email")),
        outstanding_balance=to_decimal(raw.get("outstandingBalance")),
        last_payment_date=_optional_date(raw.get("lastPaymentDate")),
        last_payment_amount=to_decimal(raw.get("lastPaymentAmount"), default=None),
        area=_optional_text(raw.get("area")),
    )


def serialize_product(record: ProductRecord) -> dict[str, Any]:
    return {
        "id": record.product_id,
        "name": record.name,
        "price": str(record.price),
        "unit": record.unit,
        "category": record.category,
        "description": record.description,
        "sku": record.sku,
        "minStockLevel": _optional_decimal_text(record.min_stock_level),
    }


def deserialize_product(raw: Mapping[str, Any]) -> ProductRecord:
    return ProductRecord(
        product_id=str(raw["id"]),
        name=str(raw.get("name", "")),
        price=to_decimal(raw.get("price")),
        unit=str(raw.get("unit") or ""),
        category=str(raw.get("category") or ""),
        description=str(raw.get("description") or ""),
        sku=str(raw.get("sku") or ""),
        min_stock_level=to_decimal(raw.get("minStockLevel"), default=None),
    )


def serialize_order(record: OrderRecord) -> dict[str, Any]:
    return {
        "id": record.order_id,
        "date": format_date(record.order_date),
        "items": [
            {
                "customerId": item.customer_id,
                "productId": item.product_id,
                "quantity": str(item.quantity),
            }
            for item in record.items
        ],
        "vehicleId": record.vehicle_id,
        "salesmanId": record.salesman_id,
    }


def deserialize_order(raw: Mapping[str, Any]) -> OrderRecord:
    items = tuple(
        OrderItemRecord(
            customer_id=str(item["customerId"]),
            product_id=str(item["productId"]),
            quantity=to_decimal(item.get("quantity")),
        )
        for item in raw.get("items", [])
    )
    return OrderRecord(
        order_id=str(raw["id"]),
        order_date=parse_date(raw["date"]),
        items=items,
        vehicle_id=_optional_text(raw.get("vehicleId")),
        salesman_id=_optional_text(raw.get("salesmanId")),
    )


def serialize_payment(record: PaymentRecord) -> dict[str, Any]:
    return {
        "id": record.payment_id,
        "customerId": record.customer_id,
        "date": format_date(record.payment_date),
        "amount": str(record.amount),
        "paymentMethod": record.payment_method.value,
        "notes": record.notes,
    }


def deserialize_payment(raw: Mapping[str, Any]) -> PaymentRecord:
    return PaymentRecord(
        payment_id=str(raw["id"]),
        customer_id=str(raw["customerId"]),
        amount=to_decimal(raw.get("amount")),
        payment_date=parse_date(raw["date"]),
        payment_method=PaymentMethod(raw.get("paymentMethod", PaymentMethod.CASH.value)),
        notes=_optional_text(raw.get("notes")),
    )


def serialize_supplier(record: SupplierRecord) -> dict[str, Any]:
    return {
        "id": record.supplier_id,
        "name": record.name,
        "phone": record.phone,
        "address": record.address,
        "email": record.email,
        "category": record.category,
        "outstandingBalance": str(record.outstanding_balance),
    }


def deserialize_supplier(raw: Mapping[str, Any]) -> SupplierRecord:
    return SupplierRecord(
        supplier_id=str(raw["id"]),
        name=str(raw.get("name", "")),
        phone=str(raw.get("phone") or ""),
        address=str(raw.get("address") or ""),
        email=_optional_text(raw.get("email")),
        category=_optional_text(raw.get("category")),
        outstanding_balance=to_decimal(raw.get("outstandingBalance")),
    )


def serialize_supplier_payment(record: SupplierPaymentRecord) -> dict[str, Any]:
    return {
        "id": record.payment_id,
        "supplierId": record.supplier_id,
        "date": format_date(record.payment_date),
        "amount": str(record.amount),
        "paymentMethod": record.payment_method.value,
        "invoiceNumber": record.invoice_number,
        "notes": record.notes,
    }


def deserialize_supplier_payment(raw: Mapping[str, Any]) -> SupplierPaymentRecord:
    return SupplierPaymentRecord(
        payment_id=str(raw["id"]),
        supplier_id=str(raw["supplierId"]),
        amount=to_decimal(raw.get("amount")),
        payment_date=parse_date(raw["date"]),
        payment_method=PaymentMethod(raw.get("paymentMethod", PaymentMethod.CASH.value)),
        invoice_number=_optional_text(raw.get("invoiceNumber")),
        notes=_optional_text(raw.get("notes")),
    )


def serialize_customer_product_rate(record: CustomerProductRateRecord) -> dict[str, Any]:
    return {
        "id": record.rate_id,
        "customerId": record.customer_id,
        "productId": record.product_id,
        "rate": str(record.rate),
        "effectiveDate": format_date(record.effective_date),
    }


def deserialize_customer_product_rate(raw: Mapping[str, Any]) -> CustomerProductRateRecord:
    return CustomerProductRateRecord(
        rate_id=str(raw["id"]),
        customer_id=str(raw["customerId"]),
        product_id=str(raw["productId"]),
        rate=to_decimal(raw.get("rate")),
        effective_date=parse_date(raw["effectiveDate"]),
    )


def serialize_supplier_product_rate(record: SupplierProductRateRecord) -> dict[str, Any]:
    return {
        "id": record.rate_id,
        "supplierId": record.supplier_id,
        "productId": record.product_id,
        "rate": str(record.rate),
        "effectiveDate": format_date(record.effective_date),
        "isActive": record.is_active,
        "remarks": record.remarks,
    }


def deserialize_supplier_product_rate(raw: Mapping[str, Any]) -> SupplierProductRateRecord:
    return SupplierProductRateRecord(
        rate_id=str(raw["id"]),
        supplier_id=str(raw["supplierId"]),
        product_id=str(raw["productId"]),
        rate=to_decimal(raw.get("rate")),
        effective_date=parse_date(raw["effectiveDate"]),
        is_active=bool(raw.get("isActive", True)),
        remarks=_optional_text(raw.get("remarks")),
    )


def serialize_stock_entry(record: StockEntryRecord) -> dict[str, Any]:
    return {
        "id": record.entry_id,
        "date": format_date(record.entry_date),
        "supplierId": record.supplier_id,
        "items": [
            {
                "productId": item.product_id,
                "quantity": str(item.quantity),
                "rate": str(item.rate),
            }
            for item in record.items
        ],
        "totalAmount": str(record.total_amount),
        "invoiceNumber": record.invoice_number,
    }


def deserialize_stock_entry(raw: Mapping[str, Any]) -> StockEntryRecord:
    items = tuple(
        StockEntryItemRecord(
            product_id=str(item["productId"]),
            quantity=to_decimal(item.get("quantity")),
            rate=to_decimal(item.get("rate")),
        )
        for item in raw.get("items", [])
    )
    return StockEntryRecord(
        entry_id=str(raw["id"]),
        entry_date=parse_date(raw["date"]),
        supplier_id=str(raw["supplierId"]),
        items=items,
        total_amount=to_decimal(raw.get("totalAmount")),
        invoice_number=_optional_text(raw.get("invoiceNumber")),
    )


def serialize_stock_record(record: StockRecord) -> dict[str, Any]:
    return {
        "id": record.record_id,
        "date": format_date(record.record_date),
        "productId": record.product_id,
        "openingStock": str(record.opening_stock),
        "received": str(record.received),
        "dispatched": str(record.dispatched),
        "closingStock": str(record.closing_stock),
        "supplierId": record.supplier_id,
    }


def deserialize_stock_record(raw: Mapping[str, Any]) -> StockRecord:
    return StockRecord(
        record_id=str(raw["id"]),
        record_date=parse_date(raw["date"]),
        product_id=str(raw["productId"]),
        opening_stock=to_decimal(raw.get("openingStock")),
        received=to_decimal(raw.get("received")),
        dispatched=to_decimal(raw.get("dispatched")),
        closing_stock=to_decimal(raw.get("closingStock")),
        supplier_id=_optional_text(raw.get("supplierId")),
    )


@dataclass(frozen=True)
class CollectionCodec:
    """Bind a storage key to its :class:`DataStore` attribute and codecs."""

    key: StorageKey
    attribute: str
    serialize: Callable[[Any], dict[str, Any]]
    deserialize: Callable[[Mapping[str, Any]], Any]


COLLECTION_CODECS: Dict[StorageKey, CollectionCodec] = {
    codec.key: codec
    for codec in (
        CollectionCodec(StorageKey.CUSTOMERS, "customers", serialize_customer, deserialize_customer),
        CollectionCodec(StorageKey.PRODUCTS, "products", serialize_product, deserialize_product),
        CollectionCodec(StorageKey.ORDERS, "orders", serialize_order, deserialize_order),
        CollectionCodec(StorageKey.PAYMENTS, "payments", serialize_payment, deserialize_payment),
        CollectionCodec(StorageKey.SUPPLIERS, "suppliers", serialize_supplier, deserialize_supplier),
        CollectionCodec(
            StorageKey.SUPPLIER_PAYMENTS,
            "supplier_payments",
            serialize_supplier_payment,
            deserialize_supplier_payment,
        ),
        CollectionCodec(
            StorageKey.CUSTOMER_PRODUCT_RATES,
            "customer_product_rates",
            serialize_customer_product_rate,
            deserialize_customer_product_rate,
        ),
        CollectionCodec(
            StorageKey.SUPPLIER_PRODUCT_RATES,
            "supplier_product_rates",
            serialize_supplier_product_rate,
            deserialize_supplier_product_rate,
        ),
        CollectionCodec(StorageKey.STOCK_ENTRIES, "stock_entries", serialize_stock_entry, deserialize_stock_entry),
        CollectionCodec(StorageKey.STOCK_RECORDS, "stock_records", serialize_stock_record, deserialize_stock_record),
    )
}


# ---------------------------------------------------------------------------
# Collection lifecycle
# ---------------------------------------------------------------------------


def load_collection(kv_store: KeyValueStore, key: StorageKey) -> List[Any]:
    """Read and decode the collection stored under ``key``.

    A missing key yields an empty list, mirroring a first run on a fresh
    store.

    Args:
        kv_store (KeyValueStore): Backing store.
        key (StorageKey): Collection to load.

    Returns:
        list: Typed records in stored order.

    Raises:
        ValueError: If the stored document is not a JSON array or one of its
            records cannot be decoded.
    """

    codec = COLLECTION_CODECS[key]
    raw_text = kv_store.get(key.value)
    if raw_text is None:
        return []
    try:
        raw_items = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Stored collection '{key.value}' is not valid JSON") from exc
    if not isinstance(raw_items, list):
        raise ValueError(f"Stored collection '{key.value}' must be a JSON array")
    try:
        return [codec.deserialize(item) for item in raw_items]
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed record in collection '{key.value}': {exc}") from exc


def save_collection(kv_store: KeyValueStore, key: StorageKey, records: Iterable[Any]) -> None:
    """Encode ``records`` and write the whole collection under ``key``."""

    codec = COLLECTION_CODECS[key]
    payload = [codec.serialize(record) for record in records]
    kv_store.set(key.value, json.dumps(payload))
    log.debug("Wrote %d records under key '%s'", len(payload), key.value)


def load_data_store(kv_store: KeyValueStore) -> DataStore:
    """Read every known collection into a fresh :class:`DataStore`."""

    data = DataStore()
    for key, codec in COLLECTION_CODECS.items():
        setattr(data, codec.attribute, load_collection(kv_store, key))
    log.debug(
        "Loaded data store: %d customers, %d orders, %d payments",
        len(data.customers),
        len(data.orders),
        len(data.payments),
    )
    return data


def save_collections(kv_store: KeyValueStore, data: DataStore, keys: Sequence[StorageKey]) -> None:
    """Write back the collections named in ``keys`` from ``data``."""

    for key in keys:
        codec = COLLECTION_CODECS[key]
        save_collection(kv_store, key, getattr(data, codec.attribute))


def save_data_store(kv_store: KeyValueStore, data: DataStore) -> None:
    save_collections(kv_store, data, list(COLLECTION_CODECS))


def export_backup(kv_store: KeyValueStore, destination: Path, *, overwrite: bool = False) -> Path:
    """Write every stored collection into a single JSON backup document.

    Args:
        kv_store (KeyValueStore): Store to snapshot.
        destination (Path): Target file; parent folders are created.
        overwrite (bool): Replace an existing file when ``True``.

    Returns:
        Path: Resolved path of the written backup.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is
            ``False``.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing backup: {destination}")

    collections: Dict[str, Any] = {}
    for key in COLLECTION_CODECS:
        raw_text = kv_store.get(key.value)
        collections[key.value] = json.loads(raw_text) if raw_text is not None else []

    document = {
        "formatVersion": BACKUP_FORMAT_VERSION,
        "createdAt": datetime.now().isoformat(timespec="seconds"),
        "collections": collections,
    }
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(json.dumps(document, indent=2), encoding="utf-8")
    log.info("Exported backup with %d collections to '%s'", len(collections), destination)
    return destination


def import_backup(kv_store: KeyValueStore, source: Path) -> DataStore:
    """Validate a backup document and load it into ``kv_store``.

    Every collection in the backup is decoded before anything is written, so a
    malformed backup leaves the store untouched. Keys the application does not
    know are skipped with a warning.

    Args:
        kv_store (KeyValueStore): Store receiving the collections.
        source (Path): Backup file produced by :func:`export_backup`.

    Returns:
        DataStore: The restored collections.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        ValueError: If the document is not a valid backup.
    """

    source = Path(source).expanduser().resolve()
    if not source.exists():
        raise FileNotFoundError(f"Backup not found: {source}")

    try:
        document = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Backup is not valid JSON: {source}") from exc

    if not isinstance(document, dict) or not isinstance(document.get("collections"), dict):
        raise ValueError("Backup document must contain a 'collections' object")

    staging = MemoryKeyValueStore()
    for raw_key, items in document["collections"].items():
        try:
            key = StorageKey(raw_key)
        except ValueError:
            log.warning("Ignoring unknown collection '%s' in backup", raw_key)
            continue
        staging.set(key.value, json.dumps(items))

    restored = load_data_store(staging)
    save_data_store(kv_store, restored)
    log.info("Restored backup from '%s'", source)
    return restored
