"""Shared pytest fixtures and utilities for Milk Center tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import openpyxl
import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from milk_center import cli, constants, core_logic, data_manager, report_export  # noqa: E402
from milk_center.data_manager import (  # noqa: E402
    CustomerRecord,
    DataStore,
    OrderItemRecord,
    OrderRecord,
    PaymentRecord,
    ProductRecord,
)

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataDir = {data_dir}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "PaymentMethod = {payment_method}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_dir: Path
    schema_version: str
    business_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/data-directory bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Test Dairy",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        payment_method: str = "cash",
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        data_dir = bundle_dir / "data"
        data_dir_entry = "data" if make_relative else str(data_dir)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_dir=data_dir_entry,
                business_name=business_name,
                schema_version=schema_version,
                payment_method=payment_method,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_dir=data_dir,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a file-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="milk-center", description="Milk Center CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory contexts."""

    return data_manager.ConfigSettings(
        data_dir=tmp_path / "data",
        business_name="Test Dairy",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_payment_method=constants.PaymentMethod.CASH,
    )


@pytest.fixture
def kv_store() -> data_manager.MemoryKeyValueStore:
    return data_manager.MemoryKeyValueStore()


@pytest.fixture
def context(
    settings: data_manager.ConfigSettings, kv_store: data_manager.MemoryKeyValueStore
) -> core_logic.RuntimeContext:
    """Assemble a runtime context over an empty in-memory store."""

    return core_logic.RuntimeContext(settings=settings, kv_store=kv_store, data=DataStore())


@pytest.fixture
def dairy_store() -> DataStore:
    """Two customers, two products and no history.

    Milk defaults to 50.00 per litre and curd to 30.00; Ravi has a negotiated
    milk rate of 45.00.
    """

    store = DataStore(
        customers=[
            CustomerRecord("C1", "Ravi Kumar", phone="9000000001", address="12 Lake Road"),
            CustomerRecord("C2", "Anita Shah", phone="9000000002", address="4 Hill Street"),
        ],
        products=[
            ProductRecord("P1", "Milk", Decimal("50.00"), unit="litre"),
            ProductRecord("P2", "Curd", Decimal("30.00"), unit="kg"),
        ],
    )
    store.customer_product_rates.append(
        data_manager.CustomerProductRateRecord(
            "CPR1", "C1", "P1", Decimal("45.00"), data_manager.parse_date("2024-01-01")
        )
    )
    return store


@pytest.fixture
def dairy_context(
    settings: data_manager.ConfigSettings,
    kv_store: data_manager.MemoryKeyValueStore,
    dairy_store: DataStore,
) -> core_logic.RuntimeContext:
    """In-memory runtime context seeded with :func:`dairy_store`."""

    data_manager.save_data_store(kv_store, dairy_store)
    return core_logic.RuntimeContext(settings=settings, kv_store=kv_store, data=dairy_store)


def make_order(order_id: str, order_date: str, *items: tuple[str, str, str]) -> OrderRecord:
    """Build an order from ``(customer_id, product_id, quantity)`` tuples."""

    return OrderRecord(
        order_id=order_id,
        order_date=data_manager.parse_date(order_date),
        items=tuple(OrderItemRecord(cid, pid, Decimal(qty)) for cid, pid, qty in items),
    )


def make_payment(
    payment_id: str,
    customer_id: str,
    amount: str,
    payment_date: str,
    method: constants.PaymentMethod = constants.PaymentMethod.CASH,
    notes: str | None = None,
) -> PaymentRecord:
    return PaymentRecord(
        payment_id=payment_id,
        customer_id=customer_id,
        amount=Decimal(amount),
        payment_date=data_manager.parse_date(payment_date),
        payment_method=method,
        notes=notes,
    )


def read_ledger_rows(path: Path) -> list[tuple]:
    """Read back every row of an exported ledger sheet as plain values."""

    workbook = openpyxl.load_workbook(Path(path))
    sheet = workbook[report_export.SHEET_TITLE]
    return [tuple(row) for row in sheet.iter_rows(values_only=True)]


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz in (None, UTC)
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
