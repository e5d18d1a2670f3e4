"""Command-line entry points for the Milk Center toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Every mutating command is persisted by the business layer itself, so
the CLI only loads the context, dispatches, and prints results.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, ledger, log, rate_resolver, report_export
from .constants import PaymentMethod, ReportPeriod
from .data_manager import OrderItemRecord, StockEntryItemRecord


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="milk-center",
        description="Command-line tools for the Milk Center ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upward from the working directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _spec(
    name: str,
    help_text: str,
    add_arguments: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as payments and orders."""
    specs = {
        "add-customer": register_add_customer_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "add-supplier": register_add_supplier_command(subparsers),
        "add-order": register_add_order_command(subparsers),
        "pay": register_pay_command(subparsers),
        "update-payment": register_update_payment_command(subparsers),
        "delete-payment": register_delete_payment_command(subparsers),
        "set-rate": register_set_rate_command(subparsers),
        "set-supplier-rate": register_set_supplier_rate_command(subparsers),
        "pay-supplier": register_pay_supplier_command(subparsers),
        "receive-stock": register_receive_stock_command(subparsers),
        "restore": register_restore_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as rates and ledgers."""
    specs = {
        "rate": register_rate_command(subparsers),
        "supplier-rate": register_supplier_rate_command(subparsers),
        "rate-history": register_rate_history_command(subparsers),
        "opening-balance": register_opening_balance_command(subparsers),
        "ledger": register_ledger_command(subparsers),
        "export-ledger": register_export_ledger_command(subparsers),
        "outstanding": register_outstanding_command(subparsers),
        "backup": register_backup_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Argument types
# ---------------------------------------------------------------------------


def decimal_arg(text: str) -> Decimal:
    """argparse ``type`` converting text into :class:`~decimal.Decimal`."""
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Not a number: {text}") from exc
    if not value.is_finite():
        raise argparse.ArgumentTypeError(f"Not a finite number: {text}")
    return value


def date_arg(text: str) -> date:
    """argparse ``type`` accepting strict ``yyyy-MM-dd`` dates."""
    try:
        return data_manager.parse_date(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def order_item_arg(text: str) -> OrderItemRecord:
    """Parse ``CUSTOMER:PRODUCT:QUANTITY`` into an order item."""
    parts = text.split(":")
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"Expected CUSTOMER:PRODUCT:QUANTITY, got {text}")
    customer_id, product_id, quantity = parts
    return OrderItemRecord(customer_id=customer_id, product_id=product_id, quantity=decimal_arg(quantity))


def stock_item_arg(text: str) -> StockEntryItemRecord:
    """Parse ``PRODUCT:QUANTITY:RATE`` into a stock entry item."""
    parts = text.split(":")
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT:QUANTITY:RATE, got {text}")
    product_id, quantity, rate = parts
    return StockEntryItemRecord(product_id=product_id, quantity=decimal_arg(quantity), rate=decimal_arg(rate))


def _method_choices() -> List[str]:
    return [member.value for member in PaymentMethod]


def _add_period_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--customer-id", required=True)
    parser.add_argument("--start", type=date_arg, default=None)
    parser.add_argument("--end", type=date_arg, default=None)
    parser.add_argument(
        "--period",
        choices=[member.value for member in ReportPeriod],
        default=None,
        help="Preset window used when --start/--end are omitted (default: monthly).",
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default="")
        parser.add_argument("--address", default="")
        parser.add_argument("--email", default=None)
        parser.add_argument("--area", default=None)
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--opening-balance", type=decimal_arg, default=Decimal("0"))

    return _spec("add-customer", "Register a new customer.", add_arguments, run_add_customer)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", type=decimal_arg, required=True)
        parser.add_argument("--unit", default="")
        parser.add_argument("--category", default="")
        parser.add_argument("--product-id", default=None)

    return _spec("add-product", "Register a new product with its default rate.", add_arguments, run_add_product)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default="")
        parser.add_argument("--address", default="")
        parser.add_argument("--supplier-id", default=None)

    return _spec("add-supplier", "Register a new supplier.", add_arguments, run_add_supplier)


def register_add_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-order``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--date", type=date_arg, required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=order_item_arg,
            required=True,
            help="CUSTOMER:PRODUCT:QUANTITY; repeat for each line.",
        )
        parser.add_argument("--vehicle-id", default=None)
        parser.add_argument("--salesman-id", default=None)

    return _spec("add-order", "Record a day's order batch.", add_arguments, run_add_order)


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", type=decimal_arg, required=True)
        parser.add_argument("--date", type=date_arg, default=None)
        parser.add_argument("--method", choices=_method_choices(), default=None)
        parser.add_argument("--notes", default=None)

    return _spec("pay", "Record a payment received from a customer.", add_arguments, run_pay)


def register_update_payment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-payment``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--payment-id", required=True)
        parser.add_argument("--amount", type=decimal_arg, default=None)
        parser.add_argument("--date", type=date_arg, default=None)
        parser.add_argument("--method", choices=_method_choices(), default=None)
        parser.add_argument("--notes", default=None)

    return _spec("update-payment", "Edit a recorded customer payment.", add_arguments, run_update_payment)


def register_delete_payment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-payment``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--payment-id", required=True)

    return _spec("delete-payment", "Delete a customer payment and restore the balance.", add_arguments, run_delete_payment)


def register_set_rate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-rate``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--rate", type=decimal_arg, required=True)
        parser.add_argument("--effective-date", type=date_arg, default=None)

    return _spec("set-rate", "Set a customer-specific product rate.", add_arguments, run_set_rate)


def register_set_supplier_rate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-supplier-rate``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--rate", type=decimal_arg, required=True)
        parser.add_argument("--effective-date", type=date_arg, default=None)
        parser.add_argument("--inactive", action="store_true", help="Store the rate as inactive history.")
        parser.add_argument("--remarks", default=None)

    return _spec("set-supplier-rate", "Add a supplier rate to its history.", add_arguments, run_set_supplier_rate)


def register_pay_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-supplier``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--amount", type=decimal_arg, required=True)
        parser.add_argument("--date", type=date_arg, default=None)
        parser.add_argument("--method", choices=_method_choices(), default=None)
        parser.add_argument("--invoice-number", default=None)
        parser.add_argument("--notes", default=None)

    return _spec("pay-supplier", "Record a payment made to a supplier.", add_arguments, run_pay_supplier)


def register_receive_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``receive-stock``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=stock_item_arg,
            required=True,
            help="PRODUCT:QUANTITY:RATE; repeat for each line.",
        )
        parser.add_argument("--date", type=date_arg, default=None)
        parser.add_argument("--total-amount", type=decimal_arg, default=None)
        parser.add_argument("--invoice-number", default=None)

    return _spec("receive-stock", "Record goods received from a supplier.", add_arguments, run_receive_stock)


def register_restore_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restore``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--source", type=Path, required=True)

    return _spec("restore", "Replace stored data with a JSON backup.", add_arguments, run_restore)


def register_rate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rate``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--strict", action="store_true", help="Fail instead of printing 0 for unknown products.")

    return _spec("rate", "Show the effective rate for a customer and product.", add_arguments, run_rate)


def register_supplier_rate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``supplier-rate``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--product-id", required=True)

    return _spec("supplier-rate", "Show the current supplier rate for a product.", add_arguments, run_supplier_rate)


def register_rate_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rate-history``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--product-id", required=True)

    return _spec("rate-history", "List a supplier's rate history for a product.", add_arguments, run_rate_history)


def register_opening_balance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``opening-balance``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--date", type=date_arg, required=True)

    return _spec("opening-balance", "Show a customer's balance before a date.", add_arguments, run_opening_balance)


def register_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``ledger``."""
    return _spec("ledger", "Print a customer's ledger for a date range.", _add_period_arguments, run_ledger)


def register_export_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-ledger``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        _add_period_arguments(parser)
        parser.add_argument("--output", type=Path, default=None, help="Target .xlsx file.")
        parser.add_argument("--force", action="store_true", help="Overwrite an existing file.")

    return _spec("export-ledger", "Export a customer's ledger to Excel.", add_arguments, run_export_ledger)


def register_outstanding_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``outstanding``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--overdue-days", type=int, default=30)

    return _spec("outstanding", "Summarise outstanding customer balances.", add_arguments, run_outstanding)


def register_backup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``backup``."""

    def add_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--output", type=Path, required=True)
        parser.add_argument("--force", action="store_true", help="Overwrite an existing file.")

    return _spec("backup", "Write all stored collections to one JSON file.", add_arguments, run_backup)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def resolve_report_window(args: argparse.Namespace) -> tuple[date, date]:
    """Use explicit ``--start``/``--end`` when given, else the preset period."""
    if args.start is not None and args.end is not None:
        return args.start, args.end
    preset_start, preset_end = ledger.report_period(args.period or ReportPeriod.MONTHLY.value)
    return args.start or preset_start, args.end or preset_end


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def translate_order(args: argparse.Namespace) -> core_logic.OrderCommand:
    """Translate CLI args into an order command object."""
    return core_logic.OrderCommand(
        order_date=args.date,
        items=list(args.items),
        vehicle_id=args.vehicle_id,
        salesman_id=args.salesman_id,
    )


def translate_payment(args: argparse.Namespace) -> core_logic.PaymentCommand:
    """Translate CLI args into a customer payment command object."""
    return core_logic.PaymentCommand(
        customer_id=args.customer_id,
        amount=args.amount,
        payment_date=args.date,
        payment_method=PaymentMethod(args.method) if args.method else None,
        notes=args.notes,
    )


def translate_payment_patch(args: argparse.Namespace) -> core_logic.PaymentPatch:
    """Translate CLI args into a payment patch; omitted options stay untouched."""
    return core_logic.PaymentPatch(
        amount=args.amount,
        payment_date=args.date,
        payment_method=PaymentMethod(args.method) if args.method else None,
        notes=args.notes,
    )


def translate_supplier_payment(args: argparse.Namespace) -> core_logic.SupplierPaymentCommand:
    """Translate CLI args into a supplier payment command object."""
    return core_logic.SupplierPaymentCommand(
        supplier_id=args.supplier_id,
        amount=args.amount,
        payment_date=args.date,
        payment_method=PaymentMethod(args.method) if args.method else None,
        invoice_number=args.invoice_number,
        notes=args.notes,
    )


def translate_stock_entry(args: argparse.Namespace) -> core_logic.StockEntryCommand:
    """Translate CLI args into a stock entry command object."""
    return core_logic.StockEntryCommand(
        supplier_id=args.supplier_id,
        items=list(args.items),
        entry_date=args.date,
        total_amount=args.total_amount,
        invoice_number=args.invoice_number,
    )


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow in the BLL."""
    customer = core_logic.add_customer(
        context,
        name=args.name,
        phone=args.phone,
        address=args.address,
        email=args.email,
        area=args.area,
        customer_id=args.customer_id,
        outstanding_balance=args.opening_balance,
    )
    print(customer.customer_id)
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(
        context,
        name=args.name,
        price=args.price,
        unit=args.unit,
        category=args.category,
        product_id=args.product_id,
    )
    print(product.product_id)
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-supplier workflow in the BLL."""
    supplier = core_logic.add_supplier(
        context,
        name=args.name,
        phone=args.phone,
        address=args.address,
        supplier_id=args.supplier_id,
    )
    print(supplier.supplier_id)
    return 0


def run_add_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the order entry workflow via the BLL."""
    order = core_logic.add_order(context, translate_order(args))
    print(order.order_id)
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the customer payment workflow via the BLL."""
    payment = core_logic.record_payment(context, translate_payment(args))
    print(payment.payment_id)
    return 0


def run_update_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_payment(context, args.payment_id, translate_payment_patch(args))
    return 0


def run_delete_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_payment(context, args.payment_id)
    return 0


def run_set_rate(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = core_logic.add_customer_product_rate(
        context,
        customer_id=args.customer_id,
        product_id=args.product_id,
        rate=args.rate,
        effective_date=args.effective_date,
    )
    print(record.rate_id)
    return 0


def run_set_supplier_rate(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = core_logic.add_supplier_product_rate(
        context,
        supplier_id=args.supplier_id,
        product_id=args.product_id,
        rate=args.rate,
        effective_date=args.effective_date,
        is_active=not args.inactive,
        remarks=args.remarks,
    )
    print(record.rate_id)
    return 0


def run_pay_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    payment = core_logic.record_supplier_payment(context, translate_supplier_payment(args))
    print(payment.payment_id)
    return 0


def run_receive_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    entry = core_logic.record_stock_entry(context, translate_stock_entry(args))
    print(entry.entry_id)
    return 0


def run_restore(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    data_manager.import_backup(context.kv_store, args.source)
    return 0


def run_rate(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    rate = rate_resolver.resolve_customer_rate(
        context.data, args.customer_id, args.product_id, strict=args.strict
    )
    print(ledger.format_money(rate))
    return 0


def run_supplier_rate(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    rate = rate_resolver.resolve_supplier_rate(context.data, args.supplier_id, args.product_id)
    print("No rate configured" if rate is None else ledger.format_money(rate))
    return 0


def run_rate_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for record in rate_resolver.get_supplier_rate_history(context.data, args.supplier_id, args.product_id):
        status = "active" if record.is_active else "inactive"
        print(f"{data_manager.format_date(record.effective_date)}  {ledger.format_money(record.rate):>10}  {status}")
    return 0


def run_opening_balance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.get_customer(context, args.customer_id)
    balance = ledger.calculate_opening_balance(context.data, args.customer_id, args.date)
    print(f"{ledger.format_money(balance)} {ledger.balance_side(balance)}")
    return 0


def format_ledger_lines(report: ledger.CustomerLedgerReport) -> List[str]:
    """Plain-text rendering of a ledger report for the terminal."""
    lines = [
        f"Ledger for {report.customer_id} from {report.start_date} to {report.end_date}",
        f"Opening balance: {ledger.format_money(report.opening_balance)} {ledger.balance_side(report.opening_balance)}",
        f"{'Date':<10}  {'Qty':>8}  {'Billed':>10}  {'Paid':>10}  {'Balance':>10}  Reference",
    ]
    for entry in report.entries:
        lines.append(
            f"{data_manager.format_date(entry.entry_date):<10}  {entry.total_quantity:>8}  "
            f"{ledger.format_money(entry.amount_billed):>10}  {ledger.format_money(entry.payment_received):>10}  "
            f"{ledger.format_money(entry.closing_balance):>10}  {entry.reference or ''}"
        )
    lines.append(
        f"{'TOTAL':<10}  {report.total_quantity:>8}  {ledger.format_money(report.total_amount_billed):>10}  "
        f"{ledger.format_money(report.total_payment_received):>10}  "
        f"{ledger.format_money(report.closing_balance):>10}  {ledger.balance_side(report.closing_balance)}"
    )
    return lines


def run_ledger(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the ledger reporting workflow."""
    start, end = resolve_report_window(args)
    report = ledger.generate_ledger_report(context.data, args.customer_id, start, end)
    print("\n".join(format_ledger_lines(report)))
    return 0


def run_export_ledger(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the ledger export workflow."""
    start, end = resolve_report_window(args)
    report = ledger.generate_ledger_report(context.data, args.customer_id, start, end)
    output = args.output
    if output is None:
        customer = core_logic.get_customer(context, args.customer_id)
        output = Path.cwd() / report_export.default_export_name(report, customer.name)
    path = report_export.export_ledger_workbook(
        report,
        context.data,
        output,
        business_name=context.settings.business_name,
        overwrite=args.force,
    )
    print(path)
    return 0


def run_outstanding(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    summary = ledger.summarize_outstanding(context.data, overdue_days=args.overdue_days)
    print(f"Total outstanding: {ledger.format_money(summary.total_outstanding)}")
    print(f"Average outstanding: {ledger.format_money(summary.average_outstanding)}")
    print(f"Overdue customers: {len(summary.overdue_customers)} ({ledger.format_money(summary.total_overdue)})")
    for customer in summary.overdue_customers:
        print(f"  {customer.customer_id}  {customer.name}  {ledger.format_money(customer.outstanding_balance)}")
    return 0


def run_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    path = data_manager.export_backup(context.kv_store, args.output, overwrite=args.force)
    print(path)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
