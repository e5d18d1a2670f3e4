"""Render customer ledger reports into Excel workbooks.

The ledger itself is computed by :mod:`milk_center.ledger`; this module only
lays the finished report out on a worksheet. Monetary cells are rounded to two
decimals here and nowhere earlier.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import openpyxl
from openpyxl.styles import Alignment, Font
from openpyxl.workbook import Workbook

from . import log
from .data_manager import DataStore, ProductRecord
from .ledger import CustomerLedgerReport, balance_side, round_money


SHEET_TITLE = "Ledger"
DATE_NUMBER_FORMAT = "DD/MM/YYYY"
MONEY_NUMBER_FORMAT = "#,##0.00"
TRAILING_COLUMNS: Sequence[str] = ("Total Qty", "Amount", "Payment", "Balance", "Reference")


def report_products(report: CustomerLedgerReport, store: DataStore) -> List[ProductRecord]:
    """Products with a non-zero quantity in the report, sorted by name.

    Quantities for products that no longer exist in the catalogue are left out
    of the per-product columns but still count towards ``Total Qty``.
    """

    by_id = {product.product_id: product for product in store.products}
    active = [
        by_id[product_id]
        for product_id, quantity in report.total_product_quantities.items()
        if quantity > 0 and product_id in by_id
    ]
    return sorted(active, key=lambda product: product.name.lower())


def build_ledger_workbook(
    report: CustomerLedgerReport,
    store: DataStore,
    *,
    business_name: str,
) -> Workbook:
    """Lay out ``report`` on a fresh workbook.

    The sheet holds a title block (business name, period, customer details and
    opening balance), a bold header row, one row per ledger entry and a bold
    ``TOTAL`` row.

    Args:
        report (CustomerLedgerReport): Finished ledger to render.
        store (DataStore): Source of customer and product names.
        business_name (str): Heading printed on the first row.

    Returns:
        Workbook: In-memory ``openpyxl`` workbook, not yet saved.
    """

    customer = next(
        (item for item in store.customers if item.customer_id == report.customer_id),
        None,
    )
    products = report_products(report, store)
    headers = ["Date", *(product.name for product in products), *TRAILING_COLUMNS]

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = SHEET_TITLE
    bold_font = Font(bold=True)

    sheet.append([business_name.upper()])
    sheet["A1"].font = Font(bold=True, size=14)
    sheet.append(
        [
            "LEDGER REPORT FROM "
            f"{report.start_date.strftime('%d/%m/%Y')} TO {report.end_date.strftime('%d/%m/%Y')}"
        ]
    )
    sheet.append(["Customer", customer.name.upper() if customer else report.customer_id])
    sheet.append(["Phone", customer.phone if customer else ""])
    sheet.append(["Address", customer.address if customer else ""])
    sheet.append(
        ["Opening Balance", round_money(report.opening_balance), balance_side(report.opening_balance)]
    )
    sheet.cell(row=sheet.max_row, column=2).number_format = MONEY_NUMBER_FORMAT
    sheet.append([])

    sheet.append(headers)
    header_row = sheet.max_row
    for column_index in range(1, len(headers) + 1):
        cell = sheet.cell(row=header_row, column=column_index)
        cell.font = bold_font
        cell.alignment = Alignment(horizontal="center")

    money_columns = [len(headers) - 3, len(headers) - 2, len(headers) - 1]
    for entry in report.entries:
        row: list[object] = [entry.entry_date]
        row.extend(entry.product_quantities.get(product.product_id) for product in products)
        row.extend(
            [
                entry.total_quantity,
                round_money(entry.amount_billed) if entry.amount_billed else None,
                round_money(entry.payment_received) if entry.payment_received else None,
                round_money(entry.closing_balance),
                entry.reference or "",
            ]
        )
        sheet.append(row)
        sheet.cell(row=sheet.max_row, column=1).number_format = DATE_NUMBER_FORMAT
        for column_index in money_columns:
            sheet.cell(row=sheet.max_row, column=column_index).number_format = MONEY_NUMBER_FORMAT

    total_row: list[object] = ["TOTAL"]
    total_row.extend(report.total_product_quantities[product.product_id] for product in products)
    total_row.extend(
        [
            report.total_quantity,
            round_money(report.total_amount_billed),
            round_money(report.total_payment_received),
            round_money(report.closing_balance),
            balance_side(report.closing_balance),
        ]
    )
    sheet.append(total_row)
    for column_index in range(1, len(headers) + 1):
        sheet.cell(row=sheet.max_row, column=column_index).font = bold_font
    for column_index in money_columns:
        sheet.cell(row=sheet.max_row, column=column_index).number_format = MONEY_NUMBER_FORMAT

    return workbook


def default_export_name(report: CustomerLedgerReport, customer_name: str) -> str:
    """File name such as ``Ravi_Kumar_Ledger_20240501_20240531.xlsx``."""

    safe_name = "_".join(customer_name.split()) or report.customer_id
    return (
        f"{safe_name}_Ledger_{report.start_date.strftime('%Y%m%d')}"
        f"_{report.end_date.strftime('%Y%m%d')}.xlsx"
    )


def export_ledger_workbook(
    report: CustomerLedgerReport,
    store: DataStore,
    destination: Path,
    *,
    business_name: str,
    overwrite: bool = False,
) -> Path:
    """Write ``report`` to an ``.xlsx`` file.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is
            ``False``.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing export: {destination}")

    workbook = build_ledger_workbook(report, store, business_name=business_name)
    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(destination)
    log.info(
        "Exported ledger for '%s' (%d entries) to '%s'",
        report.customer_id,
        len(report.entries),
        destination,
    )
    return destination

