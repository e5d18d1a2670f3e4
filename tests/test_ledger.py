"""Unit tests for ledger reconstruction, report periods and outstanding dues."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest

from milk_center import ledger
from milk_center.constants import PaymentMethod, ReportPeriod
from milk_center.data_manager import DataStore
from milk_center.exceptions import MissingReferenceError

from conftest import make_order, make_payment


@pytest.fixture
def may_store(dairy_store: DataStore) -> DataStore:
    """Anita (C2, no override) buys milk at 20.00 across early May 2024."""

    dairy_store.products[0] = replace(dairy_store.products[0], price=Decimal("20"))
    dairy_store.orders.extend(
        [
            make_order("O1", "2024-05-02", ("C2", "P1", "10")),
            make_order("O2", "2024-05-05", ("C2", "P1", "5")),
        ]
    )
    dairy_store.payments.append(make_payment("PAY1", "C2", "150", "2024-05-03"))
    return dairy_store


def _closing_balances(report: ledger.CustomerLedgerReport) -> list[tuple[date, Decimal]]:
    return [(entry.entry_date, entry.closing_balance) for entry in report.entries]


# ---------------------------------------------------------------------------
# Report contents
# ---------------------------------------------------------------------------


def test_ledger_scenario_with_interleaved_orders_and_payment(may_store):
    report = ledger.generate_ledger_report(may_store, "C2", "2024-05-01", "2024-05-06")

    assert report.opening_balance == Decimal("0")
    assert [(entry.entry_date, entry.amount_billed, entry.payment_received) for entry in report.entries] == [
        (date(2024, 5, 2), Decimal("200"), Decimal("0")),
        (date(2024, 5, 3), Decimal("0"), Decimal("150")),
        (date(2024, 5, 5), Decimal("100"), Decimal("0")),
    ]
    assert _closing_balances(report) == [
        (date(2024, 5, 2), Decimal("200")),
        (date(2024, 5, 3), Decimal("50")),
        (date(2024, 5, 5), Decimal("150")),
    ]
    assert report.total_amount_billed == Decimal("300")
    assert report.total_payment_received == Decimal("150")
    assert report.closing_balance == Decimal("150")


def test_ledger_fold_is_chronological_for_reverse_inserted_history(may_store):
    """Records stored newest-first must still produce date-ordered running balances."""

    may_store.orders.reverse()
    may_store.payments.insert(0, make_payment("PAY0", "C2", "20", "2024-05-06"))

    report = ledger.generate_ledger_report(may_store, "C2", "2024-05-01", "2024-05-06")

    assert _closing_balances(report) == [
        (date(2024, 5, 2), Decimal("200")),
        (date(2024, 5, 3), Decimal("50")),
        (date(2024, 5, 5), Decimal("150")),
        (date(2024, 5, 6), Decimal("130")),
    ]


def test_same_day_order_and_payment_merge_into_one_entry(may_store):
    may_store.payments.append(
        make_payment("PAY2", "C2", "30", "2024-05-02", PaymentMethod.UPI, "partial")
    )

    report = ledger.generate_ledger_report(may_store, "C2", "2024-05-02", "2024-05-02")

    (entry,) = report.entries
    assert entry.amount_billed == Decimal("200")
    assert entry.payment_received == Decimal("30")
    assert entry.closing_balance == Decimal("170")
    assert entry.order_id == "O1"
    assert entry.payment_id == "PAY2"
    assert entry.reference == "UPI - partial"


def test_reference_uses_last_payment_of_the_day(may_store):
    may_store.payments.append(make_payment("PAY2", "C2", "10", "2024-05-03", PaymentMethod.BANK))

    report = ledger.generate_ledger_report(may_store, "C2", "2024-05-03", "2024-05-03")

    (entry,) = report.entries
    assert entry.payment_received == Decimal("160")
    assert entry.payment_id == "PAY1"
    assert entry.reference == "BANK"


def test_customer_override_is_used_for_billing(dairy_store):
    dairy_store.orders.append(make_order("O1", "2024-05-02", ("C1", "P1", "2"), ("C1", "P2", "1")))

    report = ledger.generate_ledger_report(dairy_store, "C1", "2024-05-01", "2024-05-31")

    (entry,) = report.entries
    assert entry.amount_billed == Decimal("120.00")
    assert entry.product_quantities == {"P1": Decimal("2"), "P2": Decimal("1")}
    assert entry.total_quantity == Decimal("3")


def test_other_customers_items_are_ignored(may_store):
    may_store.orders.append(make_order("O3", "2024-05-04", ("C1", "P1", "3")))

    report = ledger.generate_ledger_report(may_store, "C2", "2024-05-01", "2024-05-06")

    assert date(2024, 5, 4) not in [entry.entry_date for entry in report.entries]


def test_product_totals_start_at_zero_for_every_product(may_store):
    report = ledger.generate_ledger_report(may_store, "C2", "2024-05-01", "2024-05-06")

    assert report.total_product_quantities == {"P1": Decimal("15"), "P2": Decimal("0")}
    assert report.total_quantity == Decimal("15")


def test_report_quantity_maps_are_read_only(may_store):
    report = ledger.generate_ledger_report(may_store, "C2", "2024-05-01", "2024-05-06")

    with pytest.raises(TypeError):
        report.total_product_quantities["P1"] = Decimal("0")
    with pytest.raises(TypeError):
        report.entries[0].product_quantities["P1"] = Decimal("0")
    assert report.entries[0].product_quantities == {"P1": Decimal("10")}


def test_empty_window_keeps_opening_balance(may_store):
    report = ledger.generate_ledger_report(may_store, "C2", "2024-06-01", "2024-06-30")

    assert report.entries == ()
    assert report.opening_balance == Decimal("150")
    assert report.closing_balance == Decimal("150")


def test_deleted_product_bills_at_zero(may_store):
    may_store.products[:] = [product for product in may_store.products if product.product_id != "P1"]

    report = ledger.generate_ledger_report(may_store, "C2", "2024-05-01", "2024-05-06")

    assert report.total_amount_billed == Decimal("0")
    assert report.total_product_quantities["P1"] == Decimal("15")


def test_unknown_customer_raises(may_store):
    with pytest.raises(MissingReferenceError):
        ledger.generate_ledger_report(may_store, "C404", "2024-05-01", "2024-05-06")


def test_reversed_range_raises(may_store):
    with pytest.raises(ValueError):
        ledger.generate_ledger_report(may_store, "C2", "2024-05-06", "2024-05-01")


def test_malformed_date_raises(may_store):
    with pytest.raises(ValueError):
        ledger.generate_ledger_report(may_store, "C2", "2024/05/01", "2024-05-06")


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "start, end",
    [("2024-05-01", "2024-05-06"), ("2024-05-03", "2024-05-05"), ("2024-05-04", "2024-05-31")],
)
def test_closing_balance_identity(may_store, start, end):
    may_store.payments.append(make_payment("PAY2", "C2", "12.345", "2024-05-05"))

    report = ledger.generate_ledger_report(may_store, "C2", start, end)

    assert report.closing_balance == (
        report.opening_balance + report.total_amount_billed - report.total_payment_received
    )


@pytest.mark.parametrize("day", ["2024-05-02", "2024-05-03", "2024-05-04", "2024-05-05", "2024-05-06"])
def test_opening_balance_chains_with_previous_report(may_store, day):
    boundary = date.fromisoformat(day)

    earlier = ledger.generate_ledger_report(may_store, "C2", "2024-04-01", boundary - timedelta(days=1))
    single_day = ledger.generate_ledger_report(may_store, "C2", boundary, boundary)

    assert ledger.calculate_opening_balance(may_store, "C2", boundary) == earlier.closing_balance
    assert single_day.opening_balance == earlier.closing_balance


def test_opening_balance_excludes_start_date(may_store):
    assert ledger.calculate_opening_balance(may_store, "C2", "2024-05-02") == Decimal("0")
    assert ledger.calculate_opening_balance(may_store, "C2", "2024-05-03") == Decimal("200")
    assert ledger.calculate_opening_balance(may_store, "C2", "2024-05-04") == Decimal("50")


def test_money_keeps_full_precision_until_formatting(dairy_store):
    dairy_store.orders.append(make_order("O1", "2024-05-02", ("C2", "P2", "0.333")))

    report = ledger.generate_ledger_report(dairy_store, "C2", "2024-05-01", "2024-05-31")

    assert report.closing_balance == Decimal("9.99000")
    assert ledger.format_money(Decimal("12.345")) == "12.35"
    assert ledger.format_money(Decimal("-0.005")) == "-0.01"


def test_balance_side():
    assert ledger.balance_side(Decimal("10")) == "DR"
    assert ledger.balance_side(Decimal("0")) == "DR"
    assert ledger.balance_side(Decimal("-0.01")) == "CR"


# ---------------------------------------------------------------------------
# Batch reports and presets
# ---------------------------------------------------------------------------


def test_generate_all_ledger_reports_skips_inactive_customers(may_store):
    reports = ledger.generate_all_ledger_reports(may_store, "2024-05-01", "2024-05-31")

    assert [report.customer_id for report in reports] == ["C2"]


@pytest.mark.parametrize(
    "period, expected",
    [
        (ReportPeriod.MONTHLY, (date(2024, 2, 1), date(2024, 2, 29))),
        ("quarterly", (date(2023, 12, 1), date(2024, 2, 29))),
        (ReportPeriod.YEARLY, (date(2023, 3, 1), date(2024, 2, 29))),
    ],
)
def test_report_period_presets(period, expected):
    assert ledger.report_period(period, today=date(2024, 2, 14)) == expected


def test_report_period_rejects_unknown_name():
    with pytest.raises(ValueError):
        ledger.report_period("weekly", today=date(2024, 2, 14))


# ---------------------------------------------------------------------------
# Outstanding dues
# ---------------------------------------------------------------------------


def test_summarize_outstanding_flags_stale_payers(dairy_store):
    dairy_store.customers[0] = replace(
        dairy_store.customers[0],
        outstanding_balance=Decimal("300"),
        last_payment_date=date(2024, 4, 1),
    )
    dairy_store.customers[1] = replace(
        dairy_store.customers[1],
        outstanding_balance=Decimal("100"),
        last_payment_date=date(2024, 5, 10),
    )

    summary = ledger.summarize_outstanding(dairy_store, today=date(2024, 5, 15))

    assert summary.total_outstanding == Decimal("400")
    assert summary.average_outstanding == Decimal("200")
    assert [customer.customer_id for customer in summary.overdue_customers] == ["C1"]
    assert summary.total_overdue == Decimal("300")


def test_summarize_outstanding_handles_empty_store():
    summary = ledger.summarize_outstanding(DataStore(), today=date(2024, 5, 15))

    assert summary.total_outstanding == Decimal("0")
    assert summary.average_outstanding == Decimal("0")
    assert summary.overdue_customers == ()
