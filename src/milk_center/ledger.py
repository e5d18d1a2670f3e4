"""Customer ledger reconstruction.

The ledger never trusts the live ``outstanding_balance`` field. It rebuilds
the opening balance by replaying all order and payment history before the
report window, then folds the window's activity day by day:

* orders and payments are grouped per calendar day;
* days are visited in ascending date order;
* a day's ``closing_balance`` is attached only after every order and payment
  of that day has been merged.

Money is accumulated as full-precision :class:`~decimal.Decimal`; rounding to
two places happens only in :func:`format_money` and in exports.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from . import log
from .constants import ReportPeriod
from .data_manager import CustomerRecord, DataStore, parse_date
from .exceptions import MissingReferenceError
from .rate_resolver import resolve_customer_rate


TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class CustomerLedgerEntry:
    """One day's combined billing and payment activity for a customer."""

    entry_date: date
    product_quantities: Mapping[str, Decimal]
    total_quantity: Decimal
    amount_billed: Decimal
    payment_received: Decimal
    closing_balance: Decimal
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    reference: Optional[str] = None


@dataclass(frozen=True)
class CustomerLedgerReport:
    customer_id: str
    start_date: date
    end_date: date
    opening_balance: Decimal
    entries: Tuple[CustomerLedgerEntry, ...]
    total_product_quantities: Mapping[str, Decimal]
    total_amount_billed: Decimal
    total_payment_received: Decimal
    closing_balance: Decimal

    @property
    def total_quantity(self) -> Decimal:
        return sum(self.total_product_quantities.values(), Decimal("0"))


@dataclass(frozen=True)
class OutstandingSummary:
    total_outstanding: Decimal
    average_outstanding: Decimal
    overdue_customers: Tuple[CustomerRecord, ...]
    total_overdue: Decimal


@dataclass
class _DayActivity:
    entry_date: date
    product_quantities: Dict[str, Decimal] = field(default_factory=dict)
    total_quantity: Decimal = Decimal("0")
    amount_billed: Decimal = Decimal("0")
    payment_received: Decimal = Decimal("0")
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    reference: Optional[str] = None

    def close(self, closing_balance: Decimal) -> CustomerLedgerEntry:
        return CustomerLedgerEntry(
            entry_date=self.entry_date,
            product_quantities=MappingProxyType(dict(self.product_quantities)),
            total_quantity=self.total_quantity,
            amount_billed=self.amount_billed,
            payment_received=self.payment_received,
            closing_balance=closing_balance,
            order_id=self.order_id,
            payment_id=self.payment_id,
            reference=self.reference,
        )


def _require_customer(store: DataStore, customer_id: str) -> CustomerRecord:
    for customer in store.customers:
        if customer.customer_id == customer_id:
            return customer
    log.warning("Ledger requested for unknown customer '%s'", customer_id)
    raise MissingReferenceError(f"Unknown customer id: {customer_id}")


def calculate_opening_balance(store: DataStore, customer_id: str, start_date: date | str) -> Decimal:
    """Replay all history strictly before ``start_date``.

    Every order item of the customer dated before the start is billed at the
    customer's resolved rate; every payment dated before the start is
    subtracted.

    Args:
        store (DataStore): Collections to replay.
        customer_id (str): Customer whose history is replayed.
        start_date (date | str): First day of the report window.

    Returns:
        Decimal: Billed minus paid before ``start_date``.
    """
    start = parse_date(start_date)
    billed = Decimal("0")
    for order in store.orders:
        if order.order_date >= start:
            continue
        for item in order.items:
            if item.customer_id == customer_id:
                billed += item.quantity * resolve_customer_rate(store, customer_id, item.product_id)

    paid = sum(
        (
            payment.amount
            for payment in store.payments
            if payment.customer_id == customer_id and payment.payment_date < start
        ),
        Decimal("0"),
    )
    log.debug("Opening balance for '%s' at %s: billed=%s paid=%s", customer_id, start, billed, paid)
    return billed - paid


def generate_ledger_report(
    store: DataStore, customer_id: str, start_date: date | str, end_date: date | str
) -> CustomerLedgerReport:
    """Build the day-by-day ledger of a customer over an inclusive date range.

    Args:
        store (DataStore): Collections holding orders, payments, products and
            rate overrides.
        customer_id (str): Customer to report on.
        start_date (date | str): First day included.
        end_date (date | str): Last day included.

    Returns:
        CustomerLedgerReport: Opening balance, chronological entries,
            per-product quantity totals (every known product starts at zero),
            billed and received totals, and the closing balance.

    Raises:
        MissingReferenceError: If the customer does not exist.
        ValueError: If a date is malformed or ``start_date`` is after
            ``end_date``.
    """
    start = parse_date(start_date)
    end = parse_date(end_date)
    _require_customer(store, customer_id)
    if start > end:
        raise ValueError(f"Start date {start} is after end date {end}")

    opening_balance = calculate_opening_balance(store, customer_id, start)
    total_product_quantities: Dict[str, Decimal] = {
        product.product_id: Decimal("0") for product in store.products
    }
    days: Dict[date, _DayActivity] = {}

    for order in store.orders:
        if not start <= order.order_date <= end:
            continue
        items = [item for item in order.items if item.customer_id == customer_id]
        if not items:
            continue
        day = days.setdefault(order.order_date, _DayActivity(order.order_date))
        if day.order_id is None:
            day.order_id = order.order_id
        for item in items:
            rate = resolve_customer_rate(store, customer_id, item.product_id)
            day.amount_billed += item.quantity * rate
            day.total_quantity += item.quantity
            day.product_quantities[item.product_id] = (
                day.product_quantities.get(item.product_id, Decimal("0")) + item.quantity
            )
            total_product_quantities[item.product_id] = (
                total_product_quantities.get(item.product_id, Decimal("0")) + item.quantity
            )

    for payment in store.payments:
        if payment.customer_id != customer_id or not start <= payment.payment_date <= end:
            continue
        day = days.setdefault(payment.payment_date, _DayActivity(payment.payment_date))
        if day.payment_id is None:
            day.payment_id = payment.payment_id
        day.payment_received += payment.amount
        reference = payment.payment_method.value.upper()
        if payment.notes:
            reference += f" - {payment.notes}"
        day.reference = reference

    running_balance = opening_balance
    entries: List[CustomerLedgerEntry] = []
    for entry_date in sorted(days):
        day = days[entry_date]
        running_balance += day.amount_billed - day.payment_received
        entries.append(day.close(running_balance))

    report = CustomerLedgerReport(
        customer_id=customer_id,
        start_date=start,
        end_date=end,
        opening_balance=opening_balance,
        entries=tuple(entries),
        total_product_quantities=MappingProxyType(total_product_quantities),
        total_amount_billed=sum((entry.amount_billed for entry in entries), Decimal("0")),
        total_payment_received=sum((entry.payment_received for entry in entries), Decimal("0")),
        closing_balance=running_balance,
    )
    log.info(
        "Generated ledger for '%s' from %s to %s: %d entries, closing %s",
        customer_id,
        start,
        end,
        len(entries),
        running_balance,
    )
    return report


def _has_activity(store: DataStore, customer_id: str, start: date, end: date) -> bool:
    for order in store.orders:
        if start <= order.order_date <= end and any(
            item.customer_id == customer_id for item in order.items
        ):
            return True
    return any(
        payment.customer_id == customer_id and start <= payment.payment_date <= end
        for payment in store.payments
    )


def generate_all_ledger_reports(
    store: DataStore, start_date: date | str, end_date: date | str
) -> List[CustomerLedgerReport]:
    """Ledgers for every customer with at least one order or payment in range."""
    start = parse_date(start_date)
    end = parse_date(end_date)
    return [
        generate_ledger_report(store, customer.customer_id, start, end)
        for customer in store.customers
        if _has_activity(store, customer.customer_id, start, end)
    ]


def _shift_month(day: date, months: int) -> date:
    """First day of the month ``months`` away from ``day``'s month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def _month_end(day: date) -> date:
    return date(day.year, day.month, calendar.monthrange(day.year, day.month)[1])


def report_period(period: ReportPeriod | str, today: Optional[date] = None) -> Tuple[date, date]:
    """Return the ``(start, end)`` window for a preset report period.

    ``monthly`` is the current month, ``quarterly`` the current month and the
    two before it, ``yearly`` the current month and the eleven before it.
    """
    period = ReportPeriod(period)
    today = today or datetime.now().date()
    back = {ReportPeriod.MONTHLY: 0, ReportPeriod.QUARTERLY: -2, ReportPeriod.YEARLY: -11}[period]
    return _shift_month(today, back), _month_end(today)


def summarize_outstanding(
    store: DataStore, today: Optional[date] = None, *, overdue_days: int = 30
) -> OutstandingSummary:
    """Aggregate outstanding balances across customers.

    A customer is overdue when their last payment is older than
    ``overdue_days``. Customers who never paid are not counted as overdue.
    """
    today = today or datetime.now().date()
    cutoff = today - timedelta(days=overdue_days)
    total = sum((customer.outstanding_balance for customer in store.customers), Decimal("0"))
    overdue = tuple(
        customer
        for customer in store.customers
        if customer.last_payment_date is not None and customer.last_payment_date < cutoff
    )
    average = total / len(store.customers) if store.customers else Decimal("0")
    return OutstandingSummary(
        total_outstanding=total,
        average_outstanding=average,
        overdue_customers=overdue,
        total_overdue=sum((customer.outstanding_balance for customer in overdue), Decimal("0")),
    )


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal) -> str:
    """Two-decimal text for display, e.g. ``Decimal("12.345")`` -> ``"12.35"``."""
    return f"{round_money(amount):.2f}"


def balance_side(amount: Decimal) -> str:
    """``DR`` when the customer owes (or is square), ``CR`` when in credit."""
    return "DR" if amount >= 0 else "CR"
