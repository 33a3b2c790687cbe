"""
Read-side views. Every figure is aggregated from LedgerEntry / GSTRecord /
Invoice rows at call time; nothing here is stored.
"""
from decimal import Decimal

from django.db import models
from django.utils import timezone

from ..models import Account, Invoice, LedgerEntry
from .gst import ZERO, gst_summary
from .ledger import account_balance
from .tenancy import resolve_business

# Sign each section naturally: assets/expenses as debits, the rest as credits
DEBIT_SECTIONS = {"asset", "expense"}


def _account_totals(business, start=None, end=None):
    """[(Account, Σdebit, Σcredit)] for every account with entries in range."""
    qs = LedgerEntry.objects.for_business(business)
    if start is not None:
        qs = qs.filter(transaction__date__gte=start)
    if end is not None:
        qs = qs.filter(transaction__date__lte=end)
    accounts = {a.name: a for a in Account.objects.for_business(business)}
    rows = (
        qs.values("account_name")
        .annotate(dr=models.Sum("debit"), cr=models.Sum("credit"))
        .order_by("account_name")
    )
    return [
        (accounts[r["account_name"]], r["dr"] or ZERO, r["cr"] or ZERO)
        for r in rows
        if r["account_name"] in accounts
    ]


def _section_amount(ac_type, dr, cr):
    return dr - cr if ac_type in DEBIT_SECTIONS else cr - dr


def _section(totals, ac_type):
    lines = {
        acct.name: _section_amount(ac_type, dr, cr)
        for acct, dr, cr in totals
        if acct.ac_type == ac_type
    }
    return lines, sum(lines.values(), ZERO)


def total_revenue(business, start=None, end=None) -> Decimal:
    """Income net of contra-revenue (Sales Discount)."""
    business = resolve_business(business)
    return _section(_account_totals(business, start, end), "income")[1]


def total_expenses(business, start=None, end=None) -> Decimal:
    business = resolve_business(business)
    return _section(_account_totals(business, start, end), "expense")[1]


def net_profit(business, start=None, end=None) -> Decimal:
    business = resolve_business(business)
    totals = _account_totals(business, start, end)
    return _section(totals, "income")[1] - _section(totals, "expense")[1]


def accounts_receivable(business, as_of=None) -> Decimal:
    return account_balance(business, "Accounts Receivable", as_of)


def accounts_payable(business, as_of=None) -> Decimal:
    return account_balance(business, "Accounts Payable", as_of)


def gst_payable(business, period=None) -> Decimal:
    """
    Output minus input GST. With a period ("YYYY-MM") it comes from the
    GST records of that month, otherwise from the ledger balances.
    """
    business = resolve_business(business)
    if period:
        return gst_summary(business, period)["net_payable"]
    return (account_balance(business, "GST Output")
            - account_balance(business, "GST Input"))


def overdue_invoices(business, today=None):
    """Issued (unpaid) invoices whose due date has passed."""
    business = resolve_business(business)
    today = today or timezone.localdate()
    return (
        Invoice.objects.for_business(business)
        .filter(status="issued", due_date__lt=today)
        .order_by("due_date", "invoice_number")
    )


def trial_balance(business, as_of=None):
    business = resolve_business(business)
    rows = []
    total_dr = total_cr = ZERO
    for acct, dr, cr in _account_totals(business, end=as_of):
        net = dr - cr
        row = {
            "account": acct.name,
            "ac_type": acct.ac_type,
            "debit": net if net > 0 else ZERO,
            "credit": -net if net < 0 else ZERO,
        }
        total_dr += row["debit"]
        total_cr += row["credit"]
        rows.append(row)
    return {
        "rows": rows,
        "total_debit": total_dr,
        "total_credit": total_cr,
        "balanced": total_dr == total_cr,
    }


def balance_sheet(business, as_of=None):
    """
    Assets = Liabilities + Equity, with income minus expenses to date
    shown in equity as current earnings.
    """
    business = resolve_business(business)
    totals = _account_totals(business, end=as_of)
    assets, total_assets = _section(totals, "asset")
    liabilities, total_liabilities = _section(totals, "liability")
    equity, total_equity = _section(totals, "equity")
    earnings = _section(totals, "income")[1] - _section(totals, "expense")[1]
    equity["Current Earnings"] = earnings
    total_equity += earnings
    return {
        "as_of": as_of,
        "assets": assets,
        "liabilities": liabilities,
        "equity": equity,
        "total_assets": total_assets,
        "total_liabilities": total_liabilities,
        "total_equity": total_equity,
        "balanced": total_assets == total_liabilities + total_equity,
    }


def profit_and_loss(business, start=None, end=None):
    business = resolve_business(business)
    totals = _account_totals(business, start, end)
    income, total_income = _section(totals, "income")
    expenses, total_expense = _section(totals, "expense")
    return {
        "start": start,
        "end": end,
        "income": income,
        "expenses": expenses,
        "total_income": total_income,
        "total_expenses": total_expense,
        "net_profit": total_income - total_expense,
    }
