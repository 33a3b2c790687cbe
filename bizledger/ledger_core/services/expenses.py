import logging

from django.db import transaction

from ..exceptions import ValidationError
from ..models import Expense
from ..models.payment import PAYMENT_METHODS
from .audit_helper import log_action
from .chart import register_account
from .gst import classify, record_split_gst, round2
from .ledger import credit, debit, post_transaction
from .tenancy import resolve_business

logger = logging.getLogger(__name__)

_METHODS = {key for key, _ in PAYMENT_METHODS}


def expense_account_name(category):
    category = " ".join((category or "").split()).title()
    if not category:
        raise ValidationError("Expense category is required")
    if category.endswith("Expense"):
        return category
    return f"{category} Expense"


def record_expense(business, description, amount, expense_date, category,
                   payment_method="bank", gst_amount=0, supplier_gstin=None,
                   notes=None):
    """
    Book a paid expense.
    Dr "<Category> Expense" (net), Dr GST Input (gst), Cr Cash/Bank (gross);
    the GST is recorded as input tax, split CGST/SGST.
    """
    business = resolve_business(business)
    amount = round2(amount)
    gst_amount = round2(gst_amount or 0)
    if amount <= 0:
        raise ValidationError("Expense amount must be > 0")
    if gst_amount < 0:
        raise ValidationError("GST amount must be >= 0")
    if gst_amount > amount:
        raise ValidationError("GST amount cannot exceed the expense amount")
    if payment_method not in _METHODS:
        raise ValidationError(f"Unknown payment method: {payment_method!r}")
    if expense_date is None:
        raise ValidationError("Expense date is required")
    account_name = expense_account_name(category)

    with transaction.atomic():
        register_account(business, account_name, "expense")
        expense = Expense.objects.create(
            business=business,
            description=description,
            amount=amount,
            gst_amount=gst_amount,
            expense_date=expense_date,
            category=category,
            payment_method=payment_method,
            supplier_gstin=supplier_gstin,
            notes=notes,
        )
        net = amount - gst_amount
        entries = [
            debit(account_name, net),
            debit("GST Input", gst_amount),
            credit("Cash" if payment_method == "cash" else "Bank", amount),
        ]
        expense.transaction = post_transaction(
            business, "expense", expense.pk, expense_date,
            [e for e in entries if e.debit or e.credit],
            description=description,
        )
        expense.save(update_fields=["transaction"])
        if gst_amount:
            record_split_gst(
                business, "expense", expense.pk,
                classify("expense", gst_amount, date=expense_date),
                net, inter_state=False,
            )
        log_action(action="create", instance=expense,
                   changes={"amount": amount, "gst": gst_amount, "account": account_name})
    logger.info("Recorded expense %s of %s (%s)", expense.pk, amount, account_name)
    return expense
