import logging

from celery import shared_task
from django.db import models
from django.utils import timezone
from django.utils.dateparse import parse_date

from .exceptions import ValidationError

logger = logging.getLogger(__name__)


@shared_task  # register this function as a Celery task
def verify_ledger_integrity(business_id):
    """
    Re-derive the invariants from the stored rows:
    every transaction balances and every product's stock equals its movements.
    """
    # import lazily to avoid circular imports at module import time
    from .models import Transaction
    from .services.inventory import verify_stock

    # Sum debits and credits per transaction in one query
    unbalanced = list(
        Transaction.objects.filter(business_id=business_id)
        .annotate(dr=models.Sum("entries__debit"), cr=models.Sum("entries__credit"))
        .exclude(dr=models.F("cr"))
        .values_list("pk", flat=True)
    )
    for tx_id in unbalanced:
        logger.error("Transaction %s of business %s is not balanced", tx_id, business_id)

    drifted = [product.pk for product, _, _ in verify_stock(business_id)]
    ok = not unbalanced and not drifted
    if ok:
        logger.info("Ledger integrity verified for business %s", business_id)
    return {
        "business_id": business_id,
        "unbalanced_transactions": unbalanced,
        "stock_drift_products": drifted,
        "ok": ok,
    }


@shared_task
def flag_overdue_invoices(business_id, today=None):
    """
    Log and return the issued invoices past their due date.
    today is an ISO date string ("2025-02-01") so the call survives
    the JSON serializer; it defaults to the local date.
    """
    from .services.reports import overdue_invoices

    if today is None:
        today = timezone.localdate()
    elif isinstance(today, str):
        parsed = parse_date(today)
        if parsed is None:
            raise ValidationError(f"today must be an ISO date: {today!r}")
        today = parsed
    overdue = list(overdue_invoices(business_id, today=today))
    if overdue:
        logger.warning(
            "%d overdue invoices for business %s (oldest due %s)",
            len(overdue), business_id, overdue[0].due_date,
        )
    return [inv.invoice_number for inv in overdue]
