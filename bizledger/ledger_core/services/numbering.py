from django.db import transaction

from ..conf import app_setting
from ..models import DocumentSequence

PREFIX_SETTINGS = {
    "invoice": "INVOICE_NUMBER_PREFIX",
    "purchase_order": "PO_NUMBER_PREFIX",
    "grn": "GRN_NUMBER_PREFIX",
}


def format_number(kind, value):
    prefix = app_setting(PREFIX_SETTINGS[kind])
    return f"{prefix}{value:0{app_setting('NUMBER_WIDTH')}d}"


def next_number(business, kind):
    """
    Take the next document number for a business.
    The sequence row stays locked until the caller's transaction ends,
    so concurrent callers in one business queue up behind each other.
    """
    with transaction.atomic():
        seq, _ = DocumentSequence.objects.select_for_update().get_or_create(
            business=business, kind=kind)
        seq.last_value += 1
        seq.save(update_fields=["last_value"])
    return format_number(kind, seq.last_value)
