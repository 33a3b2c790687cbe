from django.core.exceptions import ValidationError
from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .models import (Account, InventoryMovement, Invoice, LedgerEntry,
                     PurchaseOrder, Transaction)

""" Block invoice deletion once it has left draft."""


# pre_delete signal auto-fires just before Django deletes a model instance,
# including deletes cascading from a parent row
@receiver(pre_delete, sender=Invoice)
def prevent_delete_non_draft_invoice(sender, instance, **kwargs):
    if instance.status != "draft":
        raise ValidationError(
            f"Cannot delete a {instance.status} invoice; void it instead.")


@receiver(pre_delete, sender=PurchaseOrder)
def prevent_delete_non_draft_po(sender, instance, **kwargs):
    if instance.status != "draft":
        raise ValidationError(
            f"Cannot delete a {instance.status} purchase order.")


"""Ledger rows and stock movements are corrected by new rows, never removed."""


@receiver(pre_delete, sender=Transaction)
@receiver(pre_delete, sender=LedgerEntry)
@receiver(pre_delete, sender=InventoryMovement)
def prevent_delete_append_only(sender, instance, **kwargs):
    raise ValidationError(f"{sender.__name__} rows cannot be deleted.")


"""Block deletion if account has ever been used in a ledger entry."""


@receiver(pre_delete, sender=Account)
def prevent_delete_account_with_entries(sender, instance, **kwargs):
    if LedgerEntry.objects.filter(
        business_id=instance.business_id, account_name=instance.name
    ).exists():
        raise ValidationError("Cannot delete account used in ledger entries.")
