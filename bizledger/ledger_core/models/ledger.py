from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import AppendOnlyManager
from .business import Business

SOURCE_TYPES = [
    ("invoice", "Invoice"),
    ("invoice_cogs", "Invoice cost of goods"),
    ("payment", "Payment"),
    ("expense", "Expense"),
    ("grn", "Goods receipt"),
    ("reversal", "Reversal"),
    ("journal", "Manual journal"),
]


# ---------- Transaction (Header) & LedgerEntry ----------
class Transaction(models.Model):  # Represents one atomic financial event
    """
    Immutable once created: a correction is a new Transaction
    (see reverses), never an edit of this one.
    """
    # Multi-tenant: every transaction belongs to a business
    business = models.ForeignKey(Business, on_delete=models.CASCADE)

    # Polymorphic source info (invoice, payment, expense, grn, ...)
    # Helps trace back where the transaction originated
    source_type = models.CharField(max_length=20, choices=SOURCE_TYPES)
    source_id = models.BigIntegerField(null=True, blank=True)

    date = models.DateField()
    description = models.TextField(blank=True, default="")

    # Set on a reversal: points at the transaction it mirrors.
    # OneToOne → a transaction can be reversed at most once
    reverses = models.OneToOneField(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="reversed_by",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = AppendOnlyManager()

    class Meta:
        indexes = [
            models.Index(fields=["business", "date"]),
            models.Index(fields=["business", "source_type", "source_id"]),
        ]
        ordering = ("date", "id")

    def __str__(self):
        return f"TX {self.pk} {self.date} [{self.source_type}:{self.source_id}]"

    # Aggregate all debit and credit amounts across entries
    def compute_totals(self):
        """Return debits, credits sums for entries"""
        aggs = self.entries.aggregate(
            total_debit=models.Sum("debit"),
            total_credit=models.Sum("credit"),
        )
        return (
            aggs["total_debit"] or Decimal("0.00"),
            aggs["total_credit"] or Decimal("0.00"),
        )

    # True if double-entry rule holds: total debits = total credits
    def is_balanced(self):
        debit, credit = self.compute_totals()
        return debit == credit

    @property
    def amount(self):
        """Size of the event: the debit side total."""
        debit, _ = self.compute_totals()
        return debit

    def save(self, *args, **kwargs):
        if self.pk and Transaction.objects.filter(pk=self.pk).exists():
            raise ValidationError("Transactions are immutable once created")
        if self.reverses_id and self.reverses.business_id != self.business_id:
            raise ValidationError(
                "A reversal must belong to the same business as the original"
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Transactions cannot be deleted; post a reversal instead")


class LedgerEntry(models.Model):  # One debit or credit line of a Transaction
    """
    Accounts are referenced by name; the chart (Account model) only
    classifies names for reporting.
    """

    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    transaction = models.ForeignKey(
        Transaction,
        on_delete=models.PROTECT,
        related_name="entries",
    )

    account_name = models.CharField(max_length=200)

    debit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    credit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    # Keeps entry order stable inside a transaction
    position = models.PositiveIntegerField(default=0)

    objects = AppendOnlyManager()

    class Meta:
        # For fast queries like “all entries for this account”
        indexes = [
            models.Index(fields=["business", "account_name"]),
            models.Index(fields=["business", "transaction"]),
        ]
        ordering = ("transaction_id", "position", "id")

        constraints = [
            models.CheckConstraint(
                condition=models.Q(debit__gte=0) & models.Q(credit__gte=0),
                name="le_non_negative_amounts",
            ),
            # exactly one side carries the amount
            models.CheckConstraint(
                condition=(
                    (models.Q(debit=0) & models.Q(credit__gt=0)) |
                    (models.Q(debit__gt=0) & models.Q(credit=0))
                ),
                name="le_debit_xor_credit",
            ),
        ]

    def __str__(self):
        return (
            f"{self.transaction_id} | {self.account_name} | "
            f"D:{self.debit} C:{self.credit}"
        )

    def clean(self):
        if self.debit < 0 or self.credit < 0:
            raise ValidationError("Debit and credit must be >= 0")
        if (self.debit > 0) and (self.credit > 0):
            raise ValidationError(
                "LedgerEntry should not have both debit and credit > 0"
            )
        if (self.debit == 0) and (self.credit == 0):
            raise ValidationError(
                "LedgerEntry requires a non-0 amount on either debit or credit"
            )
        # Every entry must belong to same business as its transaction
        if self.transaction_id and self.business_id != self.transaction.business_id:
            raise ValidationError(
                "LedgerEntry.business must equal Transaction.business"
            )

    def save(self, *args, **kwargs):
        if self.pk and LedgerEntry.objects.filter(pk=self.pk).exists():
            raise ValidationError(
                "Ledger entries are immutable; post an offsetting transaction"
            )
        # If business not set but transaction is known, copy it
        if not getattr(self, "business_id", None) and self.transaction_id:
            self.business_id = self.transaction.business_id
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Ledger entries cannot be deleted; post an offsetting transaction"
        )
