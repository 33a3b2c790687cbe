from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import InvalidStateTransition
from ..managers import TenantManager
from .business import Business
from .ledger import Transaction

BT_STATUS_CHOICES = [
    ("unmatched", "Unmatched"),
    ("matched", "Matched"),
    ("ignored", "Ignored"),
]


# ---------- Banking ----------
class BankTransaction(
    models.Model
):  # Represents single inflow/outflow line from a bank statement
    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    transaction_date = models.DateField()  # when it cleared
    # amount: positive = inflow (deposit), negative = outflow (payment)
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    description = models.TextField(blank=True, default="")
    reference = models.CharField(max_length=200, null=True, blank=True)
    status = models.CharField(
        max_length=10, choices=BT_STATUS_CHOICES, default="unmatched"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Optimizes queries for reconciliation
        indexes = [
            models.Index(fields=["business", "status"]),
            models.Index(fields=["business", "transaction_date"]),
        ]

        constraints = [
            # Within one business, a statement reference is imported once
            # Across businesses, duplicates are allowed
            models.UniqueConstraint(
                fields=["business", "reference"], name="uq_bt_business_ref"
            ),
            models.CheckConstraint(
                condition=~models.Q(amount=0), name="bt_non_zero_amount"
            ),
        ]

    # Show something human-readable in debug logs
    def __str__(self):
        return f"{self.transaction_date} {self.amount} ({self.status})"

    def clean(self):
        if self.amount == 0:
            raise ValidationError("Bank transaction amount cannot be zero")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

    def transition_to(self, new_status):
        # Current state vs. allowed next states
        allowed = {
            "unmatched": ["matched", "ignored"],
            "ignored": ["unmatched"],
            "matched": [],  # a match is final
        }
        if new_status not in allowed.get(self.status, []):
            raise InvalidStateTransition(
                "bank transaction", self.status, new_status)
        self.status = new_status
        self.save(update_fields=["status"])
        return self


class BankReconciliation(models.Model):
    """
    Match of one bank line to one ledger Transaction.
    Both sides are one-to-one, so the database refuses a second
    match for either of them.
    """
    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    bank_transaction = models.OneToOneField(
        BankTransaction, on_delete=models.PROTECT, related_name="reconciliation")
    transaction = models.OneToOneField(
        Transaction, on_delete=models.PROTECT, related_name="reconciliation")
    # 0..1 confidence the match was made with
    score = models.DecimalField(max_digits=5, decimal_places=4)
    matched_at = models.DateTimeField(auto_now_add=True)
    matched_by = models.CharField(max_length=150, null=True, blank=True)

    objects = TenantManager()

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(score__gte=0) & models.Q(score__lte=1),
                name="recon_score_range",
            ),
        ]

    def __str__(self):
        return f"BT {self.bank_transaction_id} → TX {self.transaction_id} ({self.score})"

    def clean(self):
        # Prevent cross-business contamination
        if self.bank_transaction.business_id != self.business_id:
            raise ValidationError(
                "Bank transaction must belong to the same business.")
        if self.transaction.business_id != self.business_id:
            raise ValidationError(
                "Ledger transaction must belong to the same business.")

    def save(self, *args, **kwargs):
        # full_clean would report the one-to-one clash as a generic
        # ValidationError; leave uniqueness to the database
        self.clean_fields()
        self.clean()
        return super().save(*args, **kwargs)
