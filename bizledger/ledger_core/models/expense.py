from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .business import Business
from .ledger import Transaction
from .payment import PAYMENT_METHODS


class Expense(models.Model):  # A direct spend paid out of cash or bank
    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    description = models.CharField(max_length=255)

    # Gross amount paid, GST included
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    gst_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    expense_date = models.DateField()

    # e.g. "Rent" → posted to the "Rent Expense" account
    category = models.CharField(max_length=100)
    payment_method = models.CharField(
        max_length=10, choices=PAYMENT_METHODS, default="bank")
    supplier_gstin = models.CharField(max_length=15, null=True, blank=True)
    notes = models.TextField(null=True, blank=True)

    transaction = models.OneToOneField(
        Transaction,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="expense",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["business", "expense_date"]),
            models.Index(fields=["business", "category"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0) & models.Q(gst_amount__gte=0),
                name="expense_valid_amounts",
            ),
        ]

    def __str__(self):
        return f"{self.expense_date} {self.category}: {self.amount}"

    @property
    def net_amount(self):
        return self.amount - self.gst_amount

    def clean(self):
        if self.amount is not None and self.amount <= 0:
            raise ValidationError("Expense amount must be > 0")
        if self.gst_amount is not None and self.gst_amount < 0:
            raise ValidationError("GST amount must be >= 0")
        if (self.amount is not None and self.gst_amount is not None
                and self.gst_amount > self.amount):
            raise ValidationError("GST amount cannot exceed the expense amount")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
