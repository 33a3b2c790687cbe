from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import InvalidStateTransition
from ..managers import TenantManager
from .business import Business
from .invoice import Invoice
from .ledger import Transaction

PAYMENT_TYPES = [
    ("received", "Received"),  # from a customer (AR side)
    ("made", "Made"),          # to a vendor (AP side)
]

PAYMENT_METHODS = [
    # Keeps payment method standardized across records
    ("cash", "Cash"),
    ("bank", "Bank Transfer"),
    ("upi", "UPI"),
    ("card", "Card"),
    ("cheque", "Cheque"),
    ("other", "Other"),
]

PAYMENT_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("completed", "Completed"),
    ("failed", "Failed"),
    ("cancelled", "Cancelled"),
]


class Payment(models.Model):  # Money received from or paid to a party

    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    payment_type = models.CharField(max_length=10, choices=PAYMENT_TYPES)
    party_name = models.CharField(max_length=200)

    amount = models.DecimalField(max_digits=18, decimal_places=2)
    payment_date = models.DateField()
    payment_method = models.CharField(
        max_length=10, choices=PAYMENT_METHODS, default="bank")
    status = models.CharField(
        max_length=10, choices=PAYMENT_STATUS_CHOICES, default="completed")

    # Set for customer receipts against an invoice
    invoice = models.ForeignKey(
        Invoice,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    reference_number = models.CharField(max_length=100, null=True, blank=True)
    notes = models.TextField(null=True, blank=True)

    # Ledger posting; only completed payments have one
    transaction = models.OneToOneField(
        Transaction,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="payment",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["business", "payment_date"]),
            models.Index(fields=["business", "invoice"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_positive_amount",
            ),
        ]

    ALLOWED_TRANSITIONS = {
        "pending": ["completed", "failed", "cancelled"],
        "completed": [],
        "failed": [],
        "cancelled": [],
    }

    def __str__(self):
        return f"{self.payment_type} {self.amount} {self.party_name} ({self.status})"

    def clean(self):
        if self.amount is not None and self.amount <= 0:
            raise ValidationError("Payment amount must be > 0")
        if self.invoice_id and self.invoice.business_id != self.business_id:
            raise ValidationError("Invoice must belong to the same business.")
        if self.invoice_id and self.payment_type != "received":
            raise ValidationError("Only received payments settle invoices")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def transition_to(self, new_status):
        if new_status not in self.ALLOWED_TRANSITIONS.get(self.status, []):
            raise InvalidStateTransition("payment", self.status, new_status)
        self.status = new_status
        self.save(update_fields=["status", "transaction"])
        return self


def completed_total(queryset):
    """Sum of completed payment amounts in queryset"""
    return queryset.filter(status="completed").aggregate(
        total=models.Sum("amount")
    )["total"] or Decimal("0.00")
