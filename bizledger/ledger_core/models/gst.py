import re
from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .business import Business

GST_TYPES = [
    ("CGST", "Central GST"),
    ("SGST", "State GST"),
    ("IGST", "Integrated GST"),
]

GST_DIRECTIONS = [
    ("output", "Output"),  # collected on sales
    ("input", "Input"),    # paid on purchases / expenses
]

TAX_PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class GSTRecord(models.Model):
    """
    One tax component of one source document.
    Voiding a document adds negative records in the same period
    rather than deleting the originals.
    """

    business = models.ForeignKey(Business, on_delete=models.CASCADE)

    source_type = models.CharField(max_length=20)
    source_id = models.BigIntegerField()

    gst_type = models.CharField(max_length=4, choices=GST_TYPES)
    direction = models.CharField(max_length=6, choices=GST_DIRECTIONS)

    # Base the tax was computed on, and the tax itself
    taxable_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    amount = models.DecimalField(max_digits=18, decimal_places=2)

    # "YYYY-MM"
    tax_period = models.CharField(max_length=7)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        verbose_name = "GST record"
        indexes = [
            models.Index(fields=["business", "tax_period", "direction"]),
            models.Index(fields=["business", "source_type", "source_id"]),
        ]

    def __str__(self):
        return (
            f"{self.tax_period} {self.direction} {self.gst_type} "
            f"{self.amount} [{self.source_type}:{self.source_id}]"
        )

    def clean(self):
        if not TAX_PERIOD_RE.match(self.tax_period or ""):
            raise ValidationError("Tax period must look like YYYY-MM")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
