from django.db import models
from .business import Business

SEQUENCE_KINDS = [
    ("invoice", "Invoice"),
    ("purchase_order", "Purchase order"),
    ("grn", "Goods receipt"),
]


class DocumentSequence(models.Model):
    """Per-business counter; the row is locked while a number is taken."""

    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    kind = models.CharField(max_length=20, choices=SEQUENCE_KINDS)
    last_value = models.PositiveBigIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["business", "kind"], name="uq_business_sequence_kind"
            )
        ]

    def __str__(self):
        return f"{self.business_id}:{self.kind}={self.last_value}"
