from django.core.exceptions import ValidationError
from django.db import models

from ..managers import TenantManager
from .business import Business


# ---------- Customer ----------
# Represents client who receives invoices (AR side)
class Customer(models.Model):
    # Multi-tenant: every customer belongs to a single business.
    business = models.ForeignKey(Business, on_delete=models.CASCADE)

    # The customer’s legal or trade name
    name = models.CharField(max_length=200)
    contact_email = models.EmailField(null=True, blank=True)

    # Place of supply: compared with Business.state to pick CGST+SGST or IGST
    state = models.CharField(max_length=64, blank=True, default="")
    # Registered customers (GSTIN present) are B2B in the sales register
    gstin = models.CharField(max_length=15, blank=True, default="")

    # Standard credit terms
    payment_terms_days = models.IntegerField(default=30)
    """ Example: If terms = 30 → invoice due 30 days after issue. """

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["business", "name"])]
        # Enforce uniqueness per tenant
        constraints = [
            models.UniqueConstraint(
                fields=["business", "name"], name="uq_business_customer_name"
            ),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        if self.payment_terms_days is not None and self.payment_terms_days < 0:
            raise ValidationError("Payment terms cannot be negative")
        return super().clean()

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)


class Vendor(models.Model):  # Mirrors Customer but for purchasing (AP side)

    business = models.ForeignKey(Business, on_delete=models.CASCADE)

    name = models.CharField(max_length=200)
    contact_email = models.EmailField(null=True, blank=True)
    state = models.CharField(max_length=64, blank=True, default="")
    gstin = models.CharField(max_length=15, blank=True, default="")
    payment_terms_days = models.IntegerField(default=30)

    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["business", "name"])]
        # Vendor names must be unique per business
        constraints = [
            models.UniqueConstraint(
                fields=["business", "name"], name="uq_business_vendor_name"
            ),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
