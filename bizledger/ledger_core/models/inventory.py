from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import AppendOnlyManager, TenantManager
from .business import Business

MOVEMENT_TYPES = [
    ("receipt", "Receipt"),              # goods received against a PO (GRN)
    ("sale", "Sale"),                    # invoice issued
    ("sale_reversal", "Sale reversal"),  # issued invoice voided
    ("adjustment", "Adjustment"),        # manual stock count / correction
]


class ProductCategory(models.Model):
    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    name = models.CharField(max_length=120)

    objects = TenantManager()

    class Meta:
        verbose_name_plural = "product categories"
        constraints = [
            models.UniqueConstraint(
                fields=["business", "name"], name="uq_business_category_name"
            )
        ]

    def __str__(self):
        return self.name


# ---------- Products (stock items) ----------
class InventoryProduct(models.Model):  # Something a business sells & purchases

    business = models.ForeignKey(Business, on_delete=models.CASCADE)

    # Stock Keeping Unit (optional unique code per product)
    sku = models.CharField(max_length=80, null=True, blank=True)
    name = models.CharField(max_length=200)

    category = models.ForeignKey(
        ProductCategory,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="products",
    )

    # Selling price and latest weighted-average purchase cost
    unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00"))
    cost_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00"))
    gst_rate = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("0.00"))

    # True when unit_price already contains GST
    prices_include_tax = models.BooleanField(default=False)

    # Current stock level. Only services.inventory.record_movement
    # changes it, always together with an InventoryMovement row
    quantity = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("0"))
    reorder_level = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("10"))

    is_active = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["business", "name"])]
        # Ensure each SKU is unique within a business
        constraints = [
            models.UniqueConstraint(
                fields=["business", "sku"], name="uq_business_product_sku"
            ),
            models.CheckConstraint(
                condition=models.Q(unit_price__gte=0) &
                models.Q(cost_price__gte=0) &
                models.Q(gst_rate__gte=0),
                name="product_non_negative_prices",
            ),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        cat = self.category
        if cat and cat.business_id != self.business_id:
            raise ValidationError(
                "Category must belong to the same business as the product."
            )

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)


class InventoryMovement(models.Model):
    """
    Append-only audit trail: the running sum of quantity per product
    always equals InventoryProduct.quantity.
    """
    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    product = models.ForeignKey(
        InventoryProduct, on_delete=models.PROTECT, related_name="movements")
    movement_type = models.CharField(max_length=20, choices=MOVEMENT_TYPES)
    # signed delta: positive adds stock, negative removes it
    quantity = models.DecimalField(max_digits=14, decimal_places=4)
    reference = models.CharField(max_length=200, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    objects = AppendOnlyManager()

    class Meta:
        indexes = [models.Index(fields=["business", "product"])]
        ordering = ("created_at", "id")

    def __str__(self):
        return f"{self.product_id} {self.movement_type} {self.quantity:+}"

    def clean(self):
        if self.quantity == 0:
            raise ValidationError("Movement quantity cannot be zero")
        if self.product_id and self.product.business_id != self.business_id:
            raise ValidationError(
                "Movement must belong to the same business as the product")

    def save(self, *args, **kwargs):
        if self.pk and InventoryMovement.objects.filter(pk=self.pk).exists():
            raise ValidationError("Inventory movements are append-only")
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Inventory movements cannot be deleted; record an adjustment")
