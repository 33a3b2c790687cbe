from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import InvalidStateTransition
from ..managers import TenantManager
from .business import Business
from .inventory import InventoryProduct
from .ledger import Transaction
from .party import Vendor

PO_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("issued", "Issued"),
    ("partially_received", "Partially received"),
    ("closed", "Closed"),
]


class PurchaseOrder(models.Model):  # A commitment to buy from a vendor
    """
    Carries no ledger effect by itself; goods received against it
    (GRN) move stock and, optionally, post to the ledger.
    """

    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    # prevent deleting a vendor who has purchase orders
    vendor = models.ForeignKey(Vendor, on_delete=models.PROTECT)

    # human-readable (e.g. "PO-000001")
    po_number = models.CharField(max_length=64)
    po_date = models.DateField()
    expected_date = models.DateField(null=True, blank=True)

    status = models.CharField(
        max_length=20, choices=PO_STATUS_CHOICES, default="draft")

    total_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["business", "status"])]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "po_number"], name="uq_po_business_number"
            ),
        ]

    ALLOWED_TRANSITIONS = {
        "draft": ["issued"],
        "issued": ["partially_received", "closed"],
        "partially_received": ["partially_received", "closed"],
        "closed": [],
    }

    def __str__(self):
        return f"PO {self.po_number}"

    def clean(self):
        if self.vendor_id and self.vendor.business_id != self.business_id:
            raise ValidationError("Vendor must belong to the same business.")
        if self.expected_date and self.expected_date < self.po_date:
            raise ValidationError("Expected date cannot be before PO date")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.status != "draft":
            raise ValidationError(
                f"Cannot delete a {self.status} purchase order.")
        return super().delete(*args, **kwargs)

    def transition_to(self, new_status):
        if new_status not in self.ALLOWED_TRANSITIONS.get(self.status, []):
            raise InvalidStateTransition(
                "purchase order", self.status, new_status)
        self.status = new_status
        self.save(update_fields=["status"])
        return self


class POItem(models.Model):
    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    purchase_order = models.ForeignKey(
        PurchaseOrder, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveIntegerField(default=0)

    product = models.ForeignKey(
        InventoryProduct, null=True, blank=True, on_delete=models.PROTECT)
    description = models.TextField()

    # Ordered quantity; the ceiling for cumulative receipts
    quantity = models.DecimalField(max_digits=14, decimal_places=4)
    unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00"))
    line_total = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    objects = TenantManager()

    class Meta:
        ordering = ("purchase_order_id", "position", "id")
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0) & models.Q(unit_price__gte=0),
                name="poitem_valid_amounts",
            ),
        ]

    def __str__(self):
        return f"{self.purchase_order} - {self.description} x {self.quantity}"

    def clean(self):
        if self.quantity is not None and self.quantity <= 0:
            raise ValidationError("Quantity must be > 0")
        if self.unit_price is not None and self.unit_price < 0:
            raise ValidationError("Unit price must be >= 0")
        po = self.purchase_order
        if po and po.business_id != self.business_id:
            raise ValidationError("POItem.business must match PurchaseOrder.business")
        if self.product_id and self.product.business_id != self.business_id:
            raise ValidationError(
                "POItem.business must match InventoryProduct.business")

    def save(self, *args, **kwargs):
        from ..services.gst import round2

        if not getattr(self, "business_id", None) and self.purchase_order_id:
            self.business_id = self.purchase_order.business_id
        self.line_total = round2(self.quantity * self.unit_price)
        self.full_clean()
        return super().save(*args, **kwargs)


class GRN(models.Model):  # Goods Receipt Note: goods physically received
    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    purchase_order = models.ForeignKey(
        PurchaseOrder, on_delete=models.PROTECT, related_name="grns")
    grn_number = models.CharField(max_length=64)
    received_date = models.DateField()
    notes = models.TextField(blank=True, default="")

    # Dr Inventory / Cr Accounts Payable, when receipts post to the ledger
    transaction = models.OneToOneField(
        Transaction,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="grn",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        verbose_name = "GRN"
        indexes = [models.Index(fields=["business", "purchase_order"])]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "grn_number"], name="uq_grn_business_number"
            ),
        ]

    def __str__(self):
        return f"GRN {self.grn_number}"

    def clean(self):
        po = self.purchase_order
        if po and po.business_id != self.business_id:
            raise ValidationError("GRN.business must match PurchaseOrder.business")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


class GRNItem(models.Model):
    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    grn = models.ForeignKey(GRN, on_delete=models.CASCADE, related_name="items")
    po_item = models.ForeignKey(
        POItem, on_delete=models.PROTECT, related_name="receipts")
    quantity_received = models.DecimalField(max_digits=14, decimal_places=4)

    objects = TenantManager()

    class Meta:
        verbose_name = "GRN item"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity_received__gte=0),
                name="grnitem_non_negative_qty",
            ),
        ]

    def __str__(self):
        return f"{self.grn} - {self.po_item_id} x {self.quantity_received}"

    def clean(self):
        if self.quantity_received is not None and self.quantity_received < 0:
            raise ValidationError("Quantity received must be >= 0")
        if self.po_item_id and self.po_item.purchase_order_id != self.grn.purchase_order_id:
            raise ValidationError("PO item does not belong to this GRN's order")
        if self.grn_id and self.grn.business_id != self.business_id:
            raise ValidationError("GRNItem.business must match GRN.business")

    def save(self, *args, **kwargs):
        if not getattr(self, "business_id", None) and self.grn_id:
            self.business_id = self.grn.business_id
        self.full_clean()
        return super().save(*args, **kwargs)
