from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import InvalidStateTransition
from ..managers import TenantManager
from .business import Business
from .inventory import InventoryProduct
from .ledger import Transaction
from .party import Customer

INV_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("issued", "Issued"),
    ("paid", "Paid"),
    ("voided", "Voided"),
]

# Fields that carry financial effect: frozen once the invoice leaves draft
FROZEN_FIELDS = (
    "business_id",
    "invoice_number",
    "invoice_date",
    "discount_amount",
    "subtotal",
    "gst_amount",
    "total_amount",
)


class Invoice(models.Model):  # Represents a customer invoice

    # Invoice belongs to one business (multi-tenant)
    business = models.ForeignKey(Business, on_delete=models.CASCADE)

    # Optionally linked to a Customer; the name is denormalized for display
    customer = models.ForeignKey(
        Customer,
        null=True,
        blank=True,
        # prevent deleting customer who has an invoice
        on_delete=models.PROTECT,
    )
    customer_name = models.CharField(max_length=200)

    # human-readable (e.g. "INV-000001"), allocated when issued
    invoice_number = models.CharField(max_length=64, null=True, blank=True)
    invoice_date = models.DateField()
    due_date = models.DateField(null=True, blank=True)

    status = models.CharField(
        max_length=10, choices=INV_STATUS_CHOICES, default="draft"
    )
    """ Workflow:
        draft = editable, no financial effect.
        issued = posted to the ledger, awaiting payment.
        paid = completed payments cover the total.
        voided = cancelled (issuance reversed if it had been issued). """

    # Amounts, computed at issue time
    discount_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    subtotal = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    gst_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    notes = models.TextField(blank=True, default="")

    # Ledger links set when issued
    issue_transaction = models.OneToOneField(
        Transaction,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="issued_invoice",
    )
    cogs_transaction = models.OneToOneField(
        Transaction,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="cogs_invoice",
    )
    issued_at = models.DateTimeField(null=True, blank=True)

    void_reason = models.TextField(blank=True, default="")
    voided_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["business", "status"]),
            models.Index(fields=["business", "due_date"]),
            models.Index(fields=["business", "customer"]),
        ]

        constraints = [
            # Within one business, each invoice number must be unique
            # Across businesses, duplicates are allowed
            models.UniqueConstraint(
                fields=["business", "invoice_number"],
                name="uq_invoice_business_number"
            ),
            models.CheckConstraint(
                condition=models.Q(discount_amount__gte=0) &
                models.Q(total_amount__gte=0),
                name="inv_non_negative_amounts",
            ),
        ]

    # Current state vs. allowed next states
    ALLOWED_TRANSITIONS = {
        "draft": ["issued", "voided"],
        "issued": ["paid", "voided"],
        "paid": [],  # paid invoices are final
        "voided": [],
    }

    def __str__(self):
        # If no invoice number, fall back to database ID
        return f"Inv {self.invoice_number or self.pk}"

    @property
    def display_number(self):
        return self.invoice_number or f"draft-{self.pk}"

    def clean(self):
        """Freeze financial fields once the invoice has left draft"""
        if self.customer_id and self.customer.business_id != self.business_id:
            raise ValidationError("Customer must belong to the same business.")
        if self.due_date and self.due_date < self.invoice_date:
            raise ValidationError("Due date cannot be before invoice date")
        if self.pk:
            orig = Invoice.objects.filter(pk=self.pk).first()
            if orig and orig.status != "draft":
                changed = [
                    f for f in FROZEN_FIELDS
                    if getattr(orig, f) != getattr(self, f)
                ]
                if changed:
                    raise ValidationError(
                        f"Cannot modify {changed} on a {orig.status} invoice."
                    )

    def save(self, *args, **kwargs):
        self.full_clean()  # will trigger clean()
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        # Only drafts have no financial effect; others are voided instead
        if self.status != "draft":
            raise ValidationError(
                f"Cannot delete a {self.status} invoice; void it instead.")
        return super().delete(*args, **kwargs)

    def check_transition(self, new_status, detail=None):
        # Look up what states are allowed from current self.status
        if new_status not in self.ALLOWED_TRANSITIONS.get(self.status, []):
            raise InvalidStateTransition(
                "invoice", self.status, new_status, detail)

    def transition_to(self, new_status, update_fields=None):
        self.check_transition(new_status)
        self.status = new_status
        if update_fields is not None:
            update_fields = list(update_fields) + ["status"]
        self.save(update_fields=update_fields)


class InvoiceItem(models.Model):  # One product/service line on the invoice

    business = models.ForeignKey(Business, on_delete=models.CASCADE)
    invoice = models.ForeignKey(
        Invoice, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveIntegerField(default=0)

    # Optionally linked to a stock product (triggers a stock movement on issue)
    product = models.ForeignKey(
        InventoryProduct,
        null=True,
        blank=True,
        # Prevent deleting a product which has been invoiced
        on_delete=models.PROTECT,
    )
    description = models.TextField()

    # Core pricing: unit_price as entered
    quantity = models.DecimalField(max_digits=14, decimal_places=4)
    unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00"))
    # True when unit_price already contains GST
    prices_include_tax = models.BooleanField(default=False)
    gst_rate = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("0.00"))
    # taxable base plus this line's rounded GST
    line_total = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    # Cost snapshot for margin / cost-of-goods reporting
    cost_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00"))

    objects = TenantManager()

    class Meta:
        ordering = ("invoice_id", "position", "id")
        indexes = [models.Index(fields=["business", "invoice"])]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0) &
                models.Q(unit_price__gte=0) &
                models.Q(gst_rate__gte=0) &
                models.Q(cost_price__gte=0),
                name="invitem_valid_amounts",
            ),
        ]

    def __str__(self):
        return f"{self.invoice} - {self.description} - {self.line_total}"

    def clean(self):
        if self.quantity is not None and self.quantity <= 0:
            raise ValidationError("Quantity must be > 0")
        if self.unit_price is not None and self.unit_price < 0:
            raise ValidationError("Unit price must be >= 0")
        if self.gst_rate is not None and self.gst_rate < 0:
            raise ValidationError("GST rate must be >= 0")

        # Tenant safety
        if self.invoice_id and self.invoice.business_id != self.business_id:
            raise ValidationError(
                "InvoiceItem.business must match Invoice.business")
        if self.product_id and self.product.business_id != self.business_id:
            raise ValidationError(
                "InvoiceItem.business must match InventoryProduct.business")

    def tax(self):
        # lazy import to avoid circular import at module load time
        from ..services.gst import compute_line_gst

        return compute_line_gst(self.quantity, self.unit_price, self.gst_rate,
                                prices_include_tax=self.prices_include_tax)

    def save(self, *args, **kwargs):
        if not getattr(self, "business_id", None) and self.invoice_id:
            self.business_id = self.invoice.business_id
        if self.invoice_id and self.invoice.status != "draft":
            raise ValidationError(
                f"Cannot change items of a {self.invoice.status} invoice.")
        # compute line_total always
        tax = self.tax()
        self.line_total = tax.gross
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.invoice.status != "draft":
            raise ValidationError(
                f"Cannot remove items from a {self.invoice.status} invoice.")
        return super().delete(*args, **kwargs)
