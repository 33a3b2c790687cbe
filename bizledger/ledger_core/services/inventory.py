import logging
from decimal import Decimal

from django.db import models, transaction

from ..conf import app_setting
from ..exceptions import ValidationError
from ..models import InventoryMovement, InventoryProduct
from ..models.inventory import MOVEMENT_TYPES
from .gst import to_decimal
from .tenancy import get_for_business, resolve_business

logger = logging.getLogger(__name__)

_MOVEMENT_TYPES = {key for key, _ in MOVEMENT_TYPES}


def record_movement(business, product, movement_type, quantity, reference=""):
    """
    Apply a signed stock delta to a product and append the matching
    movement row, under a row lock on the product.
    """
    business = resolve_business(business)
    if movement_type not in _MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type!r}")
    delta = to_decimal(quantity, "quantity")
    if delta == 0:
        raise ValidationError("Movement quantity cannot be zero")

    product_id = product.pk if isinstance(product, InventoryProduct) else product
    with transaction.atomic():
        locked = get_for_business(InventoryProduct, business, product_id, lock=True)
        new_quantity = locked.quantity + delta
        if new_quantity < 0 and not app_setting("ALLOW_NEGATIVE_STOCK"):
            logger.warning(
                "Insufficient stock for product %s: on hand %s, change %s",
                locked.pk, locked.quantity, delta,
            )
            raise ValidationError(
                f"Insufficient stock for {locked.name}: "
                f"on hand {locked.quantity}, requested {-delta}"
            )
        locked.quantity = new_quantity
        locked.save(update_fields=["quantity", "updated_at"])
        movement = InventoryMovement.objects.create(
            business=business,
            product=locked,
            movement_type=movement_type,
            quantity=delta,
            reference=reference or "",
        )
    if isinstance(product, InventoryProduct):
        product.quantity = new_quantity
    logger.info("Stock %s of %s on product %s, now %s",
                movement_type, delta, locked.pk, new_quantity)
    return movement


def adjust_stock(business, product_id, quantity, mode="set", notes=""):
    """
    Manual stock correction.
    mode "in" adds quantity, "out" removes it, "set" moves stock to exactly quantity.
    Returns the movement, or None when nothing changes.
    """
    business = resolve_business(business)
    quantity = to_decimal(quantity, "quantity")
    if quantity < 0:
        raise ValidationError("Quantity must be >= 0")

    with transaction.atomic():
        product = get_for_business(InventoryProduct, business, product_id, lock=True)
        if mode == "in":
            delta = quantity
        elif mode == "out":
            delta = -quantity
        elif mode == "set":
            delta = quantity - product.quantity
        else:
            raise ValidationError(f"Unknown adjustment mode: {mode!r}")
        if delta == 0:
            return None
        return record_movement(
            business, product, "adjustment", delta,
            notes or f"Stock adjustment ({mode})",
        )


def stock_from_movements(product) -> Decimal:
    return InventoryMovement.objects.filter(product=product).aggregate(
        total=models.Sum("quantity")
    )["total"] or Decimal("0")


def verify_stock(business):
    """Products whose quantity differs from the sum of their movements."""
    business = resolve_business(business)
    sums = {
        row["product_id"]: row["total"]
        for row in InventoryMovement.objects.for_business(business)
        .values("product_id")
        .annotate(total=models.Sum("quantity"))
    }
    drifted = []
    for product in InventoryProduct.objects.for_business(business):
        computed = sums.get(product.pk) or Decimal("0")
        if computed != product.quantity:
            logger.error(
                "Stock drift on product %s (%s): recorded %s, movements sum %s",
                product.pk, product.name, product.quantity, computed,
            )
            drifted.append((product, product.quantity, computed))
    return drifted


def low_stock_products(business):
    business = resolve_business(business)
    return (
        InventoryProduct.objects.active(business)
        .filter(quantity__lte=models.F("reorder_level"))
        .order_by("name")
    )


def create_product(business, name, opening_stock=0, **fields):
    """Create a product; opening stock is booked as an adjustment movement."""
    business = resolve_business(business)
    opening_stock = to_decimal(opening_stock, "opening_stock")
    if opening_stock < 0:
        raise ValidationError("Opening stock must be >= 0")
    fields.pop("quantity", None)
    with transaction.atomic():
        product = InventoryProduct.objects.create(
            business=business, name=name, quantity=Decimal("0"), **fields)
        if opening_stock:
            record_movement(business, product, "adjustment", opening_stock,
                            "Opening stock")
    return product
