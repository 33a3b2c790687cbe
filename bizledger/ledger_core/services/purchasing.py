import logging
from decimal import ROUND_HALF_UP, Decimal

from django.db import models, transaction

from ..conf import app_setting
from ..exceptions import (InvalidStateTransition, NotFoundError,
                          OverReceiptError, ValidationError)
from ..models import (GRN, GRNItem, InventoryProduct, Payment, POItem,
                      PurchaseOrder, Vendor)
from ..models.payment import PAYMENT_METHODS
from .audit_helper import log_action
from .gst import ZERO, round2, to_decimal
from .inventory import record_movement
from .ledger import credit, debit, post_transaction
from .numbering import next_number
from .tenancy import get_for_business, resolve_business

logger = logging.getLogger(__name__)

COST_PLACES = Decimal("0.0001")

_METHODS = {key for key, _ in PAYMENT_METHODS}


# ----------------------------
# Purchase orders
# ----------------------------
def create_purchase_order(business, vendor_id, po_date, items,
                          expected_date=None, notes=""):
    """Create a draft PO numbered PO-000001, PO-000002, ... per business."""
    business = resolve_business(business)
    vendor = get_for_business(Vendor, business, vendor_id)
    if po_date is None:
        raise ValidationError("PO date is required")
    if not items:
        raise ValidationError("A purchase order needs at least one item")

    lines = []
    for i, raw in enumerate(items):
        product = None
        if raw.get("product_id") is not None:
            product = get_for_business(InventoryProduct, business, raw["product_id"])
        description = (raw.get("description") or (product.name if product else "")).strip()
        if not description:
            raise ValidationError(f"Item {i}: description is required")
        quantity = to_decimal(raw.get("quantity"), f"Item {i} quantity")
        if quantity <= 0:
            raise ValidationError(f"Item {i}: quantity must be > 0")
        price = raw.get("unit_price")
        if price is None and product:
            price = product.cost_price
        price = to_decimal(price, f"Item {i} unit_price")
        if price < 0:
            raise ValidationError(f"Item {i}: unit price must be >= 0")
        lines.append((i, product, description, quantity, price))

    with transaction.atomic():
        po = PurchaseOrder.objects.create(
            business=business,
            vendor=vendor,
            po_number=next_number(business, "purchase_order"),
            po_date=po_date,
            expected_date=expected_date,
            total_amount=sum((round2(q * p) for _, _, _, q, p in lines), ZERO),
            notes=notes or "",
        )
        for position, product, description, quantity, price in lines:
            POItem.objects.create(
                business=business,
                purchase_order=po,
                position=position,
                product=product,
                description=description,
                quantity=quantity,
                unit_price=price,
            )
        log_action(action="create", instance=po, changes={"total": po.total_amount})
    logger.info("Created purchase order %s for business %s", po.po_number, business.pk)
    return po


def delete_purchase_order_draft(business, po_id):
    business = resolve_business(business)
    with transaction.atomic():
        po = get_for_business(PurchaseOrder, business, po_id, lock=True)
        if po.status != "draft":
            logger.warning("Refused to delete %s PO %s", po.status, po.po_number)
            raise InvalidStateTransition(
                "purchase order", po.status, "draft", "only drafts can be deleted")
        log_action(action="delete", instance=po)
        po.delete()


def issue_purchase_order(business, po_id):
    """draft → issued. A commitment only: no ledger effect."""
    business = resolve_business(business)
    with transaction.atomic():
        po = get_for_business(PurchaseOrder, business, po_id, lock=True)
        try:
            po.transition_to("issued")
        except InvalidStateTransition:
            logger.warning("Refused to issue %s PO %s", po.status, po.po_number)
            raise
        log_action(action="issue", instance=po)
    logger.info("Issued purchase order %s", po.po_number)
    return po


# ----------------------------
# Goods receipt
# ----------------------------
def received_quantities(po):
    """{po_item_id: cumulative quantity received across all GRNs}"""
    totals = {item_id: Decimal("0") for item_id in po.items.values_list("pk", flat=True)}
    rows = (
        GRNItem.objects.filter(po_item__purchase_order=po)
        .values("po_item_id")
        .annotate(total=models.Sum("quantity_received"))
    )
    for row in rows:
        totals[row["po_item_id"]] = row["total"] or Decimal("0")
    return totals


def _update_average_cost(business, product_id, quantity, unit_price):
    """Weighted-average cost of stock on hand plus the incoming quantity."""
    product = get_for_business(InventoryProduct, business, product_id, lock=True)
    on_hand = max(product.quantity, Decimal("0"))
    total_qty = on_hand + quantity
    if total_qty > 0:
        value = on_hand * product.cost_price + quantity * unit_price
        product.cost_price = (value / total_qty).quantize(COST_PLACES, rounding=ROUND_HALF_UP)
        product.save(update_fields=["cost_price", "updated_at"])
    return product


def create_grn(business, po_id, received_date, items, notes=""):
    """
    Receive goods against an issued PO.
    items: [{"po_item_id": ..., "quantity_received": ...}]
    The PO and its items stay locked from the cumulative-receipt check
    to the last write, so concurrent receipts cannot jointly over-receive.
    """
    business = resolve_business(business)
    if received_date is None:
        raise ValidationError("Received date is required")
    if not items:
        raise ValidationError("A GRN needs at least one line")

    with transaction.atomic():
        po = get_for_business(PurchaseOrder, business, po_id, lock=True)
        # a closed order is fully received, so any quantity is an over-receipt
        if po.status == "draft":
            logger.warning("Refused GRN against draft PO %s", po.po_number)
            raise InvalidStateTransition(
                "purchase order", po.status, "partially_received",
                "goods are received against issued orders only")

        po_items = {
            item.pk: item
            for item in POItem.objects.select_for_update().filter(purchase_order=po)
        }
        received = received_quantities(po)

        requested = {}
        order = []
        for i, raw in enumerate(items):
            po_item_id = raw.get("po_item_id")
            if po_item_id not in po_items:
                raise NotFoundError("POItem", po_item_id)
            quantity = to_decimal(raw.get("quantity_received"), f"Line {i} quantity_received")
            if quantity < 0:
                raise ValidationError(f"Line {i}: quantity received must be >= 0")
            if quantity == 0:
                continue
            if po_item_id not in requested:
                order.append(po_item_id)
            requested[po_item_id] = requested.get(po_item_id, Decimal("0")) + quantity

        for po_item_id in order:
            item = po_items[po_item_id]
            if received[po_item_id] + requested[po_item_id] > item.quantity:
                logger.warning(
                    "Over-receipt on PO %s item %s: ordered %s, received %s, requested %s",
                    po.po_number, po_item_id, item.quantity,
                    received[po_item_id], requested[po_item_id],
                )
                raise OverReceiptError(
                    po_item_id, item.quantity, received[po_item_id], requested[po_item_id])
        if not order:
            raise ValidationError("Nothing received: every line has quantity 0")

        grn = GRN.objects.create(
            business=business,
            purchase_order=po,
            grn_number=next_number(business, "grn"),
            received_date=received_date,
            notes=notes or "",
        )
        value = ZERO
        for po_item_id in order:
            item = po_items[po_item_id]
            quantity = requested[po_item_id]
            GRNItem.objects.create(
                business=business, grn=grn, po_item=item, quantity_received=quantity)
            if item.product_id:
                product = _update_average_cost(
                    business, item.product_id, quantity, item.unit_price)
                record_movement(business, product, "receipt", quantity,
                                f"GRN {grn.grn_number} / {po.po_number}")
            value += round2(quantity * item.unit_price)
            received[po_item_id] += quantity

        if app_setting("POST_GRN_TO_LEDGER") and value > 0:
            grn.transaction = post_transaction(
                business, "grn", grn.pk, received_date,
                [debit("Inventory", value), credit("Accounts Payable", value)],
                description=f"Goods received {grn.grn_number} against {po.po_number}",
            )
            grn.save(update_fields=["transaction"])

        fully = all(received[pk] == item.quantity for pk, item in po_items.items())
        po.transition_to("closed" if fully else "partially_received")
        log_action(action="receive", instance=po,
                   changes={"grn": grn.grn_number, "value": value, "status": po.status})
    logger.info("GRN %s received against PO %s, PO now %s",
                grn.grn_number, po.po_number, po.status)
    return grn


# ----------------------------
# Vendor payments
# ----------------------------
def record_vendor_payment(business, vendor_id, amount, payment_date, method="bank",
                          reference_number=None, notes=None):
    """Money paid to a vendor: Dr Accounts Payable, Cr Cash/Bank."""
    business = resolve_business(business)
    vendor = get_for_business(Vendor, business, vendor_id)
    amount = round2(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be > 0")
    if method not in _METHODS:
        raise ValidationError(f"Unknown payment method: {method!r}")
    if payment_date is None:
        raise ValidationError("Payment date is required")

    with transaction.atomic():
        payment = Payment.objects.create(
            business=business,
            payment_type="made",
            party_name=vendor.name,
            amount=amount,
            payment_date=payment_date,
            payment_method=method,
            status="completed",
            reference_number=reference_number,
            notes=notes,
        )
        payment.transaction = post_transaction(
            business, "payment", payment.pk, payment_date,
            [debit("Accounts Payable", amount),
             credit("Cash" if method == "cash" else "Bank", amount)],
            description=f"Payment to {vendor.name}",
        )
        payment.save(update_fields=["transaction"])
        log_action(action="payment", instance=payment, changes={"amount": amount})
    logger.info("Paid %s to vendor %s", amount, vendor.name)
    return payment
