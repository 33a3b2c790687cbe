import logging
from datetime import timedelta
from decimal import Decimal

from django.core.exceptions import NON_FIELD_ERRORS
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from ..conf import app_setting
from ..exceptions import (DuplicateInvoiceNumber, InvalidStateTransition,
                          ValidationError)
from ..models import Customer, InventoryProduct, Invoice, InvoiceItem, Payment
from ..models.payment import PAYMENT_METHODS, completed_total
from .audit_helper import log_action
from .gst import (ZERO, classify, is_inter_state, record_split_gst,
                  reverse_gst_records, round2, to_decimal)
from .inventory import record_movement
from .ledger import credit, debit, post_transaction, reverse_transaction
from .numbering import next_number
from .tenancy import get_for_business, resolve_business

logger = logging.getLogger(__name__)

_METHODS = {key for key, _ in PAYMENT_METHODS}


# ----------------------------
# Drafts
# ----------------------------
def _build_items(business, items):
    """Validate raw item dicts into InvoiceItem field dicts."""
    if not items:
        raise ValidationError("An invoice needs at least one item")
    built = []
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
            price = product.unit_price
        price = to_decimal(price, f"Item {i} unit_price")
        if price < 0:
            raise ValidationError(f"Item {i}: unit price must be >= 0")

        rate = raw.get("gst_rate")
        if rate is None:
            rate = product.gst_rate if product else ZERO
        rate = to_decimal(rate, f"Item {i} gst_rate")
        if rate < 0:
            raise ValidationError(f"Item {i}: GST rate must be >= 0")

        inclusive = raw.get("prices_include_tax")
        if inclusive is None:
            inclusive = product.prices_include_tax if product else False
        built.append({
            "position": i,
            "product": product,
            "description": description,
            "quantity": quantity,
            "unit_price": price,
            "gst_rate": rate,
            "prices_include_tax": bool(inclusive),
            "cost_price": product.cost_price if product else ZERO,
        })
    return built


def _resolve_customer(business, customer):
    if customer is None or isinstance(customer, Customer):
        if customer is not None and customer.business_id != business.pk:
            raise ValidationError("Customer must belong to the same business.")
        return customer
    return get_for_business(Customer, business, customer)


def _discount(value):
    discount = round2(value or 0)
    if discount < 0:
        raise ValidationError("Discount must be >= 0")
    return discount


def create_invoice_draft(business, customer_name, invoice_date, items,
                         discount=0, customer=None, due_date=None, notes=""):
    """Persist an editable invoice with its items; nothing financial happens yet."""
    business = resolve_business(business)
    customer = _resolve_customer(business, customer)
    customer_name = (customer_name or (customer.name if customer else "")).strip()
    if not customer_name:
        raise ValidationError("Customer name is required")
    if invoice_date is None:
        raise ValidationError("Invoice date is required")
    if due_date is None and customer is not None:
        due_date = invoice_date + timedelta(days=customer.payment_terms_days)

    built = _build_items(business, items)
    with transaction.atomic():
        invoice = Invoice.objects.create(
            business=business,
            customer=customer,
            customer_name=customer_name,
            invoice_date=invoice_date,
            due_date=due_date,
            discount_amount=_discount(discount),
            notes=notes or "",
        )
        for fields in built:
            InvoiceItem.objects.create(business=business, invoice=invoice, **fields)
        log_action(action="create", instance=invoice,
                   changes={"items": len(built), "discount": invoice.discount_amount})
    logger.info("Created draft invoice %s for business %s", invoice.pk, business.pk)
    return invoice


def _require_draft(invoice, action):
    if invoice.status != "draft":
        logger.warning("Refused to %s %s invoice %s", action, invoice.status, invoice.pk)
        raise InvalidStateTransition(
            "invoice", invoice.status, "draft", f"only drafts can be {action}d")


DRAFT_FIELDS = {"customer_name", "customer", "invoice_date", "due_date",
                "discount", "notes", "items"}


def update_invoice_draft(business, invoice_id, **fields):
    """Edit a draft; passing items replaces all existing lines."""
    business = resolve_business(business)
    unknown = set(fields) - DRAFT_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update invoice fields: {sorted(unknown)}")

    with transaction.atomic():
        invoice = get_for_business(Invoice, business, invoice_id, lock=True)
        _require_draft(invoice, "update")

        if "customer" in fields:
            invoice.customer = _resolve_customer(business, fields["customer"])
        if "customer_name" in fields:
            invoice.customer_name = (fields["customer_name"] or "").strip()
            if not invoice.customer_name:
                raise ValidationError("Customer name is required")
        if "invoice_date" in fields:
            invoice.invoice_date = fields["invoice_date"]
        if "due_date" in fields:
            invoice.due_date = fields["due_date"]
        if "discount" in fields:
            invoice.discount_amount = _discount(fields["discount"])
        if "notes" in fields:
            invoice.notes = fields["notes"] or ""
        invoice.save()

        if "items" in fields:
            built = _build_items(business, fields["items"])
            invoice.items.all().delete()
            for item in built:
                InvoiceItem.objects.create(business=business, invoice=invoice, **item)
        log_action(action="update", instance=invoice, changes={"fields": sorted(fields)})
    return invoice


def delete_invoice_draft(business, invoice_id):
    business = resolve_business(business)
    with transaction.atomic():
        invoice = get_for_business(Invoice, business, invoice_id, lock=True)
        _require_draft(invoice, "delete")
        log_action(action="delete", instance=invoice)
        invoice.delete()
    logger.info("Deleted draft invoice %s", invoice_id)


# ----------------------------
# Issue
# ----------------------------
def _number_taken(business, number):
    return Invoice.objects.for_business(business).filter(invoice_number=number).exists()


def _is_number_clash(exc):
    """True when full_clean() rejected the save on the per-business number constraint."""
    errors = getattr(exc, "error_dict", {}).get(NON_FIELD_ERRORS, [])
    return any(e.code in ("unique", "unique_together") for e in errors)


def _assign_number(business, invoice):
    """
    Give the invoice the next free number and save it.
    Collisions (a number taken outside the sequence, or a concurrent
    writer) burn that number and retry.
    """
    retries = app_setting("INVOICE_NUMBER_MAX_RETRIES")
    for attempt in range(1, retries + 1):
        number = next_number(business, "invoice")
        if _number_taken(business, number):
            logger.warning("Invoice number %s already taken (attempt %d)", number, attempt)
            continue
        invoice.invoice_number = number
        try:
            with transaction.atomic():
                invoice.save()
        except (IntegrityError, DjangoValidationError) as exc:
            if isinstance(exc, DjangoValidationError) and not _is_number_clash(exc):
                invoice.invoice_number = None
                raise
            logger.warning("Invoice number %s collided (attempt %d)", number, attempt)
            invoice.invoice_number = None
            continue
        return number
    raise DuplicateInvoiceNumber(
        f"No free invoice number for business {business.pk} after {retries} attempts")


def issue_invoice(business, invoice_id):
    """
    draft → issued, as one atomic unit:
    totals, number, sales transaction, GST records, stock movements
    and cost of goods.
    """
    business = resolve_business(business)
    with transaction.atomic():
        invoice = get_for_business(Invoice, business, invoice_id, lock=True)
        invoice.check_transition("issued")
        items = list(invoice.items.select_related("product"))
        if not items:
            raise ValidationError("An invoice needs at least one item")

        taxes = [item.tax() for item in items]
        subtotal = round2(sum((t.taxable for t in taxes), Decimal("0")))
        gst_amount = sum((t.gst for t in taxes), ZERO)
        gross = round2(subtotal + gst_amount)
        # discount beyond the gross amount is not carried
        discount = min(invoice.discount_amount, gross)
        total = gross - discount

        invoice.subtotal = subtotal
        invoice.gst_amount = gst_amount
        invoice.discount_amount = discount
        invoice.total_amount = total
        invoice.status = "issued"
        invoice.issued_at = timezone.now()
        number = _assign_number(business, invoice)

        # Dr AR total + Dr Sales Discount = Cr Sales subtotal + Cr GST Output
        entries = [
            debit("Accounts Receivable", total),
            debit("Sales Discount", discount),
            credit("Sales", subtotal),
            credit("GST Output", gst_amount),
        ]
        entries = [e for e in entries if e.debit or e.credit]
        if entries:
            invoice.issue_transaction = post_transaction(
                business, "invoice", invoice.pk, invoice.invoice_date, entries,
                description=f"Invoice {number} to {invoice.customer_name}",
            )

        inter_state = is_inter_state(business, invoice.customer)
        # one set of records per line, zero-rated lines included
        for tax in taxes:
            record_split_gst(
                business, "invoice", invoice.pk,
                classify("invoice", tax.gst, date=invoice.invoice_date),
                tax.taxable, inter_state,
            )

        cost = ZERO
        for item in items:
            if item.product_id:
                record_movement(business, item.product, "sale", -item.quantity,
                                f"Invoice {number}")
                cost += round2(item.quantity * item.cost_price)
        if cost > 0:
            invoice.cogs_transaction = post_transaction(
                business, "invoice_cogs", invoice.pk, invoice.invoice_date,
                [debit("Cost of Goods Sold", cost), credit("Inventory", cost)],
                description=f"Cost of goods for invoice {number}",
            )

        invoice.save(update_fields=["issue_transaction", "cogs_transaction"])
        log_action(action="issue", instance=invoice, changes={
            "number": number, "subtotal": subtotal, "gst": gst_amount,
            "discount": discount, "total": total,
        })
    logger.info("Issued invoice %s (%s) total %s for business %s",
                number, invoice.pk, total, business.pk)
    return invoice


# ----------------------------
# Payments
# ----------------------------
def invoice_amount_paid(invoice) -> Decimal:
    return completed_total(invoice.payments.all())


def invoice_balance_due(invoice) -> Decimal:
    """Negative when the customer has overpaid."""
    return invoice.total_amount - invoice_amount_paid(invoice)


def _receipt_account(method):
    return "Cash" if method == "cash" else "Bank"


def _post_receipt(business, payment):
    invoice = payment.invoice
    tx = post_transaction(
        business, "payment", payment.pk, payment.payment_date,
        [debit(_receipt_account(payment.payment_method), payment.amount),
         credit("Accounts Receivable", payment.amount)],
        description=f"Payment for invoice {invoice.invoice_number}",
    )
    payment.transaction = tx
    return tx


def _settle(invoice):
    """issued → paid once completed payments cover the total."""
    paid = invoice_amount_paid(invoice)
    if invoice.status == "issued" and paid >= invoice.total_amount:
        invoice.transition_to("paid")
        if paid > invoice.total_amount:
            logger.warning("Invoice %s overpaid by %s",
                           invoice.invoice_number, paid - invoice.total_amount)
        logger.info("Invoice %s paid in full", invoice.invoice_number)


def record_invoice_payment(business, invoice_id, amount, payment_date,
                           method="bank", reference_number=None, notes=None,
                           status="completed"):
    """
    Record money received against an issued invoice.
    Completed payments post Dr Cash/Bank, Cr Accounts Receivable;
    pending ones wait for complete_payment.
    """
    business = resolve_business(business)
    amount = round2(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be > 0")
    if method not in _METHODS:
        raise ValidationError(f"Unknown payment method: {method!r}")
    if status not in ("pending", "completed"):
        raise ValidationError("New payments are either pending or completed")
    if payment_date is None:
        raise ValidationError("Payment date is required")

    with transaction.atomic():
        invoice = get_for_business(Invoice, business, invoice_id, lock=True)
        if invoice.status != "issued":
            logger.warning("Refused payment on %s invoice %s", invoice.status, invoice.pk)
            raise InvalidStateTransition(
                "invoice", invoice.status, "paid",
                "payments are recorded against issued invoices")

        payment = Payment.objects.create(
            business=business,
            payment_type="received",
            party_name=invoice.customer_name,
            amount=amount,
            payment_date=payment_date,
            payment_method=method,
            status=status,
            invoice=invoice,
            reference_number=reference_number,
            notes=notes,
        )
        if status == "completed":
            _post_receipt(business, payment)
            payment.save(update_fields=["transaction"])
            _settle(invoice)
        log_action(action="payment", instance=invoice,
                   changes={"payment": payment.pk, "amount": amount, "status": status})
    logger.info("Recorded %s payment %s of %s on invoice %s",
                status, payment.pk, amount, invoice.invoice_number)
    return payment


def complete_payment(business, payment_id):
    """pending → completed: posts the receipt and may settle the invoice."""
    business = resolve_business(business)
    with transaction.atomic():
        payment = get_for_business(Payment, business, payment_id, lock=True)
        if payment.status != "pending":
            raise InvalidStateTransition("payment", payment.status, "completed")
        invoice = None
        if payment.invoice_id:
            invoice = get_for_business(Invoice, business, payment.invoice_id, lock=True)
            if invoice.status != "issued":
                raise InvalidStateTransition(
                    "invoice", invoice.status, "paid",
                    "payments are recorded against issued invoices")
            _post_receipt(business, payment)
        payment.transition_to("completed")
        if invoice is not None:
            _settle(invoice)
    return payment


def cancel_payment(business, payment_id):
    business = resolve_business(business)
    with transaction.atomic():
        payment = get_for_business(Payment, business, payment_id, lock=True)
        payment.transition_to("cancelled")
    logger.info("Cancelled payment %s", payment.pk)
    return payment


# ----------------------------
# Void
# ----------------------------
def void_invoice(business, invoice_id, reason):
    """
    draft → voided: no ledger effect.
    issued → voided: reverses the sales and cost transactions, restores
    stock and offsets the GST records; the issue and the void net to zero.
    """
    business = resolve_business(business)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A void reason is required")

    with transaction.atomic():
        invoice = get_for_business(Invoice, business, invoice_id, lock=True)
        try:
            invoice.check_transition("voided")
        except InvalidStateTransition:
            logger.warning("Refused to void %s invoice %s", invoice.status, invoice.pk)
            raise

        if invoice.status == "issued":
            if invoice_amount_paid(invoice) > 0:
                logger.warning("Refused to void invoice %s with payments", invoice.pk)
                raise InvalidStateTransition(
                    "invoice", "issued", "voided", "completed payments exist")

            label = f"Void of invoice {invoice.invoice_number}"
            for tx_id in (invoice.issue_transaction_id, invoice.cogs_transaction_id):
                if tx_id:
                    reverse_transaction(business, tx_id, description=label)
            for item in invoice.items.select_related("product"):
                if item.product_id:
                    record_movement(business, item.product, "sale_reversal",
                                    item.quantity, label)
            reverse_gst_records(business, "invoice", invoice.pk)
            for pending in invoice.payments.filter(status="pending"):
                pending.transition_to("cancelled")

        previous = invoice.status
        invoice.status = "voided"
        invoice.void_reason = reason
        invoice.voided_at = timezone.now()
        invoice.save(update_fields=["status", "void_reason", "voided_at"])
        log_action(action="void", instance=invoice,
                   changes={"from": previous, "reason": reason})
    logger.info("Voided invoice %s (was %s)", invoice.pk, previous)
    return invoice
