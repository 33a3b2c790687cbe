import logging
from collections import namedtuple
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.db import models
from django.utils import timezone

from ..exceptions import ValidationError
from ..models import Expense, GSTRecord, Invoice

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

LineTax = namedtuple("LineTax", ["taxable", "gst", "gross"])
""" taxable: quantity × tax-exclusive price (not rounded)
    gst: round2(taxable × rate / 100)
    gross: round2(taxable + gst) """

GSTClassification = namedtuple(
    "GSTClassification", ["tax_period", "direction", "amount"])

# Direction implied by the kind of source document
OUTPUT_SOURCES = {"invoice", "sale"}
INPUT_SOURCES = {"expense", "purchase", "grn", "bill"}


def to_decimal(value, field="amount"):
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        # str() first so floats keep their printed value (0.1 → 0.1)
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} is not a number: {value!r}")


def round2(value):
    """Round to 2 decimals, halves away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_line_gst(quantity, unit_price, gst_rate, prices_include_tax=False):
    """
    Tax for one invoice line.
    Each line's GST is rounded to 2 decimals on its own; document totals
    are sums of these rounded figures.
    """
    quantity = to_decimal(quantity, "quantity")
    price = to_decimal(unit_price, "unit_price")
    rate = to_decimal(gst_rate, "gst_rate")
    if quantity <= 0:
        raise ValidationError("Quantity must be > 0")
    if price < 0:
        raise ValidationError("Unit price must be >= 0")
    if rate < 0:
        raise ValidationError("GST rate must be >= 0")

    if prices_include_tax and rate:
        # derive the tax-exclusive base first so GST is not charged on GST
        price = price / (1 + rate / 100)

    taxable = quantity * price
    gst = round2(taxable * rate / 100)
    return LineTax(taxable, gst, round2(taxable + gst))


def split_gst(amount, inter_state):
    """
    Split a tax amount into its components.
    Inter-state supplies carry IGST; intra-state ones half CGST, half SGST
    with SGST taking the remainder so the parts always add up.
    """
    amount = round2(amount)
    if inter_state:
        return [("IGST", amount)]
    cgst = round2(amount / 2)
    return [("CGST", cgst), ("SGST", amount - cgst)]


def is_inter_state(business, party=None):
    """Place of supply: both states known and different."""
    own = (getattr(business, "state", "") or "").strip().lower()
    other = (getattr(party, "state", "") or "").strip().lower()
    return bool(own and other and own != other)


def tax_period(date):
    return f"{date.year:04d}-{date.month:02d}"


def classify(source_type, amount, direction=None, date=None):
    """Bucket a tax amount into (tax period, output/input direction)."""
    if source_type in OUTPUT_SOURCES:
        implied = "output"
    elif source_type in INPUT_SOURCES:
        implied = "input"
    else:
        implied = None

    if direction is not None and direction not in ("output", "input"):
        raise ValidationError(f"Unknown GST direction: {direction}")
    if implied and direction and direction != implied:
        raise ValidationError(
            f"{source_type} GST is {implied}, not {direction}")
    direction = direction or implied
    if direction is None:
        raise ValidationError(
            f"Cannot infer GST direction for source type {source_type!r}")

    date = date or timezone.localdate()
    return GSTClassification(tax_period(date), direction, round2(amount))


def record_gst(business, source_type, source_id, gst_type, direction,
               taxable, amount, period):
    return GSTRecord.objects.create(
        business=business,
        source_type=source_type,
        source_id=source_id,
        gst_type=gst_type,
        direction=direction,
        taxable_amount=round2(taxable),
        amount=round2(amount),
        tax_period=period,
    )


def record_split_gst(business, source_type, source_id, classification,
                     taxable, inter_state):
    """
    Write one GSTRecord per component.
    The taxable base is carried on the first component only, so summing
    taxable_amount over records counts each line once.
    """
    records = []
    for i, (gst_type, part) in enumerate(
            split_gst(classification.amount, inter_state)):
        records.append(record_gst(
            business, source_type, source_id, gst_type,
            classification.direction,
            taxable if i == 0 else ZERO,
            part,
            classification.tax_period,
        ))
    return records


def reverse_gst_records(business, source_type, source_id):
    """Offset every record of a source with a negative twin in its own period."""
    originals = list(
        GSTRecord.objects.for_business(business)
        .filter(source_type=source_type, source_id=source_id)
    )
    mirrored = [
        record_gst(
            business, rec.source_type, rec.source_id, rec.gst_type,
            rec.direction, -rec.taxable_amount, -rec.amount, rec.tax_period,
        )
        for rec in originals
    ]
    logger.info(
        "Reversed %d GST records of %s %s", len(mirrored), source_type, source_id)
    return mirrored


def _period_bounds(period):
    try:
        year, month = (int(p) for p in period.split("-"))
    except (AttributeError, ValueError):
        raise ValidationError(f"Tax period must look like YYYY-MM: {period!r}")
    if not 1 <= month <= 12:
        raise ValidationError(f"Tax period must look like YYYY-MM: {period!r}")
    return year, month


def gst_summary(business, period):
    """Output tax, input tax and net payable for one tax period."""
    _period_bounds(period)
    rows = (
        GSTRecord.objects.for_business(business)
        .filter(tax_period=period)
        .values("direction")
        .annotate(tax=models.Sum("amount"), taxable=models.Sum("taxable_amount"))
    )
    totals = {r["direction"]: r for r in rows}
    output = totals.get("output", {}).get("tax") or ZERO
    input_ = totals.get("input", {}).get("tax") or ZERO
    return {
        "period": period,
        "output_gst": output,
        "input_gst": input_,
        "net_payable": output - input_,
        "taxable_sales": totals.get("output", {}).get("taxable") or ZERO,
        "taxable_purchases": totals.get("input", {}).get("taxable") or ZERO,
    }


def _components(business, source_type, source_ids):
    """{source_id: {"CGST": x, "SGST": y, "IGST": z}} net of reversals"""
    out = {}
    rows = (
        GSTRecord.objects.for_business(business)
        .filter(source_type=source_type, source_id__in=source_ids)
        .values("source_id", "gst_type")
        .annotate(tax=models.Sum("amount"))
    )
    for r in rows:
        parts = out.setdefault(r["source_id"], {"CGST": ZERO, "SGST": ZERO, "IGST": ZERO})
        parts[r["gst_type"]] = r["tax"] or ZERO
    return out


def sales_register(business, period):
    """GSTR-1 style rows: one per issued invoice dated in the period."""
    year, month = _period_bounds(period)
    invoices = list(
        Invoice.objects.for_business(business)
        .filter(status__in=["issued", "paid"],
                invoice_date__year=year, invoice_date__month=month)
        .select_related("customer")
        .order_by("invoice_date", "invoice_number")
    )
    parts = _components(business, "invoice", [inv.pk for inv in invoices])
    rows = []
    for inv in invoices:
        gstin = inv.customer.gstin if inv.customer_id else ""
        tax = parts.get(inv.pk, {"CGST": ZERO, "SGST": ZERO, "IGST": ZERO})
        rows.append({
            "invoice_number": inv.invoice_number,
            "invoice_date": inv.invoice_date,
            "customer_name": inv.customer_name,
            "customer_gstin": gstin,
            "supply_type": "B2B" if gstin else "B2C",
            "taxable_value": inv.subtotal,
            "cgst": tax["CGST"],
            "sgst": tax["SGST"],
            "igst": tax["IGST"],
            "total": inv.total_amount,
        })
    return rows


def purchase_register(business, period):
    """GSTR-2 style rows: expenses in the period that carry input GST."""
    year, month = _period_bounds(period)
    expenses = list(
        Expense.objects.for_business(business)
        .filter(gst_amount__gt=0,
                expense_date__year=year, expense_date__month=month)
        .order_by("expense_date", "id")
    )
    parts = _components(business, "expense", [e.pk for e in expenses])
    rows = []
    for exp in expenses:
        tax = parts.get(exp.pk, {"CGST": ZERO, "SGST": ZERO, "IGST": ZERO})
        rows.append({
            "expense_date": exp.expense_date,
            "description": exp.description,
            "category": exp.category,
            "supplier_gstin": exp.supplier_gstin or "",
            "taxable_value": exp.net_amount,
            "gst_amount": exp.gst_amount,
            "cgst": tax["CGST"],
            "sgst": tax["SGST"],
            "igst": tax["IGST"],
            "total": exp.amount,
        })
    return rows
