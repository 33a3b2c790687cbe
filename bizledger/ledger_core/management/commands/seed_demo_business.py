import datetime
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from ledger_core.models import Business, Customer, Vendor
from ledger_core.services import (create_grn, create_invoice_draft,
                                  create_product, create_purchase_order,
                                  issue_invoice, issue_purchase_order,
                                  post_transaction, seed_chart)
from ledger_core.services.ledger import credit, debit


class Command(BaseCommand):
    help = (
        "Create a demo business with a chart of accounts, parties, products, "
        "an issued invoice and a received purchase order."
    )

    # Define command-line arguments
    def add_arguments(self, parser):
        parser.add_argument(
            "--name",  # Define flag
            default="Demo Traders",
            help="Name of the demo business (default: Demo Traders)",
        )
        parser.add_argument(
            "--state", default="Karnataka", help="State the business is registered in."
        )

    @transaction.atomic
    def handle(self, *args, **options):
        # Read arguments from add_arguments()
        name = options["name"]
        today = datetime.date.today()

        # 1. Business + chart of accounts
        business = Business.objects.create(
            name=name, state=options["state"], gstin="29ABCDE1234F1Z5")
        seed_chart(business)
        self.stdout.write(self.style.SUCCESS(f"Created business: {business} ({business.slug})"))

        # 2. Opening capital
        post_transaction(
            business, "journal", None, today,
            [debit("Bank", Decimal("100000.00")), credit("Capital", Decimal("100000.00"))],
            description="Opening capital",
        )

        # 3. Parties
        customer = Customer.objects.create(
            business=business, name="Acme Retail", state=options["state"],
            gstin="29AAACA1234A1Z5", payment_terms_days=15,
        )
        vendor = Vendor.objects.create(
            business=business, name="Widget Supply Co", state=options["state"])
        self.stdout.write(self.style.SUCCESS(f"Created customer {customer} and vendor {vendor}"))

        # 4. Products with opening stock
        widget = create_product(
            business, "Widget", sku="WID-001", opening_stock=Decimal("20"),
            unit_price=Decimal("500.00"), cost_price=Decimal("300.00"),
            gst_rate=Decimal("18.00"),
        )
        gadget = create_product(
            business, "Gadget", sku="GAD-001",
            unit_price=Decimal("1200.00"), cost_price=Decimal("800.00"),
            gst_rate=Decimal("12.00"),
        )

        # 5. Issued invoice
        invoice = create_invoice_draft(
            business, customer.name, today,
            [{"product_id": widget.pk, "quantity": Decimal("2")},
             {"description": "Installation service", "quantity": 1,
              "unit_price": Decimal("250.00"), "gst_rate": Decimal("18.00")}],
            customer=customer,
        )
        issue_invoice(business, invoice.pk)
        invoice.refresh_from_db()
        self.stdout.write(self.style.SUCCESS(
            f"Issued invoice {invoice.invoice_number} total {invoice.total_amount}"))

        # 6. Purchase order, fully received
        po = create_purchase_order(
            business, vendor.pk, today,
            [{"product_id": gadget.pk, "quantity": Decimal("5")}],
        )
        issue_purchase_order(business, po.pk)
        item = po.items.get()
        grn = create_grn(
            business, po.pk, today,
            [{"po_item_id": item.pk, "quantity_received": Decimal("5")}],
        )
        po.refresh_from_db()
        self.stdout.write(self.style.SUCCESS(
            f"Received {grn.grn_number} against {po.po_number} ({po.status})"))

        self.stdout.write(self.style.SUCCESS("Demo business seeded successfully!"))
