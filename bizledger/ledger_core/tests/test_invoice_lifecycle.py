import datetime
from decimal import Decimal
from unittest import mock

from django.core.exceptions import ValidationError
from django.db.models.signals import pre_delete
from django.test import TestCase, override_settings

from ..exceptions import (DuplicateInvoiceNumber, InvalidStateTransition,
                          NotFoundError)
from ..models import (AuditLog, Business, Customer, GSTRecord,
                      InventoryMovement, Invoice, InvoiceItem, Payment,
                      Transaction)
from ..services import (account_balance, cancel_payment, complete_payment,
                        create_invoice_draft, create_product,
                        delete_invoice_draft, gst_summary, invoice_balance_due,
                        issue_invoice, record_invoice_payment,
                        stock_from_movements, update_invoice_draft,
                        void_invoice)
from ..services import invoices as invoice_services

D = Decimal
TOUCHED = ("Accounts Receivable", "Sales", "Sales Discount", "GST Output",
           "Cost of Goods Sold", "Inventory", "Bank", "Cash")


class InvoiceLifecycleTests(TestCase):
    def setUp(self):
        self.business = Business.objects.create(name="Test Traders", state="Karnataka")
        self.customer = Customer.objects.create(
            business=self.business, name="Acme", state="Karnataka",
            payment_terms_days=30)
        self.day = datetime.date(2025, 1, 15)

    def make_draft(self, items=None, discount=0, **kwargs):
        """Helper: one line qty=2 @ 500 with 18% GST unless told otherwise."""
        if items is None:
            items = [{"description": "Widget", "quantity": 2,
                      "unit_price": D("500"), "gst_rate": D("18")}]
        return create_invoice_draft(
            self.business, "Acme", self.day, items, discount=discount,
            customer=self.customer, **kwargs)

    def balances(self):
        return {name: account_balance(self.business, name) for name in TOUCHED}

    # ---------- drafts ----------
    def test_draft_has_no_financial_effect(self):
        invoice = self.make_draft()
        self.assertEqual(invoice.status, "draft")
        self.assertIsNone(invoice.invoice_number)
        self.assertEqual(invoice.due_date, datetime.date(2025, 2, 14))
        self.assertEqual(invoice.items.count(), 1)
        self.assertFalse(Transaction.objects.exists())
        self.assertFalse(GSTRecord.objects.exists())

    def test_draft_requires_valid_items(self):
        bad = [
            [],
            [{"description": "X", "quantity": 0, "unit_price": 1, "gst_rate": 0}],
            [{"description": "X", "quantity": 1, "unit_price": -1, "gst_rate": 0}],
            [{"description": "X", "quantity": 1, "unit_price": 1, "gst_rate": -18}],
            [{"description": "", "quantity": 1, "unit_price": 1, "gst_rate": 0}],
        ]
        for items in bad:
            with self.assertRaises(ValidationError):
                self.make_draft(items=items)
        with self.assertRaises(ValidationError):
            self.make_draft(discount=-5)
        self.assertFalse(Invoice.objects.exists())

    def test_inclusive_prices_keep_the_entered_price(self):
        invoice = self.make_draft(items=[{
            "description": "Boxed", "quantity": 1, "unit_price": D("118"),
            "gst_rate": D("18"), "prices_include_tax": True}])
        item = invoice.items.get()
        self.assertEqual(item.unit_price, D("118.0000"))
        self.assertTrue(item.prices_include_tax)
        self.assertEqual(item.line_total, D("118.00"))
        issue_invoice(self.business, invoice.pk)
        invoice.refresh_from_db()
        self.assertEqual(invoice.total_amount, D("118.00"))

    def test_inclusive_price_on_large_quantity_is_not_overcharged(self):
        invoice = self.make_draft(items=[{
            "description": "Bulk", "quantity": 1000, "unit_price": D("100"),
            "gst_rate": D("18"), "prices_include_tax": True}])
        issue_invoice(self.business, invoice.pk)
        invoice.refresh_from_db()
        self.assertEqual(invoice.subtotal, D("84745.76"))
        self.assertEqual(invoice.gst_amount, D("15254.24"))
        self.assertEqual(invoice.total_amount, D("100000.00"))
        self.assertEqual(account_balance(self.business, "Accounts Receivable"),
                         D("100000.00"))
        self.assertTrue(invoice.issue_transaction.is_balanced())

    def test_draft_can_be_updated_and_deleted(self):
        invoice = self.make_draft()
        update_invoice_draft(
            self.business, invoice.pk, discount=D("10"), notes="rush",
            items=[{"description": "Gadget", "quantity": 1,
                    "unit_price": D("100"), "gst_rate": D("5")}])
        invoice.refresh_from_db()
        self.assertEqual(invoice.discount_amount, D("10.00"))
        self.assertEqual([i.description for i in invoice.items.all()], ["Gadget"])

        with self.assertRaises(ValidationError):
            update_invoice_draft(self.business, invoice.pk, total_amount=D("1"))

        delete_invoice_draft(self.business, invoice.pk)
        self.assertFalse(Invoice.objects.exists())
        self.assertFalse(InvoiceItem.objects.exists())

    # ---------- issue ----------
    def test_issue_single_line_without_discount(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        invoice.refresh_from_db()

        self.assertEqual(invoice.status, "issued")
        self.assertEqual(invoice.invoice_number, "INV-000001")
        self.assertEqual(invoice.subtotal, D("1000.00"))
        self.assertEqual(invoice.gst_amount, D("180.00"))
        self.assertEqual(invoice.total_amount, D("1180.00"))
        self.assertEqual(invoice.items.get().line_total, D("1180.00"))

        self.assertEqual(account_balance(self.business, "Accounts Receivable"), D("1180.00"))
        self.assertEqual(account_balance(self.business, "Sales"), D("1000.00"))
        self.assertEqual(account_balance(self.business, "GST Output"), D("180.00"))
        self.assertTrue(invoice.issue_transaction.is_balanced())

        # intra-state: CGST + SGST, output, invoice month
        records = GSTRecord.objects.filter(source_type="invoice", source_id=invoice.pk)
        self.assertEqual(
            sorted((r.gst_type, r.amount, r.tax_period, r.direction) for r in records),
            [("CGST", D("90.00"), "2025-01", "output"),
             ("SGST", D("90.00"), "2025-01", "output")])

    def test_discount_is_posted_to_sales_discount(self):
        """AR carries the discounted total; Sales and GST Output stay pre-discount."""
        invoice = issue_invoice(self.business, self.make_draft(discount=100).pk)
        invoice.refresh_from_db()

        self.assertEqual(invoice.total_amount, D("1080.00"))
        lines = sorted(
            (e.account_name, e.debit, e.credit)
            for e in invoice.issue_transaction.entries.all())
        self.assertEqual(lines, [
            ("Accounts Receivable", D("1080.00"), D("0.00")),
            ("GST Output", D("0.00"), D("180.00")),
            ("Sales", D("0.00"), D("1000.00")),
            ("Sales Discount", D("100.00"), D("0.00")),
        ])

    def test_discount_larger_than_invoice_is_capped(self):
        invoice = issue_invoice(self.business, self.make_draft(discount=5000).pk)
        invoice.refresh_from_db()
        self.assertEqual(invoice.total_amount, D("0.00"))
        self.assertEqual(invoice.discount_amount, D("1180.00"))
        self.assertEqual(account_balance(self.business, "Accounts Receivable"), D("0.00"))

    def test_totals_add_up_over_many_lines(self):
        items = [
            {"description": f"Line {n}", "quantity": D(n) / 4,
             "unit_price": D("19.99") * n, "gst_rate": rate}
            for n, rate in zip(range(1, 8), [0, 5, 12, 18, 28, 18, 5])
        ]
        invoice = issue_invoice(self.business, self.make_draft(items=items, discount=7).pk)
        invoice.refresh_from_db()

        expected_gst = D("0")
        for item in invoice.items.all():
            line_subtotal = item.quantity * item.unit_price
            expected_gst += (line_subtotal * item.gst_rate / 100).quantize(D("0.01"), "ROUND_HALF_UP")
        self.assertEqual(invoice.gst_amount, expected_gst)
        gross = (invoice.subtotal + invoice.gst_amount).quantize(D("0.01"))
        self.assertEqual(invoice.total_amount, max(D("0"), gross - D("7")))
        self.assertTrue(invoice.issue_transaction.is_balanced())

    def test_inter_state_sale_records_igst(self):
        self.customer.state = "Kerala"
        self.customer.save()
        invoice = issue_invoice(self.business, self.make_draft().pk)
        records = GSTRecord.objects.filter(source_id=invoice.pk)
        self.assertEqual([(r.gst_type, r.amount) for r in records], [("IGST", D("180.00"))])

    def test_numbers_are_sequential_per_business(self):
        first = issue_invoice(self.business, self.make_draft().pk)
        second = issue_invoice(self.business, self.make_draft().pk)
        other = Business.objects.create(name="Other Traders")
        third = issue_invoice(other, create_invoice_draft(
            other, "Zed", self.day,
            [{"description": "X", "quantity": 1, "unit_price": 1, "gst_rate": 0}]).pk)
        self.assertEqual(
            [first.invoice_number, second.invoice_number, third.invoice_number],
            ["INV-000001", "INV-000002", "INV-000001"])

    def test_number_taken_outside_the_sequence_is_skipped(self):
        manual = self.make_draft()
        Invoice.objects.filter(pk=manual.pk).update(invoice_number="INV-000001")
        invoice = issue_invoice(self.business, self.make_draft().pk)
        self.assertEqual(invoice.invoice_number, "INV-000002")

    def test_zero_rated_lines_reach_the_gst_log(self):
        invoice = issue_invoice(self.business, self.make_draft(items=[
            {"description": "Taxed", "quantity": 1, "unit_price": D("100"),
             "gst_rate": D("18")},
            {"description": "Exempt", "quantity": 1, "unit_price": D("500"),
             "gst_rate": D("0")},
        ]).pk)
        invoice.refresh_from_db()
        self.assertEqual(invoice.subtotal, D("600.00"))

        records = GSTRecord.objects.filter(source_type="invoice", source_id=invoice.pk)
        self.assertEqual(
            [(r.gst_type, r.taxable_amount, r.amount) for r in records.order_by("id")],
            [("CGST", D("100.00"), D("9.00")), ("SGST", D("0.00"), D("9.00")),
             ("CGST", D("500.00"), D("0.00")), ("SGST", D("0.00"), D("0.00"))])

        summary = gst_summary(self.business, "2025-01")
        self.assertEqual(summary["taxable_sales"], D("600.00"))
        self.assertEqual(summary["output_gst"], D("18.00"))

    def test_number_committed_by_another_writer_is_retried(self):
        # another writer took INV-000001 after the availability check ran
        manual = self.make_draft()
        Invoice.objects.filter(pk=manual.pk).update(invoice_number="INV-000001")
        with mock.patch.object(invoice_services, "_number_taken", return_value=False):
            invoice = issue_invoice(self.business, self.make_draft().pk)
        self.assertEqual(invoice.invoice_number, "INV-000002")
        self.assertEqual(invoice.status, "issued")

    @override_settings(BIZLEDGER={"INVOICE_NUMBER_MAX_RETRIES": 2})
    def test_numbering_gives_up_after_retries(self):
        for n in (1, 2):
            draft = self.make_draft()
            Invoice.objects.filter(pk=draft.pk).update(invoice_number=f"INV-{n:06d}")
        target = self.make_draft()
        with self.assertRaises(DuplicateInvoiceNumber):
            issue_invoice(self.business, target.pk)
        target.refresh_from_db()
        self.assertEqual(target.status, "draft")
        self.assertFalse(Transaction.objects.exists())

    def test_issue_is_all_or_nothing(self):
        product = create_product(self.business, "Scarce", opening_stock=1,
                                 unit_price=D("500"), gst_rate=D("18"))
        draft = self.make_draft(items=[{"product_id": product.pk, "quantity": 2}])
        with self.assertRaises(ValidationError):
            issue_invoice(self.business, draft.pk)  # not enough stock

        draft.refresh_from_db()
        self.assertEqual(draft.status, "draft")
        self.assertIsNone(draft.invoice_number)
        self.assertFalse(Transaction.objects.exists())
        self.assertFalse(GSTRecord.objects.exists())
        product.refresh_from_db()
        self.assertEqual(product.quantity, D("1"))

    def test_issued_invoice_is_frozen(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        invoice.refresh_from_db()
        invoice.total_amount = D("1.00")
        with self.assertRaises(ValidationError):
            invoice.save()
        with self.assertRaises(InvalidStateTransition):
            update_invoice_draft(self.business, invoice.pk, notes="late edit")
        with self.assertRaises(InvalidStateTransition):
            delete_invoice_draft(self.business, invoice.pk)
        with self.assertRaises(InvalidStateTransition):
            issue_invoice(self.business, invoice.pk)
        with self.assertRaises(ValidationError):
            invoice.items.first().delete()

    # ---------- payments ----------
    def test_partial_then_full_payment(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        record_invoice_payment(self.business, invoice.pk, D("500"), self.day, method="cash")
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "issued")
        self.assertEqual(invoice_balance_due(invoice), D("680.00"))

        record_invoice_payment(self.business, invoice.pk, D("680"), self.day, method="upi")
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "paid")
        self.assertEqual(account_balance(self.business, "Accounts Receivable"), D("0.00"))
        self.assertEqual(account_balance(self.business, "Cash"), D("500.00"))
        self.assertEqual(account_balance(self.business, "Bank"), D("680.00"))

        with self.assertRaises(InvalidStateTransition):
            record_invoice_payment(self.business, invoice.pk, D("1"), self.day)

    def test_overpayment_is_accepted_as_credit(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        record_invoice_payment(self.business, invoice.pk, D("1200"), self.day)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "paid")
        self.assertEqual(invoice_balance_due(invoice), D("-20.00"))
        self.assertEqual(account_balance(self.business, "Accounts Receivable"), D("-20.00"))

    def test_payment_requires_issued_invoice(self):
        draft = self.make_draft()
        with self.assertRaises(InvalidStateTransition):
            record_invoice_payment(self.business, draft.pk, D("10"), self.day)
        with self.assertRaises(ValidationError):
            record_invoice_payment(self.business, draft.pk, D("0"), self.day)
        self.assertFalse(Payment.objects.exists())

    def test_pending_payment_posts_only_when_completed(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        pending = record_invoice_payment(
            self.business, invoice.pk, D("1180"), self.day, status="pending")
        self.assertIsNone(pending.transaction_id)
        self.assertEqual(account_balance(self.business, "Bank"), D("0.00"))

        complete_payment(self.business, pending.pk)
        invoice.refresh_from_db()
        pending.refresh_from_db()
        self.assertEqual(pending.status, "completed")
        self.assertIsNotNone(pending.transaction_id)
        self.assertEqual(invoice.status, "paid")

        with self.assertRaises(InvalidStateTransition):
            cancel_payment(self.business, pending.pk)

    # ---------- void ----------
    def test_void_draft_has_no_ledger_effect(self):
        draft = self.make_draft()
        with self.assertRaises(ValidationError):
            void_invoice(self.business, draft.pk, "  ")
        invoice = void_invoice(self.business, draft.pk, "customer cancelled")
        self.assertEqual(invoice.status, "voided")
        self.assertEqual(invoice.void_reason, "customer cancelled")
        self.assertIsNotNone(invoice.voided_at)
        self.assertFalse(Transaction.objects.exists())

    def test_void_issued_invoice_nets_to_zero_and_restores_stock(self):
        product = create_product(self.business, "Widget", opening_stock=10,
                                 unit_price=D("500"), cost_price=D("300"),
                                 gst_rate=D("18"))
        before = self.balances()

        invoice = issue_invoice(self.business, self.make_draft(
            items=[{"product_id": product.pk, "quantity": 2}], discount=50).pk)
        product.refresh_from_db()
        self.assertEqual(product.quantity, D("8"))
        self.assertEqual(account_balance(self.business, "Cost of Goods Sold"), D("600.00"))

        void_invoice(self.business, invoice.pk, "wrong customer")
        product.refresh_from_db()
        self.assertEqual(product.quantity, D("10"))
        self.assertEqual(stock_from_movements(product), D("10"))
        self.assertEqual(self.balances(), before)
        self.assertEqual(gst_summary(self.business, "2025-01")["output_gst"], D("0.00"))
        self.assertEqual(
            list(InventoryMovement.objects.filter(product=product)
                 .values_list("movement_type", flat=True)),
            ["adjustment", "sale", "sale_reversal"])
        # issue, cogs and their two reversals
        self.assertEqual(Transaction.objects.filter(business=self.business).count(), 4)

    def test_paid_invoice_cannot_be_voided(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        record_invoice_payment(self.business, invoice.pk, D("1180"), self.day)
        with self.assertRaises(InvalidStateTransition):
            void_invoice(self.business, invoice.pk, "too late")

    def test_issued_invoice_with_payments_cannot_be_voided(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        record_invoice_payment(self.business, invoice.pk, D("100"), self.day)
        with self.assertRaises(InvalidStateTransition):
            void_invoice(self.business, invoice.pk, "refund first")
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "issued")

    def test_void_cancels_pending_payments(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        pending = record_invoice_payment(
            self.business, invoice.pk, D("100"), self.day, status="pending")
        void_invoice(self.business, invoice.pk, "duplicate")
        pending.refresh_from_db()
        self.assertEqual(pending.status, "cancelled")
        with self.assertRaises(InvalidStateTransition):
            complete_payment(self.business, pending.pk)

    def test_voided_invoice_is_final(self):
        invoice = void_invoice(self.business, self.make_draft().pk, "typo")
        with self.assertRaises(InvalidStateTransition):
            issue_invoice(self.business, invoice.pk)
        with self.assertRaises(InvalidStateTransition):
            void_invoice(self.business, invoice.pk, "again")

    # ---------- tenancy / audit ----------
    def test_other_business_sees_not_found(self):
        invoice = self.make_draft()
        other = Business.objects.create(name="Rival")
        for call in (
            lambda: issue_invoice(other, invoice.pk),
            lambda: void_invoice(other, invoice.pk, "nope"),
            lambda: record_invoice_payment(other, invoice.pk, D("1"), self.day),
            lambda: update_invoice_draft(other, invoice.pk, notes="x"),
        ):
            with self.assertRaises(NotFoundError):
                call()
        with self.assertRaises(NotFoundError):
            create_invoice_draft(other, "Acme", self.day,
                                 [{"description": "X", "quantity": 1,
                                   "unit_price": 1, "gst_rate": 0}],
                                 customer=self.customer.pk)

    def test_lifecycle_is_audited(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        void_invoice(self.business, invoice.pk, "audit me")
        self.assertEqual(
            list(AuditLog.objects.for_business(self.business)
                 .filter(object_type="Invoice").order_by("id")
                 .values_list("action", flat=True)),
            ["create", "issue", "void"])

    def test_non_draft_delete_is_blocked_by_signal(self):
        invoice = issue_invoice(self.business, self.make_draft().pk)
        invoice.refresh_from_db()
        with self.assertRaises(ValidationError):
            pre_delete.send(sender=Invoice, instance=invoice)
