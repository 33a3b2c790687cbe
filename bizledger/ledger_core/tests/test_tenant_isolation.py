import datetime
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.test import TestCase

from ..exceptions import NotFoundError
from ..models import Business, Customer, Invoice, Payment
from ..services import (account_balance, create_invoice_draft, create_product,
                        issue_invoice, post_transaction, record_invoice_payment,
                        total_revenue)
from ..services.ledger import credit, debit
from ..services.tenancy import get_for_business, resolve_business


class TenantIsolationManagerTests(TestCase):
    def setUp(self):
        self.business_a = Business.objects.create(name="Business A")
        self.business_b = Business.objects.create(name="Business B", slug="biz_b")

        # one invoice per business
        self.inv_a = create_invoice_draft(
            self.business_a, "Alpha", datetime.date.today(),
            [{"description": "A work", "quantity": 1, "unit_price": Decimal("200.00")}])
        self.inv_b = create_invoice_draft(
            self.business_b, "Beta", datetime.date.today(),
            [{"description": "B work", "quantity": 1, "unit_price": Decimal("100.00")}])

    def test_for_business_returns_only_that_business_objects(self):
        """Compare invoice primary keys"""
        self.assertListEqual(
            list(
                Invoice.objects.for_business(self.business_a)
                .order_by("id")
                .values_list("pk", flat=True)
            ),
            [self.inv_a.pk],
        )
        self.assertListEqual(
            list(
                Invoice.objects.for_business(self.business_b.pk)
                .order_by("id")
                .values_list("pk", flat=True)
            ),
            [self.inv_b.pk],
        )

    def test_get_other_business_object_raises_does_not_exist(self):
        with self.assertRaises(Invoice.DoesNotExist):
            Invoice.objects.for_business(self.business_a).get(pk=self.inv_b.pk)

    def test_scoped_lookup_reports_other_business_as_missing(self):
        with self.assertRaises(NotFoundError) as ctx:
            get_for_business(Invoice, self.business_a, self.inv_b.pk)
        self.assertEqual(ctx.exception.model_name, "Invoice")
        with self.assertRaises(NotFoundError):
            get_for_business(Invoice, self.business_a, "not-a-pk")

    def test_resolve_business(self):
        self.assertEqual(resolve_business(self.business_a.pk), self.business_a)
        with self.assertRaises(NotFoundError):
            resolve_business(999999)

    def test_items_cannot_reference_another_business_product(self):
        foreign = create_product(self.business_b, "B only")
        with self.assertRaises(NotFoundError):
            create_invoice_draft(
                self.business_a, "Alpha", datetime.date.today(),
                [{"product_id": foreign.pk, "quantity": 1}])

    def test_models_refuse_cross_business_links(self):
        customer_b = Customer.objects.create(business=self.business_b, name="Beta")
        self.inv_a.customer = customer_b
        with self.assertRaises(ValidationError):
            self.inv_a.save()


@pytest.mark.django_db
def test_ledgers_and_numbers_are_separate_per_business():
    a = Business.objects.create(name="Ledger A")
    b = Business.objects.create(name="Ledger B")
    today = datetime.date.today()

    post_transaction(a, "journal", None, today,
                     [debit("Bank", Decimal("50.00")), credit("Capital", Decimal("50.00"))])
    assert account_balance(a, "Bank") == Decimal("50.00")
    assert account_balance(b, "Bank") == Decimal("0.00")

    numbers = []
    for business in (a, b):
        draft = create_invoice_draft(
            business, "Walk-in", today,
            [{"description": "Service", "quantity": 1, "unit_price": Decimal("10"),
              "gst_rate": Decimal("0")}])
        numbers.append(issue_invoice(business, draft.pk).invoice_number)
    assert numbers == ["INV-000001", "INV-000001"]
    assert total_revenue(a) == total_revenue(b) == Decimal("10.00")

    invoice_b = Invoice.objects.for_business(b).get()
    with pytest.raises(NotFoundError):
        record_invoice_payment(a, invoice_b.pk, Decimal("10"), today)
    assert not Payment.objects.exists()
