import datetime
import random
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.db import models
from django.test import TestCase

from ..exceptions import (ImbalancedTransactionError, InvalidStateTransition,
                          NotFoundError)
from ..models import Account, Business, LedgerEntry, Transaction
from ..services import (Entry, account_balance, account_balances,
                        post_transaction, reverse_transaction,
                        transaction_amount)
from ..services.ledger import credit, debit

D = Decimal


class PostTransactionTests(TestCase):
    def setUp(self):
        self.business = Business.objects.create(name="Ledger Co")
        self.day = datetime.date(2025, 1, 10)

    def test_balanced_entries_persist_together(self):
        tx = post_transaction(
            self.business, "journal", None, self.day,
            [debit("Cash", D("250.00")), credit("Capital", D("250.00"))],
            description="Owner investment",
        )
        self.assertEqual(tx.entries.count(), 2)
        self.assertTrue(tx.is_balanced())
        self.assertEqual(transaction_amount(tx), D("250.00"))
        # accounts are seeded from the standard chart on first use
        self.assertEqual(
            Account.objects.get(business=self.business, name="Cash").ac_type, "asset")

    def test_mappings_are_accepted(self):
        tx = post_transaction(
            self.business, "journal", None, self.day,
            [{"account_name": "Bank", "debit": "10.50"},
             {"account": "Capital", "credit": 10.5}],
        )
        self.assertEqual(tx.amount, D("10.50"))

    def test_imbalanced_entries_are_rejected_and_nothing_persists(self):
        with self.assertRaises(ImbalancedTransactionError) as ctx:
            post_transaction(
                self.business, "journal", None, self.day,
                [debit("Cash", D("100.00")), credit("Capital", D("99.99"))],
            )
        self.assertEqual(ctx.exception.total_debit, D("100.00"))
        self.assertEqual(ctx.exception.total_credit, D("99.99"))
        self.assertFalse(Transaction.objects.exists())
        self.assertFalse(LedgerEntry.objects.exists())

    def test_empty_entry_list_is_imbalanced(self):
        with self.assertRaises(ImbalancedTransactionError) as ctx:
            post_transaction(self.business, "journal", None, self.day, [])
        self.assertEqual(ctx.exception.total_debit, D("0.00"))
        self.assertEqual(ctx.exception.total_credit, D("0.00"))
        self.assertFalse(Transaction.objects.exists())

    def test_malformed_entries_raise_validation_error(self):
        bad_sets = [
            [Entry("Cash", D("10.00"), D("10.00")), credit("Capital", D("0.00"))],
            [debit("Cash", D("0.00")), credit("Capital", D("0.00"))],
            [debit("Cash", D("-5.00")), credit("Capital", D("-5.00"))],
            [debit("Cash", D("1.005")), credit("Capital", D("1.005"))],
            [debit("", D("5.00")), credit("Capital", D("5.00"))],
            [debit("No Such Account", D("5.00")), credit("Capital", D("5.00"))],
        ]
        for entries in bad_sets:
            with self.assertRaises(ValidationError):
                post_transaction(self.business, "journal", None, self.day, entries)
        self.assertFalse(Transaction.objects.exists())

    def test_unknown_source_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            post_transaction(
                self.business, "gift", None, self.day,
                [debit("Cash", D("1.00")), credit("Capital", D("1.00"))],
            )

    def test_transactions_and_entries_are_append_only(self):
        tx = post_transaction(
            self.business, "journal", None, self.day,
            [debit("Cash", D("5.00")), credit("Capital", D("5.00"))],
        )
        entry = tx.entries.first()

        with self.assertRaises(ValidationError):
            tx.description = "edited"
            tx.save()
        with self.assertRaises(ValidationError):
            entry.debit = D("6.00")
            entry.save()
        with self.assertRaises(ValidationError):
            entry.delete()
        with self.assertRaises(models.ProtectedError):
            LedgerEntry.objects.filter(pk=entry.pk).update(debit=D("7.00"))
        with self.assertRaises(models.ProtectedError):
            Transaction.objects.filter(pk=tx.pk).delete()

        entry.refresh_from_db()
        self.assertEqual(entry.debit, D("5.00"))


class AccountBalanceTests(TestCase):
    def setUp(self):
        self.business = Business.objects.create(name="Balance Co")
        post_transaction(
            self.business, "journal", None, datetime.date(2025, 1, 1),
            [debit("Bank", D("1000.00")), credit("Capital", D("1000.00"))],
        )
        post_transaction(
            self.business, "journal", None, datetime.date(2025, 2, 1),
            [debit("General Expense", D("300.00")),
             credit("Bank", D("300.00"))],
        )

    def test_sign_follows_normal_balance(self):
        self.assertEqual(account_balance(self.business, "Bank"), D("700.00"))
        self.assertEqual(account_balance(self.business, "Capital"), D("1000.00"))
        self.assertEqual(account_balance(self.business, "General Expense"), D("300.00"))

    def test_as_of_cutoff(self):
        self.assertEqual(
            account_balance(self.business, "Bank", datetime.date(2025, 1, 31)),
            D("1000.00"))
        self.assertEqual(
            account_balance(self.business, "Bank", datetime.date(2024, 12, 31)),
            D("0.00"))

    def test_standard_account_without_entries_is_zero(self):
        self.assertEqual(account_balance(self.business, "Sales Discount"), D("0.00"))

    def test_unknown_account_is_rejected(self):
        with self.assertRaises(ValidationError):
            account_balance(self.business, "Nonexistent")

    def test_account_balances_cover_every_account(self):
        balances = account_balances(self.business)
        self.assertEqual(balances["Bank"][1], D("700.00"))
        self.assertEqual(balances["Capital"][0].ac_type, "equity")


class ReverseTransactionTests(TestCase):
    def setUp(self):
        self.business = Business.objects.create(name="Reverse Co")
        self.tx = post_transaction(
            self.business, "journal", None, datetime.date(2025, 3, 3),
            [debit("Cash", D("80.00")), debit("GST Input", D("20.00")),
             credit("Accounts Payable", D("100.00"))],
        )

    def test_reversal_mirrors_entries_and_nets_to_zero(self):
        rev = reverse_transaction(self.business, self.tx.pk)
        self.assertEqual(rev.source_type, "reversal")
        self.assertEqual(rev.reverses_id, self.tx.pk)
        mirrored = [(e.account_name, e.debit, e.credit) for e in rev.entries.all()]
        self.assertEqual(mirrored, [
            ("Cash", D("0.00"), D("80.00")),
            ("GST Input", D("0.00"), D("20.00")),
            ("Accounts Payable", D("100.00"), D("0.00")),
        ])
        for name in ("Cash", "GST Input", "Accounts Payable"):
            self.assertEqual(account_balance(self.business, name), D("0.00"))

    def test_transaction_reverses_only_once(self):
        rev = reverse_transaction(self.business, self.tx.pk)
        with self.assertRaises(InvalidStateTransition):
            reverse_transaction(self.business, self.tx.pk)
        with self.assertRaises(InvalidStateTransition):
            reverse_transaction(self.business, rev.pk)

    def test_other_business_cannot_reverse(self):
        other = Business.objects.create(name="Intruder")
        with self.assertRaises(NotFoundError):
            reverse_transaction(other, self.tx.pk)


@pytest.mark.django_db
def test_random_entry_sets_post_only_when_balanced():
    business = Business.objects.create(name="Property Co")
    rng = random.Random(20250101)
    accounts = ["Cash", "Bank", "Inventory", "Accounts Payable", "Capital", "Sales"]
    posted = rejected = 0

    for _ in range(60):
        n = rng.randint(1, 4)
        debits = [D(rng.randint(1, 100000)) / 100 for _ in range(n)]
        credits = [D(rng.randint(1, 100000)) / 100 for _ in range(rng.randint(1, 4))]
        if rng.random() < 0.5:
            # force balance by topping up the credit side
            gap = sum(debits) - sum(credits)
            if gap > 0:
                credits.append(gap)
            elif gap < 0:
                debits.append(-gap)
        entries = [debit(rng.choice(accounts), a) for a in debits]
        entries += [credit(rng.choice(accounts), a) for a in credits]
        before = Transaction.objects.count()

        if sum(debits) == sum(credits):
            post_transaction(business, "journal", None, datetime.date(2025, 1, 1), entries)
            posted += 1
            assert Transaction.objects.count() == before + 1
        else:
            with pytest.raises(ImbalancedTransactionError):
                post_transaction(business, "journal", None, datetime.date(2025, 1, 1), entries)
            rejected += 1
            assert Transaction.objects.count() == before

    assert posted and rejected
    for tx in Transaction.objects.filter(business=business):
        assert tx.is_balanced()
