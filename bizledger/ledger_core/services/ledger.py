import logging
from collections import namedtuple
from collections.abc import Mapping
from decimal import Decimal

from django.db import models, transaction

from ..exceptions import (ImbalancedTransactionError, InvalidStateTransition,
                          ValidationError)
from ..models import Account, LedgerEntry, Transaction
from ..models.ledger import SOURCE_TYPES
from .chart import STANDARD_ACCOUNTS, ensure_account, normal_balance_for
from .gst import CENT, ZERO, to_decimal
from .tenancy import get_for_business, resolve_business

logger = logging.getLogger(__name__)

Entry = namedtuple("Entry", ["account_name", "debit", "credit"], defaults=(ZERO, ZERO))

_SOURCE_TYPES = {key for key, _ in SOURCE_TYPES}


def debit(account_name, amount):
    return Entry(account_name, amount, ZERO)


def credit(account_name, amount):
    return Entry(account_name, ZERO, amount)


def _money(value, field):
    amount = to_decimal(value, field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    # currency precision: anything finer than 0.01 is a caller error
    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} has more than 2 decimals: {amount}")
    return amount.quantize(CENT)


def _normalize(entries):
    """Turn Entry tuples / mappings into validated Entry rows."""
    rows = []
    for i, raw in enumerate(entries):
        if isinstance(raw, Mapping):
            name = raw.get("account_name") or raw.get("account")
            dr = raw.get("debit", ZERO)
            cr = raw.get("credit", ZERO)
        else:
            name, dr, cr = raw
        name = (name or "").strip()
        if not name:
            raise ValidationError(f"Entry {i}: account name is required")
        dr = _money(dr or ZERO, f"Entry {i} debit")
        cr = _money(cr or ZERO, f"Entry {i} credit")
        if dr < 0 or cr < 0:
            raise ValidationError(f"Entry {i}: debit and credit must be >= 0")
        if dr > 0 and cr > 0:
            raise ValidationError(f"Entry {i}: cannot carry both debit and credit")
        if dr == 0 and cr == 0:
            raise ValidationError(f"Entry {i}: debit or credit must be non-zero")
        rows.append(Entry(name, dr, cr))
    return rows


def post_transaction(business, source_type, source_id, date, entries,
                     description="", reverses=None):
    """
    Write one balanced Transaction with its LedgerEntries.
    All entries persist together or none do.
    """
    business = resolve_business(business)
    if source_type not in _SOURCE_TYPES:
        raise ValidationError(f"Unknown source type: {source_type!r}")
    if date is None:
        raise ValidationError("Transaction date is required")

    rows = _normalize(entries)
    if not rows:
        logger.error("Rejected empty %s transaction (source %s) for business %s",
                     source_type, source_id, business.pk)
        raise ImbalancedTransactionError(ZERO, ZERO)
    total_debit = sum((r.debit for r in rows), ZERO)
    total_credit = sum((r.credit for r in rows), ZERO)
    if total_debit != total_credit:
        logger.error(
            "Rejected imbalanced %s transaction (source %s) for business %s: "
            "debits=%s credits=%s",
            source_type, source_id, business.pk, total_debit, total_credit,
        )
        raise ImbalancedTransactionError(total_debit, total_credit)

    with transaction.atomic():
        for name in {r.account_name for r in rows}:
            account = ensure_account(business, name)
            if not account.is_active:
                raise ValidationError(f"Account {name!r} is inactive")

        tx = Transaction.objects.create(
            business=business,
            source_type=source_type,
            source_id=source_id,
            date=date,
            description=description or "",
            reverses=reverses,
        )
        for position, row in enumerate(rows):
            LedgerEntry.objects.create(
                business=business,
                transaction=tx,
                account_name=row.account_name,
                debit=row.debit,
                credit=row.credit,
                position=position,
            )
    logger.info(
        "Posted transaction %s (%s:%s) for business %s, amount %s",
        tx.pk, source_type, source_id, business.pk, total_debit,
    )
    return tx


def _normal_balance(business, account_name):
    account = Account.objects.for_business(business).filter(name=account_name).first()
    if account:
        return account.normal_balance
    if account_name in STANDARD_ACCOUNTS:
        return normal_balance_for(*STANDARD_ACCOUNTS[account_name])
    raise ValidationError(f"Unknown account: {account_name!r}")


def _signed(normal_balance, dr, cr):
    dr = dr or ZERO
    cr = cr or ZERO
    return dr - cr if normal_balance == "debit" else cr - dr


def _entries(business, as_of=None):
    qs = LedgerEntry.objects.for_business(business)
    if as_of is not None:
        qs = qs.filter(transaction__date__lte=as_of)
    return qs


def account_balance(business, account_name, as_of=None) -> Decimal:
    """
    Balance of one account, derived from the entry log every time.
    Debit-normal accounts: Σdebit − Σcredit; credit-normal: Σcredit − Σdebit.
    """
    business = resolve_business(business)
    normal = _normal_balance(business, account_name)
    aggs = _entries(business, as_of).filter(account_name=account_name).aggregate(
        dr=models.Sum("debit"), cr=models.Sum("credit"))
    return _signed(normal, aggs["dr"], aggs["cr"])


def account_balances(business, as_of=None):
    """{account name: (Account, balance)} for every account with entries or in the chart."""
    business = resolve_business(business)
    accounts = {a.name: a for a in Account.objects.for_business(business)}
    totals = {
        row["account_name"]: row
        for row in _entries(business, as_of)
        .values("account_name")
        .annotate(dr=models.Sum("debit"), cr=models.Sum("credit"))
    }
    result = {}
    for name in set(accounts) | set(totals):
        account = accounts.get(name) or ensure_account(business, name)
        row = totals.get(name, {})
        result[name] = (account, _signed(account.normal_balance, row.get("dr"), row.get("cr")))
    return result


def transaction_amount(tx) -> Decimal:
    return tx.amount


def reverse_transaction(business, transaction_id, date=None, description=None):
    """
    Post the exact mirror of a transaction; the pair nets to zero
    on every account. A transaction can be reversed once, and a
    reversal itself cannot be reversed.
    """
    business = resolve_business(business)
    with transaction.atomic():
        original = get_for_business(Transaction, business, transaction_id, lock=True)
        if original.reverses_id:
            logger.warning("Refused to reverse reversal %s", original.pk)
            raise InvalidStateTransition(
                "transaction", "reversal", "reversed",
                "a reversal cannot itself be reversed")
        if Transaction.objects.filter(reverses=original).exists():
            logger.warning("Refused to reverse transaction %s twice", original.pk)
            raise InvalidStateTransition(
                "transaction", "reversed", "reversed",
                f"transaction {original.pk} was already reversed")

        mirror = [
            Entry(e.account_name, e.credit, e.debit)
            for e in original.entries.all()
        ]
        tx = post_transaction(
            business,
            "reversal",
            original.pk,
            date or original.date,
            mirror,
            description=description or f"Reversal of transaction {original.pk}",
            reverses=original,
        )
    return tx
