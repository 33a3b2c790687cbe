import logging

from ..exceptions import ValidationError
from ..models import Account
from ..models.account import DEFAULT_NORMAL_BALANCE

logger = logging.getLogger(__name__)

# name → (ac_type, is_contra)
STANDARD_ACCOUNTS = {
    # Assets
    "Cash": ("asset", False),
    "Bank": ("asset", False),
    "Accounts Receivable": ("asset", False),
    "Inventory": ("asset", False),
    "GST Input": ("asset", False),
    # Liabilities
    "Accounts Payable": ("liability", False),
    "GST Output": ("liability", False),
    # Equity
    "Capital": ("equity", False),
    "Retained Earnings": ("equity", False),
    # Income
    "Sales": ("income", False),
    "Sales Discount": ("income", True),  # contra-revenue, debit normal
    "Other Income": ("income", False),
    # Expenses
    "Cost of Goods Sold": ("expense", False),
    "General Expense": ("expense", False),
}


def normal_balance_for(ac_type, is_contra=False):
    normal = DEFAULT_NORMAL_BALANCE[ac_type]
    if is_contra:
        return "credit" if normal == "debit" else "debit"
    return normal


def register_account(business, name, ac_type, is_contra=False):
    """Create (or return) a named account; the type of an existing one cannot change."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Account name is required")
    if ac_type not in DEFAULT_NORMAL_BALANCE:
        raise ValidationError(f"Unknown account type: {ac_type}")

    account, created = Account.objects.get_or_create(
        business=business,
        name=name,
        defaults={
            "ac_type": ac_type,
            "is_contra": is_contra,
            "normal_balance": normal_balance_for(ac_type, is_contra),
        },
    )
    if not created and (account.ac_type != ac_type or account.is_contra != is_contra):
        raise ValidationError(
            f"Account {name!r} already exists as {account.ac_type}")
    if created:
        logger.debug("Registered account %r (%s) for business %s",
                     name, ac_type, business.pk)
    return account


def ensure_account(business, name):
    """
    Return the account for name, seeding it from STANDARD_ACCOUNTS
    the first time a business uses it.
    """
    account = Account.objects.for_business(business).filter(name=name).first()
    if account:
        return account
    if name not in STANDARD_ACCOUNTS:
        raise ValidationError(f"Unknown account: {name!r}")
    ac_type, is_contra = STANDARD_ACCOUNTS[name]
    return register_account(business, name, ac_type, is_contra)


def seed_chart(business):
    return [ensure_account(business, name) for name in STANDARD_ACCOUNTS]
