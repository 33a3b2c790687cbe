from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .business import Business

# Choice Lists
AC_TYPES = [
    # Used to classify ledger accounts for reporting
    ("asset", "Asset"),
    ("liability", "Liability"),
    ("equity", "Equity"),
    ("income", "Income"),
    ("expense", "Expense"),
]

# Define whether the account normally increases
# on the debit side or credit side
NORMAL_BALANCE = [
    ("debit", "Debit"),
    ("credit", "Credit"),
]

# Assets/Expenses → Debit, Liabilities/Equity/Income → Credit
DEFAULT_NORMAL_BALANCE = {
    "asset": "debit",
    "expense": "debit",
    "liability": "credit",
    "equity": "credit",
    "income": "credit",
}


class Account(models.Model):
    """
    Chart of Accounts row for one business.
    - Ledger entries reference accounts by name (a plain string),
      this table only tells reports how to classify and sign that name.
    - name is unique per business
    - ac_type: determines reporting - Balance Sheet vs P&L
    - normal_balance: used to interpret sign when building balances
    """

    business = models.ForeignKey(Business, on_delete=models.CASCADE)

    # Human-readable name → "Cash", "Accounts Receivable", "Rent Expense"
    name = models.CharField(max_length=200)

    ac_type = models.CharField(max_length=10, choices=AC_TYPES)

    normal_balance = models.CharField(
        max_length=6,
        choices=NORMAL_BALANCE,
        default="debit",
    )

    # Contra accounts (e.g. Sales Discount) sit in a section but carry
    # the opposite normal balance
    is_contra = models.BooleanField(default=False)

    # “soft deactivate” accounts (stop new postings) without deleting history
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            # For reports grouped by ac_type
            # (Trial Balance, P&L, Balance Sheet)
            models.Index(fields=["business", "ac_type"]),
        ]

        """ Each business owns its own chart of accounts.
               Names repeat across businesses but are unique within one. """
        constraints = [
            models.UniqueConstraint(
                fields=["business", "name"], name="uq_business_account_name"
            )
        ]

    def __str__(self):
        return f"{self.business.slug}:{self.name} ({self.ac_type})"

    def clean(self):
        if not self.name or not self.name.strip():
            raise ValidationError("Account name is required")
        expected = DEFAULT_NORMAL_BALANCE.get(self.ac_type)
        if expected and not self.is_contra and self.normal_balance != expected:
            raise ValidationError(
                f"{self.ac_type} accounts carry a {expected} normal balance"
            )

    def save(self, *args, **kwargs):
        """Block disabling accounts that are already used in ledger entries"""
        if self.pk:
            old = Account.objects.filter(pk=self.pk).first()
            if old and old.is_active and not self.is_active:
                from .ledger import LedgerEntry

                used = LedgerEntry.objects.filter(
                    business_id=self.business_id, account_name=self.name
                ).exists()
                if used:
                    raise ValidationError(
                        "Cannot disable an account that is used in ledger entries."
                    )
            if old and old.name != self.name:
                raise ValidationError("Account names cannot be changed")
        self.full_clean()
        return super().save(*args, **kwargs)
