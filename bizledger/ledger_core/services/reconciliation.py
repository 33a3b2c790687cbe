import logging
from collections import namedtuple
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from difflib import SequenceMatcher

from django.db import IntegrityError, models, transaction

from ..conf import app_setting
from ..exceptions import AlreadyReconciledError, ValidationError
from ..models import BankReconciliation, BankTransaction, Transaction
from .audit_helper import log_action
from .gst import round2, to_decimal
from .tenancy import get_for_business, resolve_business

logger = logging.getLogger(__name__)

MatchCandidate = namedtuple("MatchCandidate", ["transaction", "score", "date_delta"])

SCORE_PLACES = Decimal("0.0001")

# Score weights: exact amount, date proximity, description similarity
AMOUNT_WEIGHT = Decimal("0.4")
DATE_WEIGHT = Decimal("0.3")
TEXT_WEIGHT = Decimal("0.3")


def description_similarity(a, b) -> Decimal:
    a = " ".join((a or "").lower().split())
    b = " ".join((b or "").lower().split())
    if not a or not b:
        return Decimal("0")
    return Decimal(str(round(SequenceMatcher(None, a, b).ratio(), 4)))


def score_candidate(bank_tx, tx, window_days):
    days = abs((tx.date - bank_tx.transaction_date).days)
    proximity = max(Decimal("0"), 1 - Decimal(days) / Decimal(window_days + 1))
    score = (
        AMOUNT_WEIGHT
        + DATE_WEIGHT * proximity
        + TEXT_WEIGHT * description_similarity(bank_tx.description, tx.description)
    )
    score = min(max(score, Decimal("0")), Decimal("1"))
    return score.quantize(SCORE_PLACES, rounding=ROUND_HALF_UP), days


def match_bank_transaction(business, bank_transaction_id, window_days=None):
    """
    Ranked ledger transactions that could explain a bank line:
    same amount, dated within the window, not reconciled, and not part
    of a reversal pair.
    """
    business = resolve_business(business)
    bank_tx = get_for_business(BankTransaction, business, bank_transaction_id)
    if window_days is None:
        window_days = app_setting("RECONCILIATION_WINDOW_DAYS")
    if window_days < 0:
        raise ValidationError("Window must be >= 0 days")
    if bank_tx.status != "unmatched":
        return []

    amount = abs(bank_tx.amount)
    start = bank_tx.transaction_date - timedelta(days=window_days)
    end = bank_tx.transaction_date + timedelta(days=window_days)
    txs = (
        Transaction.objects.for_business(business)
        .filter(date__gte=start, date__lte=end,
                reverses__isnull=True,
                reversed_by__isnull=True,
                reconciliation__isnull=True)
        .annotate(total=models.Sum("entries__debit"))
        .filter(total=amount)
    )

    candidates = []
    for tx in txs:
        score, days = score_candidate(bank_tx, tx, window_days)
        candidates.append(MatchCandidate(tx, score, days))
    candidates.sort(key=lambda c: (-c.score, c.date_delta, c.transaction.pk))
    return candidates


def confirm_reconciliation(business, bank_transaction_id, transaction_id, score,
                           matched_by=None):
    """
    Record a match. Confirming the same pair again returns the existing
    row; matching either side to something else raises AlreadyReconciledError.
    """
    business = resolve_business(business)
    score = to_decimal(score, "score")
    if not Decimal("0") <= score <= Decimal("1"):
        raise ValidationError("Score must be between 0 and 1")
    score = score.quantize(SCORE_PLACES, rounding=ROUND_HALF_UP)

    with transaction.atomic():
        bank_tx = get_for_business(BankTransaction, business, bank_transaction_id, lock=True)
        tx = get_for_business(Transaction, business, transaction_id)

        existing = BankReconciliation.objects.filter(bank_transaction=bank_tx).first()
        if existing:
            if existing.transaction_id == tx.pk:
                return existing
            logger.warning("Bank line %s already matched to transaction %s",
                           bank_tx.pk, existing.transaction_id)
            raise AlreadyReconciledError(
                f"Bank transaction {bank_tx.pk} is already matched "
                f"to transaction {existing.transaction_id}")
        if BankReconciliation.objects.filter(transaction=tx).exists():
            logger.warning("Transaction %s already matched to another bank line", tx.pk)
            raise AlreadyReconciledError(
                f"Transaction {tx.pk} is already matched to another bank line")
        if round2(abs(bank_tx.amount)) != tx.amount:
            raise ValidationError(
                f"Amounts differ: bank {bank_tx.amount}, transaction {tx.amount}")

        try:
            with transaction.atomic():
                rec = BankReconciliation.objects.create(
                    business=business,
                    bank_transaction=bank_tx,
                    transaction=tx,
                    score=score,
                    matched_by=matched_by,
                )
        except IntegrityError:
            # a concurrent confirm won the race
            raise AlreadyReconciledError(
                f"Bank transaction {bank_tx.pk} or transaction {tx.pk} "
                f"was matched concurrently")
        bank_tx.transition_to("matched")
        log_action(action="reconcile", instance=rec, actor=matched_by or "",
                   changes={"bank_transaction": bank_tx.pk, "transaction": tx.pk,
                            "score": score})
    logger.info("Matched bank line %s to transaction %s (score %s)",
                bank_tx.pk, tx.pk, score)
    return rec


def auto_reconcile(business, min_score=None):
    """
    Confirm the best candidate of each unmatched line when it clears
    min_score and no other candidate ties it. Returns the new matches.
    """
    business = resolve_business(business)
    if min_score is None:
        min_score = app_setting("AUTO_MATCH_MIN_SCORE")
    min_score = to_decimal(min_score, "min_score")

    created = []
    for bank_tx in unmatched_bank_transactions(business):
        candidates = match_bank_transaction(business, bank_tx.pk)
        if not candidates:
            continue
        best = candidates[0]
        if best.score < min_score:
            continue
        if len(candidates) > 1 and candidates[1].score == best.score:
            logger.info("Bank line %s has tied candidates; left for review", bank_tx.pk)
            continue
        created.append(confirm_reconciliation(
            business, bank_tx.pk, best.transaction.pk, best.score, matched_by="auto"))
    logger.info("Auto-reconciled %d bank lines for business %s", len(created), business.pk)
    return created


def import_bank_transactions(business, rows):
    """
    Store statement lines. A row whose reference was already imported
    for this business is skipped. Returns the created lines.
    """
    business = resolve_business(business)
    created = []
    with transaction.atomic():
        for i, row in enumerate(rows):
            amount = round2(row.get("amount"))
            if amount == 0:
                raise ValidationError(f"Row {i}: amount cannot be zero")
            if row.get("transaction_date") is None:
                raise ValidationError(f"Row {i}: transaction date is required")
            reference = row.get("reference") or None
            if reference and BankTransaction.objects.for_business(business).filter(
                    reference=reference).exists():
                logger.info("Skipped already imported bank line %s", reference)
                continue
            created.append(BankTransaction.objects.create(
                business=business,
                transaction_date=row["transaction_date"],
                amount=amount,
                description=row.get("description") or "",
                reference=reference,
            ))
    logger.info("Imported %d bank lines for business %s", len(created), business.pk)
    return created


def ignore_bank_transaction(business, bank_transaction_id):
    business = resolve_business(business)
    with transaction.atomic():
        bank_tx = get_for_business(BankTransaction, business, bank_transaction_id, lock=True)
        bank_tx.transition_to("ignored")
    return bank_tx


def unmatched_bank_transactions(business):
    """Lines still waiting for review; they never expire."""
    business = resolve_business(business)
    return (
        BankTransaction.objects.for_business(business)
        .filter(status="unmatched")
        .order_by("transaction_date", "id")
    )
