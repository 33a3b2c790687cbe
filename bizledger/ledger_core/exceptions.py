from django.core.exceptions import ValidationError as DjangoValidationError


class ValidationError(DjangoValidationError):
    """Malformed input (empty item list, negative amounts, unknown account).

    Subclasses Django's ValidationError so model clean() failures and
    service-level input failures can be handled by the same caller code.
    """
    pass


class InvalidStateTransition(Exception):
    """Raised when a lifecycle move is not allowed from the current status."""

    def __init__(self, entity, current, target, detail=None):
        self.entity = entity
        self.current = current
        self.target = target
        message = f"Cannot move {entity} from {current} to {target}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ImbalancedTransactionError(Exception):
    """Raised when a Transaction's debits and credits do not balance."""

    def __init__(self, total_debit, total_credit):
        self.total_debit = total_debit
        self.total_credit = total_credit
        super().__init__(
            f"Transaction not balanced: debits={total_debit}, "
            f"credits={total_credit}"
        )


class OverReceiptError(Exception):
    """Raised when a GRN would receive more than a PO item's ordered quantity."""

    def __init__(self, po_item_id, ordered, already_received, requested):
        self.po_item_id = po_item_id
        self.ordered = ordered
        self.already_received = already_received
        self.requested = requested
        super().__init__(
            f"PO item {po_item_id}: ordered={ordered}, "
            f"received={already_received}, requested={requested}"
        )


class DuplicateInvoiceNumber(Exception):
    """Raised when no unique invoice number could be allocated; safe to retry."""
    pass


class NotFoundError(Exception):
    """Referenced entity is missing or belongs to another business."""

    def __init__(self, model_name, pk):
        self.model_name = model_name
        self.pk = pk
        super().__init__(f"{model_name} {pk} not found")


class AlreadyReconciledError(Exception):
    """Bank line or ledger transaction is already part of another match."""
    pass
