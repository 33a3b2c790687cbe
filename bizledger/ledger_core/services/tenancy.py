from ..exceptions import NotFoundError
from ..models import Business


def resolve_business(business) -> Business:
    """Accept a Business instance or its primary key."""
    if isinstance(business, Business):
        return business
    try:
        return Business.objects.get(pk=business)
    except (Business.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("Business", business)


def get_for_business(model, business, pk, *, lock=False):
    """
    Fetch one row of model scoped to business.
    A row owned by another business is reported exactly like a missing one.
    """
    qs = model.objects.for_business(business)
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=pk)
    except (model.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(model.__name__, pk)
