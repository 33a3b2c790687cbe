import json
from typing import Optional

from django.core.serializers.json import DjangoJSONEncoder

from ..models import AuditLog, Business


def log_action(
    *,
    action: str,
    instance,
    actor: str = "",
    business: Optional[Business] = None,
    changes: dict | None = None,
):
    """
    Central audit logger.
    Safe to call multiple times (caller ensures idempotency).
    """

    if not business:
        business = getattr(instance, "business", None)

    if changes is not None:
        # Decimals and dates → JSON-safe values
        changes = json.loads(json.dumps(changes, cls=DjangoJSONEncoder))

    return AuditLog.objects.create(
        business=business,
        actor=actor or "",
        action=action,
        object_type=instance.__class__.__name__,
        object_id=str(instance.pk),
        changes=changes,
    )
