from django.db import models
from ..managers import TenantManager
from .business import Business


# ---------- Audit / Event log ----------
class AuditLog(
    models.Model
):  # Gives accountability and traceability across whole system
    # Associate log entry with a tenant
    business = models.ForeignKey(
        Business,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    # Who performed the action, as supplied by the caller
    # (empty for automated runs e.g. background job, import script)
    actor = models.CharField(max_length=150, blank=True, default="")
    # Type of event being logged
    action = models.CharField(
        max_length=50
    )  # Common choices: create, issue, void, pay, receive, reconcile
    # What kind of object was affected
    object_type = models.CharField(
        max_length=100
    )  # (e.g., "Invoice", "PurchaseOrder", "BankReconciliation")
    object_id = models.CharField(max_length=100)
    # Store actual details of what changed, in JSON format
    changes = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Filter logs quickly
        indexes = [
            models.Index(fields=["business", "object_type", "object_id"]),
            models.Index(fields=["business", "created_at"]),
        ]

    def __str__(self):
        time = self.created_at
        who = self.actor or "system"
        return f"[{time:%Y-%m-%d %H:%M}] {who} {self.action} {self.object_type}({self.object_id})"

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
