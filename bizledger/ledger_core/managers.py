from django.db import models

# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a business
# -----------------------------------------
class TenantQuerySet(models.QuerySet):
    def for_business(self, business):
        # accepts a Business instance or its primary key
        return self.filter(business=business)

    def active(self, business):
        return self.filter(
                            business=business,  # enforce tenant scoping
                            is_active=True      # only fetch active records
                        )
    # Enables query:
    # InventoryProduct.objects.active(business)


class TenantManager(models.Manager):
    # ensure every model gets TenantQuerySet (.for_business() always available)
    def get_queryset(self):
        return TenantQuerySet(self.model, using=self._db)

    def for_business(self, business):
        return self.get_queryset().for_business(business)

    def active(self, business):
        return self.get_queryset().active(business)


class AppendOnlyQuerySet(TenantQuerySet):
    """Ledger rows and stock movements are corrected by new rows, never edited."""

    def update(self, **kwargs):
        raise models.ProtectedError(
            f"{self.model.__name__} rows are append-only", list(self[:1])
        )

    def delete(self):
        raise models.ProtectedError(
            f"{self.model.__name__} rows are append-only", list(self[:1])
        )


class AppendOnlyManager(TenantManager):
    def get_queryset(self):
        return AppendOnlyQuerySet(self.model, using=self._db)
