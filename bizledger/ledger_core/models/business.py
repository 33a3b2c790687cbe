from django.db import models
from django.utils.text import slugify


# ---------- Tenant / Business ----------
class Business(models.Model):

    """Tenant / Organization"""
    # Store business's full display name
    name = models.CharField(max_length=200)

    slug = models.SlugField(  # A URL-friendly identifier
        max_length=80, unique=True  # no two businesses can have the same slug
    )

    # Registered state, used to decide place of supply (CGST+SGST vs IGST)
    state = models.CharField(max_length=64, blank=True, default="")
    gstin = models.CharField(max_length=15, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "businesses"

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        # Derive a slug from the name when the caller did not pick one
        if not self.slug:
            base = slugify(self.name)[:70] or "business"
            slug = base
            n = 2
            while Business.objects.filter(slug=slug).exists():
                slug = f"{base}-{n}"
                n += 1
            self.slug = slug
        return super().save(*args, **kwargs)
