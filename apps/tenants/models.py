"""
Tenant models for multi-tenant isolation.

A tenant is one company using the portal. Every tenant-scoped policy
fact (role matrix entries, user overrides, feature flags) hangs off a
Tenant row.
"""
from django.db import models
from apps.core.models import BaseModel


class TenantManager(models.Manager):
    """Manager for tenant-scoped queries."""

    def active(self):
        """Return only active tenants."""
        return self.filter(status__in=['active', 'trial'])

    def by_slug(self, slug):
        """Find tenant by slug."""
        return self.filter(slug=slug).first()

    def by_identifier(self, identifier):
        """Find tenant by slug, falling back to UUID."""
        tenant = self.by_slug(identifier)
        if tenant:
            return tenant

        from uuid import UUID
        try:
            return self.filter(id=UUID(str(identifier))).first()
        except ValueError:
            return None


class Tenant(BaseModel):
    """
    Tenant model representing an isolated company account.
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('trial', 'Trial'),
        ('suspended', 'Suspended'),
    ]

    name = models.CharField(
        max_length=255,
        help_text="Company name"
    )
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier (subdomain)"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='active',
        db_index=True,
        help_text="Current tenant status"
    )

    objects = TenantManager()

    class Meta:
        db_table = 'tenants'
        ordering = ['name']
        indexes = [
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return f"{self.name} ({self.slug})"

    def is_active(self):
        """Check if tenant may use the portal."""
        return self.status in ('active', 'trial')
