"""
RBAC models for multi-tenant capability resolution.

Implements:
- Capability (global catalog of capability keys)
- RolePermission (role matrix entries, per tenant or platform-wide)
- UserOverride (per-user grant/deny for one capability in one tenant)
- FeatureFlag (per-tenant module toggles)
- AuditLog (audit trail of policy mutations)
"""
import logging
from django.db import models
from django.db.models import Q
from apps.core.models import BaseModel
from .constants import (
    EFFECT_ALLOW,
    EFFECT_CHOICES,
    ROLE_CHOICES,
    SCOPE_CHOICES,
    SCOPE_TENANT,
    SUPER_ADMIN,
)

logger = logging.getLogger(__name__)


class CapabilityManager(models.Manager):
    """Manager for Capability queries."""

    def by_group(self, group):
        """Get all capabilities in a display group."""
        return self.filter(group=group)

    def for_scope(self, scope):
        """Get all capabilities of one scope."""
        return self.filter(scope=scope)

    def get_or_create_capability(self, key, label, scope=SCOPE_TENANT, group='', description=''):
        """Get or create capability (idempotent)."""
        capability, created = self.get_or_create(
            key=key,
            defaults={
                'label': label,
                'scope': scope,
                'group': group,
                'description': description,
            }
        )
        return capability, created


class Capability(BaseModel):
    """
    Global capability definitions, shared across all tenants.

    The catalog is provisioned out of band (seed_capabilities) and is
    read-only to the resolution engine. The display group is
    presentation only; the key is the identity.
    """

    key = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Capability key ('tickets:approve' or 'manage_company_users')"
    )
    scope = models.CharField(
        max_length=20,
        choices=SCOPE_CHOICES,
        default=SCOPE_TENANT,
        db_index=True,
        help_text="Tenant capabilities are granted per company, platform ones only to super_admin"
    )
    group = models.CharField(
        max_length=50,
        blank=True,
        db_index=True,
        help_text="Display group (e.g., 'basic-access', 'approvals')"
    )
    label = models.CharField(
        max_length=255,
        help_text="Human-readable label (e.g., 'Approve Tickets')"
    )
    description = models.TextField(
        blank=True,
        help_text="Detailed description of what this capability grants"
    )

    objects = CapabilityManager()

    class Meta:
        db_table = 'capabilities'
        ordering = ['group', 'key']
        verbose_name_plural = 'capabilities'
        indexes = [
            models.Index(fields=['scope', 'group']),
        ]

    def __str__(self):
        return f"{self.key} - {self.label}"


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def platform(self):
        """Get the platform-wide role matrix."""
        return self.filter(tenant__isnull=True)


class RolePermission(BaseModel):
    """
    Role matrix entry: the effect a role has on a capability.

    Rows with a tenant are the company's own matrix. Rows without one are
    platform entries and may only name super_admin. A missing row means
    unset, which is not the same as deny.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='role_permissions',
        db_index=True,
        help_text="Tenant this entry belongs to (null for platform entries)"
    )
    role = models.CharField(
        max_length=50,
        choices=ROLE_CHOICES,
        db_index=True,
        help_text="Role the entry applies to"
    )
    capability = models.ForeignKey(
        Capability,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        db_index=True,
        help_text="Capability being allowed or denied"
    )
    effect = models.CharField(
        max_length=10,
        choices=EFFECT_CHOICES,
        default=EFFECT_ALLOW,
        help_text="allow or deny"
    )

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        ordering = ['role', 'capability__key']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'role', 'capability'],
                condition=Q(tenant__isnull=False),
                name='unique_tenant_role_capability',
            ),
            models.UniqueConstraint(
                fields=['role', 'capability'],
                condition=Q(tenant__isnull=True),
                name='unique_platform_role_capability',
            ),
            models.CheckConstraint(
                condition=Q(tenant__isnull=False) | Q(role=SUPER_ADMIN),
                name='platform_entry_requires_super_admin',
            ),
        ]
        indexes = [
            models.Index(fields=['tenant', 'role']),
        ]

    def __str__(self):
        scope = self.tenant.slug if self.tenant_id else 'platform'
        return f"[{scope}] {self.role} {self.effect} {self.capability.key}"


class UserOverride(BaseModel):
    """
    Per-user capability override (grant or deny) within one tenant.

    Outranks the role matrix in both directions.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='user_overrides',
        db_index=True,
        help_text="Tenant this override applies in"
    )
    user_id = models.UUIDField(
        db_index=True,
        help_text="User the override applies to"
    )
    capability = models.ForeignKey(
        Capability,
        on_delete=models.CASCADE,
        related_name='user_overrides',
        db_index=True,
        help_text="Capability being granted or denied"
    )
    granted = models.BooleanField(
        help_text="True = grant, False = deny"
    )

    # Audit fields
    reason = models.TextField(
        blank=True,
        help_text="Reason for this override"
    )
    granted_by = models.UUIDField(
        null=True,
        blank=True,
        help_text="User who created this override"
    )

    class Meta:
        db_table = 'user_overrides'
        ordering = ['user_id', 'capability__key']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'user_id', 'capability'],
                name='unique_user_override',
            ),
        ]
        indexes = [
            models.Index(fields=['tenant', 'user_id']),
        ]

    def __str__(self):
        action = "GRANT" if self.granted else "DENY"
        return f"{action} {self.capability.key} to {self.user_id}"


class FeatureFlag(BaseModel):
    """
    Per-tenant module toggle. A missing row means the module is enabled.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='feature_flags',
        db_index=True,
        help_text="Tenant this flag belongs to"
    )
    feature_key = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Module key (e.g., 'hardware_requests')"
    )
    is_enabled = models.BooleanField(
        default=True,
        help_text="Whether the module is available to the tenant"
    )

    class Meta:
        db_table = 'feature_flags'
        ordering = ['feature_key']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'feature_key'],
                name='unique_tenant_feature',
            ),
        ]

    def __str__(self):
        state = 'on' if self.is_enabled else 'off'
        return f"{self.tenant.slug}:{self.feature_key} ({state})"


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries."""

    def platform(self):
        """Get audit logs of platform-scope changes."""
        return self.filter(tenant__isnull=True)


class AuditLog(BaseModel):
    """
    Audit trail for policy mutations.

    One row per successful change to the role matrix, user overrides or
    feature flags. Written after the change commits.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
        db_index=True,
        help_text="Tenant this action belongs to (null for platform-level)"
    )
    actor_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="User who performed the action (null for system actions)"
    )

    # Action Details
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'role_permission_set')"
    )
    target_type = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Type of target entity (e.g., 'RolePermission')"
    )
    target_id = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Identifier of the target (e.g., 'manager:tickets:approve')"
    )

    # Change Tracking
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after values in JSON format"
    )

    # Request Context
    ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="IP address of the request"
    )
    request_id = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="Request ID for tracing"
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context metadata"
    )

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant', 'created_at']),
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        tenant_str = self.tenant.name if self.tenant else 'Platform'
        actor_str = str(self.actor_id) if self.actor_id else 'System'
        return f"{tenant_str} - {actor_str} - {self.action}"

    @classmethod
    def log_action(cls, action, actor_id=None, tenant_id=None, target_type='',
                   target_id='', diff=None, metadata=None, request=None):
        """
        Convenience method to create audit log entry.

        Args:
            action: Action being performed
            actor_id: User performing the action
            tenant_id: Tenant context (None for platform changes)
            target_type: Type of target entity
            target_id: Identifier of target entity
            diff: Before/after changes
            metadata: Additional context
            request: Django request object (for IP and request ID)

        Returns:
            AuditLog instance, or None if the row could not be written
        """
        log_data = {
            'action': action,
            'actor_id': actor_id,
            'tenant_id': tenant_id,
            'target_type': target_type,
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['request_id'] = getattr(request, 'request_id', None) or ''

        try:
            return cls.objects.create(**log_data)
        except Exception as e:
            # Audit logging must not break the mutation it records
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': action, 'tenant_id': tenant_id},
                exc_info=True
            )
            return None

    @staticmethod
    def _get_client_ip(request):
        """Extract client IP from request."""
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            ip = x_forwarded_for.split(',')[0].strip()
        else:
            ip = request.META.get('REMOTE_ADDR')
        return ip or None
