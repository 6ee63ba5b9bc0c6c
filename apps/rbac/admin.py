"""
Django admin configuration for RBAC app.

Policy facts are read-only here: changes go through PolicyAdminService so
they are validated and audited.
"""
from django.contrib import admin
from .models import (
    AuditLog,
    Capability,
    FeatureFlag,
    RolePermission,
    UserOverride,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    """Admin that only lists and displays records."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Capability)
class CapabilityAdmin(admin.ModelAdmin):
    """Admin interface for the capability catalog."""
    list_display = ['key', 'label', 'scope', 'group']
    list_filter = ['scope', 'group']
    search_fields = ['key', 'label']
    readonly_fields = ['key', 'created_at', 'updated_at']


@admin.register(RolePermission)
class RolePermissionAdmin(ReadOnlyAdmin):
    """Admin interface for role matrix entries."""
    list_display = ['capability', 'role', 'effect', 'tenant', 'updated_at']
    list_filter = ['role', 'effect', 'tenant']
    search_fields = ['capability__key', 'tenant__slug']
    list_select_related = ['capability', 'tenant']


@admin.register(UserOverride)
class UserOverrideAdmin(ReadOnlyAdmin):
    """Admin interface for user overrides."""
    list_display = ['user_id', 'capability', 'granted', 'tenant', 'granted_by', 'updated_at']
    list_filter = ['granted', 'tenant']
    search_fields = ['user_id', 'capability__key', 'reason']
    list_select_related = ['capability', 'tenant']


@admin.register(FeatureFlag)
class FeatureFlagAdmin(ReadOnlyAdmin):
    """Admin interface for feature flags."""
    list_display = ['feature_key', 'is_enabled', 'tenant', 'updated_at']
    list_filter = ['is_enabled', 'feature_key']
    search_fields = ['tenant__slug']


@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyAdmin):
    """Admin interface for the audit trail."""
    list_display = ['action', 'target_type', 'target_id', 'tenant', 'actor_id', 'created_at']
    list_filter = ['action', 'target_type', 'created_at']
    search_fields = ['target_id', 'actor_id', 'request_id']
    date_hierarchy = 'created_at'
