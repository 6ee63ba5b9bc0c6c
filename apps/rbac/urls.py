"""
RBAC API URLs.

Provides endpoints for:
- Capability catalog
- Access checks, playground and effective permissions
- Role matrix (tenant and platform) and bulk sync
- User overrides
- Feature flags
- Audit log viewing
"""
from django.urls import path
from apps.rbac.views import (
    CapabilityListView,
    AccessCheckView,
    AccessPlaygroundView,
    EffectivePermissionsView,
    RolePermissionView,
    RoleMatrixSyncView,
    PlatformRolePermissionView,
    UserOverrideView,
    FeatureFlagView,
    AuditLogListView,
)

app_name = 'rbac'

urlpatterns = [
    # Catalog
    path('capabilities', CapabilityListView.as_view(), name='capability-list'),

    # Access
    path('access/check', AccessCheckView.as_view(), name='access-check'),
    path('access/playground', AccessPlaygroundView.as_view(), name='access-playground'),
    path('access/effective', EffectivePermissionsView.as_view(), name='access-effective'),

    # Role matrix
    path('role-permissions', RolePermissionView.as_view(), name='role-permissions'),
    path('role-permissions/sync', RoleMatrixSyncView.as_view(), name='role-permissions-sync'),
    path('platform/role-permissions', PlatformRolePermissionView.as_view(), name='platform-role-permissions'),

    # User overrides
    path('users/<uuid:user_id>/overrides', UserOverrideView.as_view(), name='user-overrides'),

    # Feature flags
    path('features', FeatureFlagView.as_view(), name='features'),

    # Audit logs
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]
