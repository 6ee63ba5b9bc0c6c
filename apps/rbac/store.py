"""
Policy store: the only code that touches the policy tables.

Tenant and platform rows are read and written through separate methods.
The tenant path refuses a null tenant and the platform path never takes
one, so neither path can produce or observe the other's rows.
"""
import functools
import logging

from django.db import IntegrityError, InterfaceError, OperationalError, transaction

from apps.core.exceptions import InvalidRequest, StoreUnavailable
from apps.core.logging import SecurityLogger
from apps.tenants.models import Tenant
from .constants import EFFECT_CHOICES, SUPER_ADMIN
from .models import Capability, FeatureFlag, RolePermission, UserOverride

logger = logging.getLogger(__name__)

VALID_EFFECTS = {value for value, _ in EFFECT_CHOICES}


def store_operation(func):
    """Re-raise database connectivity failures as StoreUnavailable."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            logger.error(
                f"Policy store unavailable during {func.__name__}: {e}",
                exc_info=True
            )
            SecurityLogger.log_store_unavailable(func.__name__, str(e))
            raise StoreUnavailable(
                'The policy store is unavailable',
                details={'operation': func.__name__}
            ) from e
    return wrapper


def _require_tenant(tenant_id):
    if tenant_id is None:
        raise InvalidRequest('A tenant is required for tenant-scope policy facts')


def _require_effect(effect):
    if effect not in VALID_EFFECTS:
        raise InvalidRequest(
            f"Invalid effect '{effect}'",
            details={'allowed': sorted(VALID_EFFECTS)}
        )


class PolicyStore:
    """
    Read and write access to capabilities, role matrix entries, user
    overrides and feature flags.

    Writes are atomic per key. Nothing is cached: a write is visible to
    every read that starts after it returns.
    """

    # Catalog

    @store_operation
    def get_capability(self, key):
        return Capability.objects.filter(key=key).first()

    @store_operation
    def list_capabilities(self, scope=None, group=None):
        qs = Capability.objects.all()
        if scope:
            qs = qs.filter(scope=scope)
        if group:
            qs = qs.filter(group=group)
        return list(qs)

    # Tenants

    @store_operation
    def tenant_exists(self, tenant_id):
        return Tenant.objects.filter(id=tenant_id).exists()

    # Tenant role matrix

    @store_operation
    def get_role_permission(self, tenant_id, role, key):
        """Effect of a tenant entry, or None when unset."""
        _require_tenant(tenant_id)
        entry = (
            RolePermission.objects
            .filter(tenant_id=tenant_id, role=role, capability__key=key)
            .only('effect')
            .first()
        )
        return entry.effect if entry else None

    @store_operation
    def list_role_permissions(self, tenant_id, role=None):
        _require_tenant(tenant_id)
        qs = RolePermission.objects.filter(tenant_id=tenant_id).select_related('capability')
        if role:
            qs = qs.filter(role=role)
        return list(qs)

    @store_operation
    def upsert_role_permission(self, tenant_id, role, capability, effect):
        """
        Create or update a tenant entry.

        Returns:
            Tuple of (RolePermission, previous effect or None)
        """
        _require_tenant(tenant_id)
        _require_effect(effect)
        return self._upsert_entry(tenant_id, role, capability, effect)

    @store_operation
    def delete_role_permission(self, tenant_id, role, capability):
        """Remove a tenant entry. Returns the removed effect, or None."""
        _require_tenant(tenant_id)
        return self._delete_entry(tenant_id, role, capability)

    # Platform role matrix

    @store_operation
    def get_platform_role_permission(self, role, key):
        """Effect of a platform entry, or None when unset."""
        entry = (
            RolePermission.objects.platform()
            .filter(role=role, capability__key=key)
            .only('effect')
            .first()
        )
        return entry.effect if entry else None

    @store_operation
    def list_platform_role_permissions(self):
        return list(
            RolePermission.objects.platform().select_related('capability')
        )

    @store_operation
    def upsert_platform_role_permission(self, capability, effect, role=SUPER_ADMIN):
        if role != SUPER_ADMIN:
            raise InvalidRequest('Platform entries may only name super_admin')
        _require_effect(effect)
        return self._upsert_entry(None, role, capability, effect)

    @store_operation
    def delete_platform_role_permission(self, capability, role=SUPER_ADMIN):
        if role != SUPER_ADMIN:
            raise InvalidRequest('Platform entries may only name super_admin')
        return self._delete_entry(None, role, capability)

    # User overrides

    @store_operation
    def get_user_override(self, tenant_id, user_id, key):
        """True/False for a grant/deny override, or None when unset."""
        _require_tenant(tenant_id)
        override = (
            UserOverride.objects
            .filter(tenant_id=tenant_id, user_id=user_id, capability__key=key)
            .only('granted')
            .first()
        )
        return override.granted if override else None

    @store_operation
    def list_user_overrides(self, tenant_id, user_id=None):
        _require_tenant(tenant_id)
        qs = UserOverride.objects.filter(tenant_id=tenant_id).select_related('capability')
        if user_id:
            qs = qs.filter(user_id=user_id)
        return list(qs)

    @store_operation
    def upsert_user_override(self, tenant_id, user_id, capability, granted,
                             reason='', granted_by=None):
        """
        Create or update an override.

        Returns:
            Tuple of (UserOverride, previous granted value or None)
        """
        _require_tenant(tenant_id)
        lookup = {'tenant_id': tenant_id, 'user_id': user_id, 'capability': capability}
        with transaction.atomic():
            previous = (
                UserOverride.objects.select_for_update()
                .filter(**lookup)
                .values_list('granted', flat=True)
                .first()
            )
            override, _ = UserOverride.objects.update_or_create(
                defaults={
                    'granted': bool(granted),
                    'reason': reason or '',
                    'granted_by': granted_by,
                },
                **lookup
            )
        return override, previous

    @store_operation
    def delete_user_override(self, tenant_id, user_id, capability):
        """Remove an override. Returns the removed granted value, or None."""
        _require_tenant(tenant_id)
        with transaction.atomic():
            qs = UserOverride.objects.select_for_update().filter(
                tenant_id=tenant_id, user_id=user_id, capability=capability
            )
            previous = qs.values_list('granted', flat=True).first()
            qs.delete()
        return previous

    # Feature flags

    @store_operation
    def list_feature_flags(self, tenant_id):
        _require_tenant(tenant_id)
        return list(FeatureFlag.objects.filter(tenant_id=tenant_id))

    @store_operation
    def upsert_feature_flag(self, tenant_id, feature_key, enabled):
        _require_tenant(tenant_id)
        lookup = {'tenant_id': tenant_id, 'feature_key': feature_key}
        with transaction.atomic():
            previous = (
                FeatureFlag.objects.select_for_update()
                .filter(**lookup)
                .values_list('is_enabled', flat=True)
                .first()
            )
            flag, _ = FeatureFlag.objects.update_or_create(
                defaults={'is_enabled': bool(enabled)},
                **lookup
            )
        return flag, previous

    @store_operation
    def delete_feature_flag(self, tenant_id, feature_key):
        _require_tenant(tenant_id)
        with transaction.atomic():
            qs = FeatureFlag.objects.select_for_update().filter(
                tenant_id=tenant_id, feature_key=feature_key
            )
            previous = qs.values_list('is_enabled', flat=True).first()
            qs.delete()
        return previous

    # Helpers

    def _entry_filter(self, tenant_id, role, capability):
        if tenant_id is None:
            return {'tenant__isnull': True, 'role': role, 'capability': capability}
        return {'tenant_id': tenant_id, 'role': role, 'capability': capability}

    def _upsert_entry(self, tenant_id, role, capability, effect):
        lookup = self._entry_filter(tenant_id, role, capability)
        with transaction.atomic():
            existing = RolePermission.objects.select_for_update().filter(**lookup).first()
            previous = existing.effect if existing else None
            if existing is not None:
                if existing.effect != effect:
                    existing.effect = effect
                    existing.save(update_fields=['effect', 'updated_at'])
                return existing, previous

            try:
                with transaction.atomic():
                    entry = RolePermission.objects.create(
                        tenant_id=tenant_id, role=role, capability=capability, effect=effect
                    )
            except IntegrityError:
                # Lost a race with a concurrent insert of the same key
                entry = RolePermission.objects.select_for_update().get(**lookup)
                entry.effect = effect
                entry.save(update_fields=['effect', 'updated_at'])
        return entry, previous

    def _delete_entry(self, tenant_id, role, capability):
        lookup = self._entry_filter(tenant_id, role, capability)
        with transaction.atomic():
            qs = RolePermission.objects.select_for_update().filter(**lookup)
            previous = qs.values_list('effect', flat=True).first()
            qs.delete()
        return previous
