"""
Administrative mutation services for the policy store.

Implements:
- PolicyAdminService: role matrix, user overrides, matrix sync, feature flags

Every call validates its input before touching the store, performs one
atomic upsert-or-delete, and then records an audit log entry.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from apps.core.exceptions import InvalidRequest, NotFound, PortalException
from apps.core.logging import SecurityLogger
from .catalog import parse_key
from .constants import (
    EFFECT_CHOICES,
    FEATURE_KEYS,
    ROLE_DEFINITIONS,
    SCOPE_PLATFORM,
    SCOPE_TENANT,
    SUPER_ADMIN,
)
from .models import AuditLog
from .store import PolicyStore

logger = logging.getLogger(__name__)

VALID_EFFECTS = {value for value, _ in EFFECT_CHOICES}


class PolicyAdminService:
    """
    Service for policy mutations: role matrix entries, user overrides,
    bulk matrix sync and feature flags.
    """

    store = PolicyStore()

    # Validation

    @classmethod
    def _get_capability(cls, capability_key):
        parsed = parse_key(capability_key)
        capability = cls.store.get_capability(str(parsed)) if parsed else None
        if capability is None:
            raise InvalidRequest(
                f"Unknown capability '{capability_key}'",
                details={'capability_key': str(capability_key)}
            )
        return capability

    @classmethod
    def _validate_role(cls, role):
        if role not in ROLE_DEFINITIONS:
            raise InvalidRequest(
                f"Unknown role '{role}'",
                details={'allowed_roles': sorted(ROLE_DEFINITIONS)}
            )

    @classmethod
    def _validate_effect(cls, effect):
        if effect is not None and effect not in VALID_EFFECTS:
            raise InvalidRequest(
                f"Invalid effect '{effect}'",
                details={'allowed': sorted(VALID_EFFECTS)}
            )

    @classmethod
    def _get_tenant_id(cls, tenant_id):
        """Resolve a tenant id, raising NotFound if the tenant does not exist."""
        try:
            tenant_uuid = uuid.UUID(str(tenant_id))
        except ValueError:
            raise InvalidRequest(
                'tenant_id must be a UUID',
                details={'tenant_id': str(tenant_id)}
            )
        if not cls.store.tenant_exists(tenant_uuid):
            raise NotFound(
                f"Tenant '{tenant_id}' does not exist",
                details={'tenant_id': str(tenant_id)}
            )
        return tenant_uuid

    # Role matrix

    @classmethod
    def set_role_permission(cls, tenant_id, role: str, capability_key: str,
                            effect: Optional[str], actor_id=None, request=None) -> Dict[str, Any]:
        """
        Set or remove a role matrix entry.

        Args:
            tenant_id: Tenant of the entry, or None for a platform entry
            role: Role the entry applies to
            capability_key: Capability key
            effect: 'allow', 'deny', or None to remove the entry
            actor_id: User making the change (for audit)
            request: Django request (for audit context)

        Returns:
            Dict describing the entry before and after the change

        Raises:
            InvalidRequest: Unknown capability/role/effect or scope violation
            NotFound: Tenant does not exist
            StoreUnavailable: Policy store cannot be reached
        """
        cls._validate_role(role)
        cls._validate_effect(effect)
        capability = cls._get_capability(capability_key)

        if tenant_id is None:
            if role != SUPER_ADMIN:
                raise InvalidRequest(
                    'Platform entries may only name super_admin',
                    details={'role': role}
                )
            if effect is None:
                previous = cls.store.delete_platform_role_permission(capability)
            else:
                _, previous = cls.store.upsert_platform_role_permission(capability, effect)
        else:
            if capability.scope == SCOPE_PLATFORM:
                raise InvalidRequest(
                    f"Capability '{capability.key}' can only be set at platform scope",
                    details={'capability_key': capability.key, 'scope': capability.scope}
                )
            tenant_id = cls._get_tenant_id(tenant_id)
            if effect is None:
                previous = cls.store.delete_role_permission(tenant_id, role, capability)
            else:
                _, previous = cls.store.upsert_role_permission(tenant_id, role, capability, effect)

        result = {
            'tenant_id': str(tenant_id) if tenant_id else None,
            'role': role,
            'capability_key': capability.key,
            'effect': effect,
            'previous_effect': previous,
            'changed': previous != effect,
        }

        if result['changed']:
            action = 'role_permission_removed' if effect is None else 'role_permission_set'
            cls._record(
                action,
                actor_id=actor_id,
                tenant_id=tenant_id,
                target_type='RolePermission',
                target_id=f"{role}:{capability.key}",
                diff={'before': previous, 'after': effect},
                metadata={'role': role, 'capability_key': capability.key},
                request=request,
            )
        return result

    @classmethod
    def sync_role_matrix(cls, tenant_id, changes: List[Dict[str, Any]],
                         actor_id=None, request=None) -> List[Dict[str, Any]]:
        """
        Apply a batch of matrix changes one entry at a time.

        Each change is an independent set_role_permission call; a failing
        item is reported and does not undo the items before it.

        Args:
            tenant_id: Tenant of the matrix, or None for the platform matrix
            changes: List of {'role', 'capability_key', 'effect'} dicts

        Returns:
            One result per change, in order, with status 'applied' or 'error'
        """
        if tenant_id is not None:
            tenant_id = cls._get_tenant_id(tenant_id)

        results = []
        for change in changes:
            role = change.get('role')
            capability_key = change.get('capability_key')
            item = {'role': role, 'capability_key': capability_key}
            try:
                outcome = cls.set_role_permission(
                    tenant_id,
                    role,
                    capability_key,
                    change.get('effect'),
                    actor_id=actor_id,
                    request=request,
                )
            except PortalException as e:
                logger.warning(
                    f"Matrix sync item failed: {e.message}",
                    extra={'role': role, 'capability_key': capability_key, 'code': e.code}
                )
                item.update({'status': 'error', 'code': e.code, 'message': e.message})
            else:
                item.update({'status': 'applied', 'effect': outcome['effect'],
                             'changed': outcome['changed']})
            results.append(item)

        applied = sum(1 for item in results if item['status'] == 'applied')
        logger.info(
            f"Matrix sync applied {applied} of {len(results)} changes",
            extra={'tenant_id': str(tenant_id) if tenant_id else None}
        )
        return results

    # User overrides

    @classmethod
    def set_user_override(cls, tenant_id, user_id, capability_key: str,
                          granted: Optional[bool], reason: str = '',
                          actor_id=None, request=None) -> Dict[str, Any]:
        """
        Grant, deny, or remove a per-user override.

        Args:
            tenant_id: Tenant the override applies in (required)
            user_id: User the override applies to
            capability_key: Tenant-scope capability key
            granted: True to grant, False to deny, None to remove
            reason: Why the override exists
            actor_id: User making the change (recorded as granted_by)

        Returns:
            Dict describing the override before and after the change
        """
        if tenant_id is None:
            raise InvalidRequest('User overrides require a tenant')
        try:
            user_id = uuid.UUID(str(user_id))
        except ValueError:
            raise InvalidRequest('user_id must be a UUID', details={'user_id': str(user_id)})
        if granted is not None and not isinstance(granted, bool):
            raise InvalidRequest('granted must be true, false or null')

        capability = cls._get_capability(capability_key)
        if capability.scope != SCOPE_TENANT:
            raise InvalidRequest(
                f"Capability '{capability.key}' cannot be overridden per user",
                details={'capability_key': capability.key, 'scope': capability.scope}
            )
        tenant_id = cls._get_tenant_id(tenant_id)

        if granted is None:
            previous = cls.store.delete_user_override(tenant_id, user_id, capability)
        else:
            _, previous = cls.store.upsert_user_override(
                tenant_id, user_id, capability, granted,
                reason=reason, granted_by=actor_id,
            )

        result = {
            'tenant_id': str(tenant_id),
            'user_id': str(user_id),
            'capability_key': capability.key,
            'granted': granted,
            'previous_granted': previous,
            'changed': previous != granted,
        }

        if result['changed']:
            action = 'user_override_removed' if granted is None else 'user_override_set'
            cls._record(
                action,
                actor_id=actor_id,
                tenant_id=tenant_id,
                target_type='UserOverride',
                target_id=f"{user_id}:{capability.key}",
                diff={'before': previous, 'after': granted},
                metadata={'user_id': str(user_id), 'capability_key': capability.key,
                          'reason': reason},
                request=request,
            )
        return result

    # Feature flags

    @classmethod
    def set_feature_flag(cls, tenant_id, feature_key: str, enabled: Optional[bool],
                         actor_id=None, request=None) -> Dict[str, Any]:
        """
        Switch a tenant module on or off, or remove the flag (back to enabled).
        """
        if feature_key not in FEATURE_KEYS:
            raise InvalidRequest(
                f"Unknown feature '{feature_key}'",
                details={'allowed': FEATURE_KEYS}
            )
        if enabled is not None and not isinstance(enabled, bool):
            raise InvalidRequest('enabled must be true, false or null')
        if tenant_id is None:
            raise InvalidRequest('Feature flags require a tenant')
        tenant_id = cls._get_tenant_id(tenant_id)

        if enabled is None:
            previous = cls.store.delete_feature_flag(tenant_id, feature_key)
        else:
            _, previous = cls.store.upsert_feature_flag(tenant_id, feature_key, enabled)

        result = {
            'tenant_id': str(tenant_id),
            'feature_key': feature_key,
            'is_enabled': enabled,
            'previous': previous,
            'changed': previous != enabled,
        }

        if result['changed']:
            action = 'feature_flag_removed' if enabled is None else 'feature_flag_set'
            cls._record(
                action,
                actor_id=actor_id,
                tenant_id=tenant_id,
                target_type='FeatureFlag',
                target_id=feature_key,
                diff={'before': previous, 'after': enabled},
                request=request,
            )
        return result

    # Audit

    @classmethod
    def _record(cls, action, actor_id, tenant_id, target_type, target_id,
                diff, metadata=None, request=None):
        AuditLog.log_action(
            action=action,
            actor_id=actor_id,
            tenant_id=tenant_id,
            target_type=target_type,
            target_id=target_id,
            diff=diff,
            metadata=metadata,
            request=request,
        )
        SecurityLogger.log_policy_changed(
            action,
            actor_id=actor_id,
            tenant_id=tenant_id,
            target_type=target_type,
            target_id=target_id,
            before=diff.get('before'),
            after=diff.get('after'),
        )
