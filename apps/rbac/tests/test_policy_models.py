"""
Tests for RBAC models, managers and constraints.
"""
import uuid

import pytest
from django.db import IntegrityError, transaction
from django.test import RequestFactory

from apps.rbac.models import AuditLog, Capability, FeatureFlag, RolePermission, UserOverride


@pytest.mark.django_db
class TestCapabilityModel:
    """Test the capability catalog model."""

    def test_get_or_create_is_idempotent(self):
        first, created = Capability.objects.get_or_create_capability(
            key='reports:export', label='Export Reports', group='reports'
        )
        second, created_again = Capability.objects.get_or_create_capability(
            key='reports:export', label='Something else'
        )

        assert created and not created_again
        assert first.pk == second.pk
        assert second.label == 'Export Reports'

    def test_str(self, capabilities):
        assert str(capabilities['tickets:view']) == 'tickets:view - View Tickets'

    def test_for_scope(self, capabilities):
        platform_keys = set(Capability.objects.for_scope('platform').values_list('key', flat=True))

        assert platform_keys == {
            'manage_all_companies', 'manage_system_users', 'manage_file_storage',
            'manage_role_permissions', 'view_system_metrics',
        }


@pytest.mark.django_db
class TestUniqueness:
    """Test one row per policy key."""

    def test_one_tenant_entry_per_role_and_capability(self, tenant, capabilities):
        RolePermission.objects.create(
            tenant=tenant, role='manager', capability=capabilities['tickets:view'], effect='allow'
        )
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                RolePermission.objects.create(
                    tenant=tenant, role='manager', capability=capabilities['tickets:view'], effect='deny'
                )

    def test_one_platform_entry_per_capability(self, capabilities):
        """Null tenants still collide for platform entries."""
        RolePermission.objects.create(
            tenant=None, role='super_admin', capability=capabilities['tickets:view'], effect='allow'
        )
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                RolePermission.objects.create(
                    tenant=None, role='super_admin', capability=capabilities['tickets:view'], effect='deny'
                )

    def test_same_entry_in_two_tenants(self, tenant, other_tenant, capabilities):
        for owner in (tenant, other_tenant):
            RolePermission.objects.create(
                tenant=owner, role='manager', capability=capabilities['tickets:view'], effect='allow'
            )

        assert RolePermission.objects.filter(role='manager').count() == 2

    def test_one_override_per_user_and_capability(self, tenant, capabilities):
        user_id = uuid.uuid4()
        UserOverride.objects.create(
            tenant=tenant, user_id=user_id, capability=capabilities['view_news'], granted=True
        )
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                UserOverride.objects.create(
                    tenant=tenant, user_id=user_id, capability=capabilities['view_news'], granted=False
                )

    def test_one_flag_per_feature(self, tenant):
        FeatureFlag.objects.create(tenant=tenant, feature_key='approvals', is_enabled=False)
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                FeatureFlag.objects.create(tenant=tenant, feature_key='approvals', is_enabled=True)


@pytest.mark.django_db
class TestAuditLog:
    """Test audit log helpers."""

    def test_log_action_with_request_context(self, tenant):
        request = RequestFactory().put(
            '/v1/role-permissions', HTTP_X_FORWARDED_FOR='203.0.113.7, 10.0.0.1'
        )
        request.request_id = 'req-77'
        actor_id = uuid.uuid4()

        log = AuditLog.log_action(
            'role_permission_set',
            actor_id=actor_id,
            tenant_id=tenant.id,
            target_type='RolePermission',
            target_id='manager:tickets:view',
            diff={'before': None, 'after': 'allow'},
            request=request,
        )

        assert log.ip_address == '203.0.113.7'
        assert log.request_id == 'req-77'
        assert log.actor_id == actor_id
        assert log.tenant_id == tenant.id
        assert log.diff == {'before': None, 'after': 'allow'}
        assert not AuditLog.objects.platform().exists()

    def test_str(self, tenant):
        platform_log = AuditLog.log_action('role_permission_set', target_type='RolePermission')
        tenant_log = AuditLog.log_action(
            'feature_flag_set', tenant_id=tenant.id, target_type='FeatureFlag'
        )

        assert str(platform_log) == 'Platform - System - role_permission_set'
        assert str(tenant_log).startswith('Test Tenant - System')
