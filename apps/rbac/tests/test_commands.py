"""
Tests for the seed_capabilities and seed_role_matrix management commands.
"""
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.rbac.constants import CAPABILITY_GROUPS, SCOPE_TENANT
from apps.rbac.engine import check
from apps.rbac.models import Capability, RolePermission
from apps.rbac.services import PolicyAdminService


def run(command, *args):
    out = StringIO()
    call_command(command, *args, stdout=out)
    return out.getvalue()


@pytest.mark.django_db
class TestSeedCapabilities:
    """Test catalog provisioning."""

    def test_creates_every_capability(self):
        output = run('seed_capabilities')

        expected = {key for group in CAPABILITY_GROUPS for key, _ in group['capabilities']}
        assert set(Capability.objects.values_list('key', flat=True)) == expected
        assert f'{len(expected)} created' in output

    def test_idempotent(self):
        run('seed_capabilities')
        output = run('seed_capabilities')

        assert '0 created, 0 updated' in output

    def test_restores_changed_fields(self):
        run('seed_capabilities')
        Capability.objects.filter(key='tickets:view').update(label='Peek at tickets')

        output = run('seed_capabilities')

        assert Capability.objects.get(key='tickets:view').label == 'View Tickets'
        assert '1 updated' in output


@pytest.mark.django_db
class TestSeedRoleMatrix:
    """Test default matrix seeding."""

    def test_requires_a_target(self, capabilities):
        with pytest.raises(CommandError):
            run('seed_role_matrix')

    def test_rejects_combined_targets(self, tenant, capabilities):
        with pytest.raises(CommandError):
            run('seed_role_matrix', '--all', '--platform')

    def test_requires_catalog(self, tenant):
        with pytest.raises(CommandError):
            run('seed_role_matrix', '--tenant', tenant.slug)

    def test_unknown_tenant(self, capabilities):
        with pytest.raises(CommandError):
            run('seed_role_matrix', '--tenant', 'nobody')

    def test_seeds_tenant_defaults(self, tenant, capabilities, make_principal):
        run('seed_role_matrix', '--tenant', tenant.slug)

        admin = make_principal('tenant_admin', tenant)
        tenant_capabilities = Capability.objects.for_scope(SCOPE_TENANT).count()
        assert RolePermission.objects.filter(tenant=tenant, role='tenant_admin').count() == tenant_capabilities
        assert check(admin, 'manage_company_users')
        assert not check(admin, 'tickets:delete')
        assert not check(admin, 'manage_all_companies')
        assert check(make_principal('requester', tenant), 'create_toner_request')
        assert not check(make_principal('requester', tenant), 'tickets:approve')

    def test_tenant_by_id(self, tenant, capabilities):
        run('seed_role_matrix', '--tenant', str(tenant.id))

        assert RolePermission.objects.filter(tenant=tenant).exists()

    def test_all_tenants(self, tenant, other_tenant, capabilities):
        run('seed_role_matrix', '--all')

        assert RolePermission.objects.filter(tenant=tenant).count() == \
            RolePermission.objects.filter(tenant=other_tenant).count()

    def test_keeps_administrator_changes(self, tenant, capabilities, make_principal):
        """Re-seeding does not undo edits unless --reset is given."""
        run('seed_role_matrix', '--tenant', tenant.slug)
        PolicyAdminService.set_role_permission(tenant.id, 'requester', 'view_news', 'deny')

        run('seed_role_matrix', '--tenant', tenant.slug)
        assert not check(make_principal('requester', tenant), 'view_news')

        output = run('seed_role_matrix', '--tenant', tenant.slug, '--reset')
        assert check(make_principal('requester', tenant), 'view_news')
        assert '1 entries updated' in output

    def test_platform(self, capabilities, make_principal):
        run('seed_role_matrix', '--platform')

        assert RolePermission.objects.platform().count() == len(capabilities)
        assert check(make_principal('super_admin'), 'manage_all_companies')
