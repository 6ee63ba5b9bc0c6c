"""
Tests for capability key parsing and the capability catalog.
"""
import pytest

from apps.rbac.catalog import CapabilityCatalog, CapabilityKey, parse_key, scope_allows_role


class TestCapabilityKeyParse:
    """Test parsing raw capability keys at the boundary."""

    def test_parse_resource_action(self):
        """resource:action keys split into resource and action."""
        key = CapabilityKey.parse('tickets:approve')

        assert key == CapabilityKey(resource='tickets', action='approve')
        assert not key.is_feature
        assert str(key) == 'tickets:approve'

    def test_parse_feature_key(self):
        """Flat feature keys have no action."""
        key = CapabilityKey.parse('manage_company_users')

        assert key.resource == 'manage_company_users'
        assert key.action is None
        assert key.is_feature
        assert str(key) == 'manage_company_users'

    def test_parse_strips_whitespace(self):
        """Surrounding whitespace is ignored."""
        assert str(CapabilityKey.parse('  tickets:view ')) == 'tickets:view'

    @pytest.mark.parametrize('raw', [
        '',
        '   ',
        ':approve',
        'tickets:',
        'tickets:approve:extra',
        'Tickets:Approve',
        'tickets approve',
        '9tickets:view',
        None,
        42,
        'x' * 101,
    ])
    def test_parse_rejects_malformed_keys(self, raw):
        """Malformed keys parse to None instead of raising."""
        assert CapabilityKey.parse(raw) is None

    def test_parse_passes_through_parsed_keys(self):
        """An already parsed key is returned unchanged."""
        key = CapabilityKey(resource='tickets', action='view')
        assert parse_key(key) is key


class TestScopeAllowsRole:
    """Test which roles may be evaluated against which capability scopes."""

    def test_tenant_role_and_tenant_capability(self):
        assert scope_allows_role('tenant', 'requester')

    def test_tenant_role_and_platform_capability(self):
        assert not scope_allows_role('platform', 'tenant_admin')

    def test_super_admin_sees_both_scopes(self):
        assert scope_allows_role('tenant', 'super_admin')
        assert scope_allows_role('platform', 'super_admin')

    def test_unknown_role(self):
        assert not scope_allows_role('tenant', 'owner')


@pytest.mark.django_db
class TestCapabilityCatalog:
    """Test catalog lookups against the seeded catalog."""

    def test_lookup_known_key(self, capabilities):
        """Known keys return their capability."""
        capability = CapabilityCatalog().lookup('tickets:approve')

        assert capability is not None
        assert capability.key == 'tickets:approve'
        assert capability.group == 'ticket-management'

    def test_lookup_unknown_and_malformed_keys(self, capabilities):
        """Unknown and malformed keys are indistinguishable."""
        catalog = CapabilityCatalog()

        assert catalog.lookup('tickets:teleport') is None
        assert catalog.lookup('not a key') is None

    def test_lookup_for_role_hides_platform_capabilities(self, capabilities):
        """Tenant roles cannot see platform capabilities."""
        catalog = CapabilityCatalog()

        assert catalog.lookup_for_role('manage_all_companies', 'tenant_admin') is None
        assert catalog.lookup_for_role('manage_all_companies', 'super_admin') is not None

    def test_for_role_filters_by_scope(self, capabilities):
        """for_role only returns capabilities of permitted scopes."""
        catalog = CapabilityCatalog()

        tenant_keys = {capability.key for capability in catalog.for_role('manager')}
        platform_keys = {capability.key for capability in catalog.for_role('super_admin')}

        assert 'manage_all_companies' not in tenant_keys
        assert 'tickets:approve' in tenant_keys
        assert 'manage_all_companies' in platform_keys
        assert tenant_keys < platform_keys

    def test_grouped(self, capabilities):
        """Capabilities are grouped by display group."""
        groups = {
            item['group']: [capability.key for capability in item['capabilities']]
            for item in CapabilityCatalog().grouped(scope='tenant')
        }

        assert 'system-admin' not in groups
        assert 'view_dashboard' in groups['basic-access']
        assert set(groups['ticket-management']) >= {'tickets:view', 'tickets:approve'}

    def test_grouped_for_role(self, capabilities):
        """A tenant role never sees platform groups; a group filter narrows the result."""
        catalog = CapabilityCatalog()

        manager_groups = {item['group'] for item in catalog.grouped(role='manager')}
        admin_groups = {item['group'] for item in catalog.grouped(role='super_admin')}
        tickets_only = catalog.grouped(group='ticket-management', role='manager')

        assert 'system-admin' not in manager_groups
        assert 'system-admin' in admin_groups
        assert [item['group'] for item in tickets_only] == ['ticket-management']
