"""
Pytest configuration and fixtures.
"""
import uuid
from io import StringIO

import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.SECURE_SSL_REDIRECT = False
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def tenant(db):
    """Create a test tenant."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Test Tenant',
        slug='test-tenant',
        status='active'
    )


@pytest.fixture
def other_tenant(db):
    """Create another test tenant for isolation tests."""
    from apps.tenants.models import Tenant
    return Tenant.objects.create(
        name='Other Tenant',
        slug='other-tenant',
        status='active'
    )


@pytest.fixture
def capabilities(db):
    """Seed the capability catalog."""
    from apps.rbac.models import Capability
    call_command('seed_capabilities', stdout=StringIO())
    return {capability.key: capability for capability in Capability.objects.all()}


@pytest.fixture
def make_principal():
    """Build principals with fresh user ids."""
    from apps.rbac.engine import Principal

    def _make(role, tenant=None, user_id=None):
        return Principal(
            user_id=user_id or uuid.uuid4(),
            tenant_id=tenant.id if tenant is not None else None,
            role=role,
        )
    return _make


def identity_headers(principal):
    """Request headers carrying a principal, as set by the identity layer."""
    headers = {
        'HTTP_X_USER_ID': str(principal.user_id),
        'HTTP_X_USER_ROLE': principal.role,
    }
    if principal.tenant_id:
        headers['HTTP_X_TENANT_ID'] = str(principal.tenant_id)
    return headers


@pytest.fixture
def as_principal(api_client):
    """Return a function that sets the API client's identity headers."""
    def _as(principal):
        api_client.credentials(**identity_headers(principal))
        return api_client
    return _as
