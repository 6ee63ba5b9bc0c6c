"""
Tests for tenant middleware.
"""
import json
import uuid
from unittest.mock import patch

import pytest
from django.db import OperationalError
from django.test import TestCase, RequestFactory

from apps.tenants.middleware import TenantContextMiddleware
from apps.tenants.models import Tenant


@pytest.mark.django_db
class TestTenantContextMiddleware(TestCase):
    """Test TenantContextMiddleware."""

    def setUp(self):
        """Set up test data."""
        self.factory = RequestFactory()
        self.middleware = TenantContextMiddleware(get_response=lambda r: None)

        self.tenant = Tenant.objects.create(
            name='Test Business',
            slug='test-business',
            status='active',
        )
        self.user_id = uuid.uuid4()

    def request(self, path='/v1/capabilities', **headers):
        return self.factory.get(path, **headers)

    def headers(self, role='manager', tenant=True):
        headers = {
            'HTTP_X_USER_ID': str(self.user_id),
            'HTTP_X_USER_ROLE': role,
        }
        if tenant:
            headers['HTTP_X_TENANT_ID'] = str(self.tenant.id)
        return headers

    def error_code(self, response):
        return json.loads(response.content)['error']['code']

    def test_public_path_bypass(self):
        """Test that public paths bypass identity checks."""
        request = self.request('/v1/health/')
        response = self.middleware.process_request(request)

        self.assertIsNone(response)
        self.assertIsNone(request.principal)

    def test_valid_principal(self):
        """Test that valid headers set request.tenant and request.principal."""
        request = self.request(**self.headers())
        response = self.middleware.process_request(request)

        self.assertIsNone(response)
        self.assertEqual(request.tenant, self.tenant)
        self.assertEqual(request.principal.user_id, self.user_id)
        self.assertEqual(request.principal.tenant_id, self.tenant.id)
        self.assertEqual(request.principal.role, 'manager')

    def test_super_admin_without_tenant(self):
        """Test that super_admin may act without a tenant."""
        request = self.request(**self.headers(role='super_admin', tenant=False))
        response = self.middleware.process_request(request)

        self.assertIsNone(response)
        self.assertIsNone(request.tenant)
        self.assertTrue(request.principal.is_platform)

    def test_missing_headers(self):
        """Test that missing identity headers return 401."""
        response = self.middleware.process_request(self.request())

        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.error_code(response), 'MISSING_IDENTITY')

    def test_malformed_user_id(self):
        headers = self.headers()
        headers['HTTP_X_USER_ID'] = 'user-1'
        response = self.middleware.process_request(self.request(**headers))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.error_code(response), 'INVALID_IDENTITY')

    def test_unknown_tenant(self):
        headers = self.headers()
        headers['HTTP_X_TENANT_ID'] = str(uuid.uuid4())
        response = self.middleware.process_request(self.request(**headers))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.error_code(response), 'INVALID_TENANT')

    def test_suspended_tenant(self):
        """Test that suspended tenants are refused."""
        self.tenant.status = 'suspended'
        self.tenant.save()

        response = self.middleware.process_request(self.request(**self.headers()))

        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.error_code(response), 'TENANT_INACTIVE')

    @patch('apps.tenants.middleware.SecurityLogger')
    def test_tenant_lookup_outage(self, mock_security_logger):
        """Test that a database outage returns a 503 envelope instead of a 500 page."""
        with patch.object(Tenant.objects, 'filter', side_effect=OperationalError('db down')):
            response = self.middleware.process_request(self.request(**self.headers()))

        self.assertEqual(response.status_code, 503)
        self.assertEqual(self.error_code(response), 'STORE_UNAVAILABLE')
        mock_security_logger.log_store_unavailable.assert_called_once_with('tenant_lookup', 'db down')

    def test_trial_tenant_allowed(self):
        self.tenant.status = 'trial'
        self.tenant.save()

        self.assertIsNone(self.middleware.process_request(self.request(**self.headers())))

    def test_unknown_role(self):
        response = self.middleware.process_request(self.request(**self.headers(role='owner')))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.error_code(response), 'INVALID_REQUEST')

    def test_tenant_role_requires_tenant(self):
        response = self.middleware.process_request(
            self.request(**self.headers(role='requester', tenant=False))
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn('details', json.loads(response.content)['error'])
