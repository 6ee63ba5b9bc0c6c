"""
Tests for structured logging, PII masking and security events.
"""
import json
import logging
import sys
import threading
import uuid
from unittest.mock import patch

from django.test import TestCase

from apps.core.logging import JSONFormatter, PIIMasker, SecurityLogger
from apps.core.middleware import LoggingFilter
from apps.rbac.engine import Principal


class PIIMaskerTestCase(TestCase):
    """Test PII masking functionality."""

    def test_mask_email_addresses(self):
        """Test email address masking."""
        text = "Contact user@example.com or admin@test.org"
        masked = PIIMasker.mask_email(text)

        self.assertIn("u***@example.com", masked)
        self.assertNotIn("user@example.com", masked)
        self.assertIn("a****@test.org", masked)

    def test_mask_api_keys(self):
        """Test API key masking."""
        text = 'api_key: "sk_live_abc123" and token="bearer_xyz789"'
        masked = PIIMasker.mask_api_keys(text)

        self.assertIn("api_key: ********", masked)
        self.assertNotIn("sk_live_abc123", masked)
        self.assertNotIn("bearer_xyz789", masked)

    def test_mask_dict_sensitive_fields(self):
        """Sensitive keys are replaced; policy fields pass through."""
        data = {
            'capability_key': 'tickets:approve',
            'email': 'john@example.com',
            'secret_key': 'abc',
            'diff': {'before': None, 'after': 'allow'},
            'notes': ['reach me at jane@example.com'],
        }
        masked = PIIMasker.mask_dict(data)

        self.assertEqual(masked['capability_key'], 'tickets:approve')
        self.assertEqual(masked['email'], '********')
        self.assertEqual(masked['secret_key'], '********')
        self.assertEqual(masked['diff'], {'before': None, 'after': 'allow'})
        self.assertEqual(masked['notes'], ['reach me at j***@example.com'])

    def test_non_strings_untouched(self):
        self.assertEqual(PIIMasker.mask_text(42), 42)
        self.assertEqual(PIIMasker.mask_dict(None), None)


class JSONFormatterTestCase(TestCase):
    """Test JSON log formatting."""

    def setUp(self):
        self.formatter = JSONFormatter()

    def make_record(self, message, **extra):
        record = logging.LogRecord(
            name='apps.rbac.engine', level=logging.WARNING, pathname=__file__,
            lineno=10, msg=message, args=(), exc_info=None
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        output = json.loads(self.formatter.format(self.make_record('Permission denied')))

        self.assertEqual(output['level'], 'WARNING')
        self.assertEqual(output['logger'], 'apps.rbac.engine')
        self.assertEqual(output['message'], 'Permission denied')
        self.assertIn('timestamp', output)

    def test_request_context_and_extra_fields(self):
        record = self.make_record(
            'Resolved',
            request_id='req-1',
            tenant_id=uuid.UUID('11111111-1111-1111-1111-111111111111'),
            capability_key='tickets:view',
        )
        output = json.loads(self.formatter.format(record))

        self.assertEqual(output['request_id'], 'req-1')
        self.assertEqual(output['tenant_id'], '11111111-1111-1111-1111-111111111111')
        self.assertEqual(output['capability_key'], 'tickets:view')

    def test_unserializable_extra_is_stringified(self):
        user_id = uuid.uuid4()
        output = json.loads(self.formatter.format(self.make_record('x', user_id=user_id)))

        self.assertEqual(output['user_id'], str(user_id))

    def test_exception_info(self):
        try:
            raise ValueError('bad password=hunter2')
        except ValueError:
            record = self.make_record('failed')
            record.exc_info = sys.exc_info()

        output = json.loads(self.formatter.format(record))

        self.assertEqual(output['exception']['type'], 'ValueError')
        self.assertNotIn('hunter2', output['exception']['message'])


class LoggingFilterTestCase(TestCase):
    """Test request context injection from thread-local storage."""

    def test_adds_thread_context(self):
        thread = threading.current_thread()
        thread.request_id = 'req-42'
        try:
            record = logging.LogRecord('apps', logging.INFO, __file__, 1, 'msg', (), None)
            self.assertTrue(LoggingFilter().filter(record))
            self.assertEqual(record.request_id, 'req-42')
        finally:
            del thread.request_id


class SecurityLoggerTestCase(TestCase):
    """Test security event logging."""

    def setUp(self):
        self.principal = Principal(
            user_id=uuid.uuid4(), tenant_id=uuid.uuid4(), role='manager'
        )

    @patch('apps.core.logging.logging.getLogger')
    def test_access_denied(self, mock_get_logger):
        SecurityLogger.log_access_denied(
            self.principal, 'tickets:delete', matched_source='default_deny', path='/v1/x'
        )

        mock_get_logger.assert_called_with('security')
        log_call = mock_get_logger.return_value.warning.call_args
        self.assertEqual(log_call.args[0], 'Security event: access_denied')
        self.assertEqual(log_call.kwargs['extra']['capability_key'], 'tickets:delete')
        self.assertEqual(log_call.kwargs['extra']['matched_source'], 'default_deny')
        self.assertEqual(log_call.kwargs['extra']['role'], 'manager')

    @patch('apps.core.logging.sentry_sdk.capture_message')
    @patch('apps.core.logging.logging.getLogger')
    def test_cross_tenant_attempt_alerts(self, mock_get_logger, mock_capture):
        SecurityLogger.log_cross_tenant_attempt(self.principal, uuid.uuid4(), path='/v1/features')

        mock_get_logger.return_value.error.assert_called_once()
        mock_capture.assert_called_once()
        self.assertIn('cross_tenant_attempt', mock_capture.call_args.args[0])

    @patch('apps.core.logging.sentry_sdk.capture_message')
    @patch('apps.core.logging.logging.getLogger')
    def test_policy_change_does_not_alert(self, mock_get_logger, mock_capture):
        SecurityLogger.log_policy_changed(
            'role_permission_set', actor_id=uuid.uuid4(), tenant_id=None,
            target_type='RolePermission', target_id='super_admin:view_system_metrics',
            before=None, after='allow',
        )

        extra = mock_get_logger.return_value.info.call_args.kwargs['extra']
        self.assertEqual(extra['action'], 'role_permission_set')
        self.assertIsNone(extra['tenant_id'])
        self.assertEqual(extra['after'], 'allow')
        mock_capture.assert_not_called()
