"""
Tests for core views and request middleware.
"""
from unittest.mock import patch

import pytest
from django.db import DatabaseError


@pytest.mark.django_db
class TestHealthCheck:
    """Test GET /v1/health/."""

    def test_healthy(self, api_client):
        response = api_client.get('/v1/health/')

        assert response.status_code == 200
        assert response.json() == {'status': 'healthy', 'database': 'healthy'}

    def test_database_down(self, api_client):
        with patch('apps.core.views.connection.cursor', side_effect=DatabaseError('gone')):
            response = api_client.get('/v1/health/')

        assert response.status_code == 503
        assert response.json()['status'] == 'unhealthy'
        assert response.json()['errors'] == ['Database: gone']

    def test_request_id_echoed(self, api_client):
        response = api_client.get('/v1/health/', HTTP_X_REQUEST_ID='trace-abc')

        assert response['X-Request-ID'] == 'trace-abc'

    def test_request_id_generated(self, api_client):
        response = api_client.get('/v1/health/')

        assert response['X-Request-ID']
