"""
Test suite for health and readiness endpoints.
"""

import time
from unittest.mock import patch

from sqlalchemy.exc import OperationalError


class TestHealthEndpoint:
    """Test /health and /healthz."""

    def test_health_response_format(self, client):
        """Liveness always answers with the service name and a recent timestamp."""
        for path in ('/health', '/healthz'):
            response = client.get(path)
            data = response.get_json()

            assert response.status_code == 200
            assert data['status'] == 'ok'
            assert data['service'] == 'waifuhospital-backend'
            assert abs(time.time() - data['timestamp']) < 5

    def test_health_head_method(self, client):
        response = client.head('/healthz')
        assert response.status_code == 200
        assert response.data == b''

    def test_health_needs_no_auth(self, client):
        """Probes never pass through token checks."""
        assert client.get('/healthz', headers={'x-auth-token': 'garbage'}).status_code == 200


class TestReadinessEndpoint:
    """Test /readyz."""

    def test_ready_with_database(self, client):
        response = client.get('/readyz')
        data = response.get_json()

        assert response.status_code == 200
        assert data['status'] == 'ready'
        assert data['checks'] == {'database': True}

    def test_not_ready_when_database_fails(self, client):
        with patch('src.routes.health.db.session.execute',
                   side_effect=OperationalError('SELECT 1', {}, Exception('down'))):
            response = client.get('/readyz')

        assert response.status_code == 503
        assert response.get_json()['status'] == 'not_ready'
        assert response.get_json()['checks'] == {'database': False}


class TestRequestHeaders:

    def test_request_id_echoed(self, client):
        request_id = '0b0f6a52-8a8f-4a49-9c43-6b2fbdb3f1f4'
        response = client.get('/healthz', headers={'X-Request-ID': request_id})
        assert response.headers['X-Request-ID'] == request_id
        assert response.headers['X-Response-Time'].endswith('ms')

    def test_cors_on_api_routes(self, client):
        response = client.options('/api/characters', headers={
            'Origin': 'http://localhost:3000',
            'Access-Control-Request-Method': 'GET',
            'Access-Control-Request-Headers': 'x-auth-token',
        })
        assert response.headers.get('Access-Control-Allow-Origin')
        assert 'x-auth-token' in response.headers.get('Access-Control-Allow-Headers', '').lower()
