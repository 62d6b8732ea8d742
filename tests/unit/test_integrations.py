"""
Unit Tests for collaborator HTTP implementations
"""

from flask_jwt_extended import create_access_token

from app.integrations.http_clients import JWTAuthenticator


class TestJWTAuthenticator:

    def test_valid_dashboard_token(self, app):
        token = create_access_token(identity='A1', additional_claims={'platformID': 'P1', 'role': 'superuser'})

        result = JWTAuthenticator().authenticate(token)

        assert result['success'] is True
        assert result['admin'] == {'platformID': 'P1', 'adminID': 'A1', 'role': 'superuser'}

    def test_malformed_token_is_rejected(self, app):
        result = JWTAuthenticator().authenticate('not-a-jwt')

        assert result['success'] is False
        assert result['message']

    def test_token_without_platform(self, app):
        token = create_access_token(identity='A1')

        result = JWTAuthenticator().authenticate(token)

        assert result == {'success': False, 'message': 'Token carries no platform'}

    def test_missing_token(self, app):
        assert JWTAuthenticator().authenticate('') == {'success': False, 'message': 'Missing token'}
