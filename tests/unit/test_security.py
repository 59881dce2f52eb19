"""Tests unitaires pour le module de securite.

Ce module teste la validation des tokens Keycloak, l'extraction du bearer,
le health id de l'appelant et les controles d'acces par role.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException

from app.core.config import settings
from app.core.security import (
    User,
    client_ip,
    extract_token,
    get_current_user,
    require_roles,
    verify_token,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def patient_token_data():
    """Token data typique Keycloak pour un patient."""
    return {
        "sub": "kc-uuid-123",
        "health_id": "CN-7F3A-0921",
        "email": "awa@curanet.sn",
        "preferred_username": "awa",
        "realm_access": {"roles": ["patient", "offline_access"]},
        "resource_access": {settings.KEYCLOAK_CLIENT_ID: {"roles": ["consent-reader"]}},
        "iss": f"{settings.KEYCLOAK_SERVER_URL.rstrip('/')}/realms/{settings.KEYCLOAK_REALM}",
        "azp": "apps-curanet-patient-portal",
        "aud": ["account"],
    }


@pytest.fixture
def admin_token_data(patient_token_data):
    return {
        **patient_token_data,
        "sub": "kc-admin-1",
        "health_id": None,
        "realm_access": {"roles": ["admin"]},
        "azp": "apps-curanet-admin-portal",
    }


class TestUserModel:
    """Tests pour la classe User."""

    def test_subject_id_from_health_id_claim(self, patient_token_data):
        assert User(**patient_token_data).subject_id == "CN-7F3A-0921"

    def test_subject_id_falls_back_to_sub(self, admin_token_data):
        assert User(**admin_token_data).subject_id == "kc-admin-1"

    def test_roles_include_realm_and_client_roles(self, patient_token_data):
        user = User(**patient_token_data)
        assert user.has_role("patient")
        assert user.has_role("consent-reader")
        assert user.is_admin is False

    def test_is_admin(self, admin_token_data):
        assert User(**admin_token_data).is_admin is True

    def test_no_roles(self):
        assert User(sub="x").roles == []


class TestVerifyToken:
    """Tests pour verify_token."""

    @pytest.mark.asyncio
    async def test_valid_token(self, patient_token_data):
        with patch("app.core.security.keycloak_openid") as mock_kc:
            mock_kc.decode_token.return_value = patient_token_data
            token_info = await verify_token("token")
        assert token_info["sub"] == "kc-uuid-123"

    @pytest.mark.asyncio
    async def test_decode_failure_is_unauthorized(self):
        with patch("app.core.security.keycloak_openid") as mock_kc:
            mock_kc.decode_token.side_effect = Exception("signature expired")
            with pytest.raises(HTTPException) as exc_info:
                await verify_token("token")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "claim,value",
        [
            ("azp", "apps-unknown"),
            ("aud", ["other-service"]),
            ("iss", "http://evil.example/realms/curanet"),
        ],
    )
    async def test_rejected_claims(self, patient_token_data, claim, value):
        """Client, audience ou émetteur non autorisés: 401."""
        with patch("app.core.security.keycloak_openid") as mock_kc:
            mock_kc.decode_token.return_value = {**patient_token_data, claim: value}
            with pytest.raises(HTTPException) as exc_info:
                await verify_token("token")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_audience_as_string(self, patient_token_data):
        with patch("app.core.security.keycloak_openid") as mock_kc:
            mock_kc.decode_token.return_value = {**patient_token_data, "aud": settings.KEYCLOAK_CLIENT_ID}
            token_info = await verify_token("token")
        assert token_info["azp"] == "apps-curanet-patient-portal"


class TestExtractToken:
    @pytest.mark.asyncio
    async def test_bearer_credentials(self):
        credentials = MagicMock()
        credentials.credentials = "valid-token-123"
        assert await extract_token(credentials) == "valid-token-123"

    @pytest.mark.asyncio
    async def test_missing_token_is_unauthorized(self):
        with pytest.raises(HTTPException) as exc_info:
            await extract_token(None)
        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


class TestGetCurrentUser:
    @pytest.mark.asyncio
    async def test_user_built_from_token(self, patient_token_data):
        with patch("app.core.security.verify_token", return_value=patient_token_data):
            user = await get_current_user("token")
        assert user.subject_id == "CN-7F3A-0921"


class TestRequireRoles:
    """Tests pour require_roles."""

    @pytest.mark.asyncio
    async def test_any_listed_role_is_enough(self, patient_token_data):
        checker = require_roles("doctor", "patient")
        user = User(**patient_token_data)
        assert await checker(current_user=user) is user

    @pytest.mark.asyncio
    async def test_missing_role_is_forbidden(self, patient_token_data):
        checker = require_roles("admin")
        with pytest.raises(HTTPException) as exc_info:
            await checker(current_user=User(**patient_token_data))
        assert exc_info.value.status_code == 403


class TestClientIp:
    def test_forwarded_for_first_hop(self):
        request = MagicMock()
        request.headers = {"x-forwarded-for": "203.0.113.5, 10.0.0.1"}
        assert client_ip(request) == "203.0.113.5"

    def test_peer_address(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "10.0.0.9"
        assert client_ip(request) == "10.0.0.9"

    def test_no_client(self):
        request = MagicMock()
        request.headers = {}
        request.client = None
        assert client_ip(request) is None
