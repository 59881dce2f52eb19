"""Tests pour la configuration (app/core/config.py)."""

import os

import pytest
from pydantic import ValidationError

from app.core.config import Settings, parse_list_from_env, settings


class TestParseListFromEnv:
    """Tests pour la fonction utilitaire parse_list_from_env."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (["read", "write"], ["read", "write"]),
            ("read,write", ["read", "write"]),
            ("  read , write  ", ["read", "write"]),
            ('["read", "write"]', ["read", "write"]),
            ("", []),
            ("   ", []),
        ],
    )
    def test_supported_formats(self, raw, expected):
        assert parse_list_from_env(raw, "CONSENT_DEFAULT_PERMISSIONS") == expected

    def test_invalid_json(self):
        with pytest.raises(ValueError, match="CONSENT_DEFAULT_PERMISSIONS"):
            parse_list_from_env("[read", "CONSENT_DEFAULT_PERMISSIONS")


class TestSettings:
    """Tests pour les valeurs par défaut du sous-système."""

    def test_verification_defaults(self):
        assert settings.OTP_LENGTH == 6
        assert settings.OTP_TTL_MINUTES == 10
        assert settings.OTP_MAX_ATTEMPTS == 5
        assert settings.OTP_ATTEMPT_WINDOW_MINUTES == 10

    def test_test_secrets_are_loaded(self):
        assert settings.OTP_HASH_SECRET == os.environ["OTP_HASH_SECRET"]
        assert settings.AUDIT_CHAIN_SECRET == os.environ["AUDIT_CHAIN_SECRET"]

    @pytest.mark.parametrize("name", ["OTP_HASH_SECRET", "AUDIT_CHAIN_SECRET"])
    def test_secrets_are_required(self, monkeypatch, name):
        """Sans clé HMAC configurée, le service refuse de démarrer."""
        monkeypatch.delenv(name)

        with pytest.raises(ValidationError, match=name):
            Settings(_env_file=None)

    def test_lists_from_environment(self, monkeypatch):
        monkeypatch.setenv("KEYCLOAK_ALLOWED_CLIENTS", '["portal-a", "portal-b"]')
        monkeypatch.setenv("CONSENT_DEFAULT_PERMISSIONS", '["read","write"]')

        loaded = Settings()

        assert loaded.KEYCLOAK_ALLOWED_CLIENTS == ["portal-a", "portal-b"]
        assert loaded.CONSENT_DEFAULT_PERMISSIONS == ["read", "write"]

    def test_api_prefix(self):
        assert settings.get_api_prefix() == "/api/v1"
        assert settings.get_api_prefix("v2") == "/api/v2"
