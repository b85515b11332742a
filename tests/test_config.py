import pytest

from app.core.config import Settings, parse_list_from_env


class TestParseListFromEnv:
    """Tests pour la fonction utilitaire parse_list_from_env."""

    def test_parse_direct(self):
        """Test avec une liste Python directe."""
        assert parse_list_from_env(["val1", "val2"], "test_field") == ["val1", "val2"]

    def test_parse_comma_separated_with_spaces(self):
        """Test avec format virgules et espaces."""
        result = parse_list_from_env("  localhost , 127.0.0.1 , testserver  ", "TRUSTED_HOSTS")
        assert result == ["localhost", "127.0.0.1", "testserver"]

    def test_parse_json_format(self):
        """Test avec format JSON."""
        result = parse_list_from_env('["http://localhost:3000", "https://app.africare.app"]')
        assert result == ["http://localhost:3000", "https://app.africare.app"]

    def test_parse_empty_string(self):
        """Test avec chaîne vide."""
        assert parse_list_from_env("", "test_field") == []
        assert parse_list_from_env("   ", "test_field") == []

    def test_parse_invalid_json(self):
        """Test avec JSON invalide."""
        with pytest.raises(ValueError, match="Format JSON invalide"):
            parse_list_from_env('["val1", val2]', "ALLOWED_ORIGINS")

    def test_parse_invalid_type(self):
        """Test avec un type non supporté."""
        with pytest.raises(ValueError, match="Valeur invalide"):
            parse_list_from_env(42, "ALLOWED_ORIGINS")


class TestSettings:
    """Valeurs par défaut des règles métier."""

    def test_business_defaults(self, monkeypatch):
        for key in (
            "LOW_STOCK_THRESHOLD",
            "EXPIRY_WARNING_DAYS",
            "INVITATION_TTL_DAYS",
            "SUBSCRIPTION_PERIOD_DAYS",
            "DEFAULT_COUNTRY_CODE",
        ):
            monkeypatch.delenv(key, raising=False)

        settings = Settings(_env_file=None)

        assert settings.LOW_STOCK_THRESHOLD == 10
        assert settings.EXPIRY_WARNING_DAYS == 90
        assert settings.INVITATION_TTL_DAYS == 7
        assert settings.SUBSCRIPTION_PERIOD_DAYS == 30
        assert settings.DEFAULT_COUNTRY_CODE == "254"
        assert settings.SALES_CACHE_TTL == 300
        assert settings.QUICK_SALE_CACHE_TTL == 86400

    def test_trusted_hosts_from_env(self, monkeypatch):
        monkeypatch.setenv("TRUSTED_HOSTS", "api.africare.app,localhost")

        settings = Settings(_env_file=None)

        assert settings.TRUSTED_HOSTS == ["api.africare.app", "localhost"]

    def test_api_prefix(self):
        settings = Settings(_env_file=None)

        assert settings.get_api_prefix() == "/api/v1"
        assert settings.get_api_prefix("v2") == "/api/v2"
