"""Settings: fallback environment names, derived URLs, production checks."""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from app.api.deps import get_optional_fincode_client
from app.config import Settings
from app.core.exceptions import GatewayConfigError
from app.services.fincode_client import FincodeClient

KEY_NAMES = ("FINCODE_API_KEY", "FINCODE_SECRET_KEY", "FINCODE_PRIVATE_KEY", "SECRET_KEY")


@pytest.fixture
def no_gateway_env(monkeypatch):
    for name in KEY_NAMES + ("FINCODE_BASE_URL", "FINCODE_API_BASE_URL", "FINCODE_PUBLIC_KEY", "PUBLIC_KEY"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_api_key_falls_back_to_secret_key(no_gateway_env):
    no_gateway_env.setenv("FINCODE_SECRET_KEY", "from-secret")
    assert Settings(_env_file=None).fincode_api_key == "from-secret"


def test_api_key_first_name_wins(no_gateway_env):
    no_gateway_env.setenv("FINCODE_API_KEY", "primary")
    no_gateway_env.setenv("SECRET_KEY", "generic")
    assert Settings(_env_file=None).fincode_api_key == "primary"


def test_empty_value_falls_through(no_gateway_env):
    no_gateway_env.setenv("FINCODE_API_KEY", "")
    no_gateway_env.setenv("FINCODE_PRIVATE_KEY", "private")
    assert Settings(_env_file=None).fincode_api_key == "private"


def test_base_url_alternate_name(no_gateway_env):
    no_gateway_env.setenv("FINCODE_API_BASE_URL", "https://api.fincode.jp")
    assert Settings(_env_file=None).fincode_base_url == "https://api.fincode.jp"


def test_defaults(no_gateway_env):
    s = Settings(_env_file=None)
    assert s.fincode_base_url == "https://api.test.fincode.jp"
    assert s.session_timeout_seconds == 3600
    assert s.session_refresh_seconds == 300
    assert s.subscription_plan_currency == "JPY"


def test_missing_key_fails_client_construction(no_gateway_env):
    with pytest.raises(GatewayConfigError):
        FincodeClient.from_settings(Settings(_env_file=None))


def test_production_requires_gateway_key(no_gateway_env):
    no_gateway_env.setenv("APP_ENV", "production")
    with pytest.raises(RuntimeError):
        Settings(_env_file=None).validate_gateway_config()


def test_database_url_from_parts(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DB_HOST", "db")
    monkeypatch.setenv("DB_NAME", "billing_test")
    monkeypatch.setenv("DB_USER", "app")
    monkeypatch.setenv("DB_PASSWORD", "pw")
    s = Settings(_env_file=None)
    assert s.sqlalchemy_url == "postgresql+asyncpg://app:pw@db:5432/billing_test"
    assert s.sync_database_url == "postgresql://app:pw@db:5432/billing_test"


def test_cors_origin_list(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example,")
    assert Settings(_env_file=None).cors_origin_list == ["https://a.example", "https://b.example"]


def test_settings_are_frozen():
    s = Settings(_env_file=None)
    with pytest.raises(ValidationError):
        s.session_timeout_seconds = 10


def test_optional_client_is_none_without_credentials():
    with patch(
        "app.api.deps.FincodeClient.from_settings",
        side_effect=GatewayConfigError("FINCODE API key is not configured"),
    ):
        assert get_optional_fincode_client() is None
