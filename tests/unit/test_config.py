import pytest

from rentline.config.settings import (
    CURRENT_BUSINESS_KEY,
    CURRENT_ORGANIZATION_KEY,
    Settings,
    get_settings,
)
from rentline.exceptions import ConfigError
from rentline.types import TenancyModel


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.mark.unit
class TestSettings:
    def test_default_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("SECRET_KEY", "test-secret")
        settings = Settings()
        assert settings.debug is False
        assert settings.log_level == "INFO"
        assert "postgresql" in settings.database_url

    def test_session_lifetime_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", "test-secret")
        settings = Settings()
        assert settings.inactivity_timeout_seconds == 1800
        assert settings.activity_check_interval_seconds == 60
        assert settings.expiry_warning_seconds == 300

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://user:pass@db:5432/mydb")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("INACTIVITY_TIMEOUT_SECONDS", "600")
        monkeypatch.setenv("TENANCY_MODEL", "organization")
        settings = Settings()
        assert settings.debug is True
        assert settings.inactivity_timeout_seconds == 600
        assert settings.tenancy_model == TenancyModel.ORGANIZATION

    def test_selection_key_follows_tenancy_model(self) -> None:
        assert Settings(tenancy_model=TenancyModel.BUSINESS).tenant_selection_key == CURRENT_BUSINESS_KEY
        assert (
            Settings(tenancy_model=TenancyModel.ORGANIZATION).tenant_selection_key
            == CURRENT_ORGANIZATION_KEY
        )


@pytest.mark.unit
class TestGetSettings:
    def test_default_secret_warns(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.warns(UserWarning, match="SECRET_KEY"):
            get_settings()

    def test_warning_lead_must_be_shorter_than_timeout(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SECRET_KEY", "test-secret")
        monkeypatch.setenv("INACTIVITY_TIMEOUT_SECONDS", "300")
        monkeypatch.setenv("EXPIRY_WARNING_SECONDS", "300")
        with pytest.raises(ConfigError):
            get_settings()

    def test_cached(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", "test-secret")
        assert get_settings() is get_settings()
