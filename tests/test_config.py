import pytest

from ordergate.config import (
    DEFAULT_DUPLICATE_LOOKBACK_LIMIT,
    DEFAULT_PROVIDER_TIMEOUT_MS,
    Settings,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "APP_ENV",
        "TOSS_SECRET_KEY",
        "TOSS_MOCK_MODE",
        "TOSS_TIMEOUT_MS",
        "TOSS_WEBHOOK_SECRET",
        "PUBLIC_ORDER_DUPLICATE_WINDOW_MS",
        "PUBLIC_ORDER_ANON_DUPLICATE_WINDOW_MS",
        "PUBLIC_ORDER_DUPLICATE_LOOKBACK_LIMIT",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_provider_timeout_is_fifteen_seconds(self):
        settings = Settings(_env_file=None)
        assert settings.toss_timeout_ms == DEFAULT_PROVIDER_TIMEOUT_MS
        assert settings.provider_timeout == 15.0

    def test_dedup_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.public_order_duplicate_window_ms == 60_000
        assert settings.public_order_anon_duplicate_window_ms == 20_000
        assert settings.public_order_duplicate_lookback_limit == 5


class TestEnvironment:
    def test_reads_env(self, monkeypatch):
        monkeypatch.setenv("TOSS_TIMEOUT_MS", "3000")
        monkeypatch.setenv("PUBLIC_ORDER_DUPLICATE_WINDOW_MS", "45000")
        settings = Settings(_env_file=None)
        assert settings.provider_timeout == 3.0
        assert settings.public_order_duplicate_window_ms == 45_000

    @pytest.mark.parametrize("raw", ["abc", "0", "-5", ""])
    def test_unparseable_lookback_falls_back(self, monkeypatch, raw):
        monkeypatch.setenv("PUBLIC_ORDER_DUPLICATE_LOOKBACK_LIMIT", raw)
        settings = Settings(_env_file=None)
        assert settings.public_order_duplicate_lookback_limit == DEFAULT_DUPLICATE_LOOKBACK_LIMIT

    def test_lookback_capped(self, monkeypatch):
        monkeypatch.setenv("PUBLIC_ORDER_DUPLICATE_LOOKBACK_LIMIT", "500")
        assert Settings(_env_file=None).public_order_duplicate_lookback_limit == 20

    def test_bad_timeout_falls_back(self, monkeypatch):
        monkeypatch.setenv("TOSS_TIMEOUT_MS", "soon")
        assert Settings(_env_file=None).toss_timeout_ms == DEFAULT_PROVIDER_TIMEOUT_MS

    def test_blank_secret_is_none(self, monkeypatch):
        monkeypatch.setenv("TOSS_WEBHOOK_SECRET", "   ")
        assert Settings(_env_file=None).toss_webhook_secret is None


class TestMockMode:
    def test_no_key_outside_production_is_mock(self):
        assert Settings(_env_file=None, app_env="development").mock_mode is True

    def test_no_key_in_production_is_not_mock(self):
        assert Settings(_env_file=None, app_env="production").mock_mode is False

    def test_key_disables_implicit_mock(self):
        assert Settings(_env_file=None, toss_secret_key="sk_test").mock_mode is False

    def test_explicit_flag_wins(self):
        settings = Settings(
            _env_file=None,
            app_env="production",
            toss_secret_key="sk_live",
            toss_mock_mode=True,
        )
        assert settings.mock_mode is True
