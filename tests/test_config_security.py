import pytest

from linguaflow_admin.config import AppConfig, load_config
from linguaflow_admin.extensions import init_extensions


def _production_env(monkeypatch):
    monkeypatch.setenv("RENDER", "true")
    monkeypatch.delenv("FLASK_ENV", raising=False)
    monkeypatch.delenv("SENTRY_ENVIRONMENT", raising=False)
    monkeypatch.delenv("ENV", raising=False)


def test_load_config_requires_secret_key_in_non_dev(monkeypatch):
    _production_env(monkeypatch)
    monkeypatch.delenv("FLASK_SECRET_KEY", raising=False)
    monkeypatch.setenv("EMAIL_ENCRYPTION_KEY", "a" * 64)

    with pytest.raises(RuntimeError, match="FLASK_SECRET_KEY"):
        load_config()


def test_load_config_requires_encryption_key_in_non_dev(monkeypatch):
    _production_env(monkeypatch)
    monkeypatch.setenv("FLASK_SECRET_KEY", "prod-secret")
    monkeypatch.delenv("EMAIL_ENCRYPTION_KEY", raising=False)

    with pytest.raises(RuntimeError, match="EMAIL_ENCRYPTION_KEY"):
        load_config()


def test_load_config_allows_missing_secrets_in_dev(monkeypatch):
    monkeypatch.delenv("RENDER", raising=False)
    monkeypatch.setenv("FLASK_ENV", "development")
    monkeypatch.delenv("SENTRY_ENVIRONMENT", raising=False)
    monkeypatch.delenv("FLASK_SECRET_KEY", raising=False)
    monkeypatch.delenv("EMAIL_ENCRYPTION_KEY", raising=False)

    cfg = load_config()
    assert cfg.flask_secret_key == ""
    assert cfg.email_encryption_key == ""


def test_app_base_url_strips_trailing_slash(monkeypatch):
    monkeypatch.setenv("APP_BASE_URL", "https://app.linguaflow.com/")

    assert AppConfig().app_base_url == "https://app.linguaflow.com"


def test_init_extensions_records_factory_state(monkeypatch):
    class _App:
        def __init__(self):
            self.extensions = {}

    monkeypatch.setenv("EMAIL_ENCRYPTION_KEY", "k" * 10)
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "client")
    monkeypatch.delenv("GOOGLE_CLIENT_SECRET", raising=False)
    app = _App()

    init_extensions(app, AppConfig())

    state = app.extensions["linguaflow_admin"]
    assert state["factory_initialized"] is True
    assert state["encryption_configured"] is True
    assert state["google_oauth_configured"] is False
