import os
from dataclasses import dataclass, field


def _env(name, default=''):
    return (os.getenv(name, default) or default).strip()


@dataclass(frozen=True)
class AppConfig:
    """Central config object read from the process environment."""

    flask_secret_key: str = field(default_factory=lambda: _env('FLASK_SECRET_KEY'))
    log_level: str = field(default_factory=lambda: _env('LOG_LEVEL', 'INFO').upper())
    sentry_environment: str = field(default_factory=lambda: _env('SENTRY_ENVIRONMENT', os.getenv('FLASK_ENV', 'production') or 'production'))
    sentry_release: str = field(default_factory=lambda: _env('SENTRY_RELEASE', 'linguaflow-admin'))
    email_encryption_key: str = field(default_factory=lambda: _env('EMAIL_ENCRYPTION_KEY'))
    app_base_url: str = field(default_factory=lambda: _env('APP_BASE_URL', 'http://localhost:3000').rstrip('/'))
    google_client_id: str = field(default_factory=lambda: _env('GOOGLE_CLIENT_ID'))
    google_client_secret: str = field(default_factory=lambda: _env('GOOGLE_CLIENT_SECRET'))
    google_redirect_uri: str = field(default_factory=lambda: _env('GOOGLE_REDIRECT_URI'))


def resolve_runtime_env():
    return (
        os.getenv('SENTRY_ENVIRONMENT')
        or os.getenv('FLASK_ENV')
        or os.getenv('ENV')
        or ('production' if os.getenv('RENDER') else 'development')
    ).strip().lower()


def load_config() -> AppConfig:
    config = AppConfig()
    is_dev_like = resolve_runtime_env() in {'development', 'dev', 'local', 'test'}
    if not is_dev_like and not config.flask_secret_key:
        raise RuntimeError('FLASK_SECRET_KEY must be set in non-development environments.')
    if not is_dev_like and not config.email_encryption_key:
        raise RuntimeError('EMAIL_ENCRYPTION_KEY must be set in non-development environments.')
    return config
