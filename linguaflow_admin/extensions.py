def init_extensions(app, config=None) -> None:
    """Record factory state on the Flask app's extension registry."""
    if app is None:
        return
    if not hasattr(app, 'extensions'):
        return
    state = app.extensions.setdefault('linguaflow_admin', {})
    state['factory_initialized'] = True
    if config is not None:
        state['environment'] = config.sentry_environment
        state['encryption_configured'] = bool(config.email_encryption_key)
        state['google_oauth_configured'] = bool(config.google_client_id and config.google_client_secret)
