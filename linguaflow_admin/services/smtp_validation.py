"""Provider-specific validation rules for SMTP configurations."""

import re

SMTP_PROVIDERS = ('gmail', 'sendgrid', 'aws-ses', 'custom')
SMTP_ENCRYPTIONS = ('tls', 'ssl', 'none')

GMAIL_HOST = 'smtp.gmail.com'
GMAIL_USERNAME_RE = re.compile(r'^[a-zA-Z0-9._%+-]+@gmail\.com$')
SENDGRID_HOST = 'smtp.sendgrid.net'
AWS_SES_HOST_RE = re.compile(r'^email-smtp\.[a-z0-9-]+\.amazonaws\.com$')
AWS_SES_PORTS = (25, 465, 587, 2465, 2587)
AWS_SES_USERNAME_RE = re.compile(r'^[A-Z0-9]{20}$')

PROVIDER_HELP_TEXT = {
    'gmail': (
        'For Gmail, use your Gmail address as username and generate an App Password '
        'in your Google Account settings. Regular passwords will not work.'
    ),
    'sendgrid': (
        'For SendGrid, use "apikey" as username and your SendGrid API key as password. '
        'Create API keys in your SendGrid dashboard.'
    ),
    'aws-ses': (
        'For AWS SES, use SMTP credentials (not regular AWS keys). Generate SMTP '
        'credentials in the AWS SES console for your region.'
    ),
    'custom': (
        'For custom SMTP providers, enter the settings provided by your email service '
        'provider. Contact your provider if you need assistance.'
    ),
}


def _coerce_port(value):
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def validate_smtp_config(config):
    """Return ``{'is_valid', 'errors', 'warnings'}`` for an SMTP config dict."""
    errors = []
    warnings = []
    host = str(config.get('host') or '').strip()
    port = _coerce_port(config.get('port'))
    username = str(config.get('username') or '').strip()
    password = str(config.get('password') or '')
    encryption = config.get('encryption')
    provider = config.get('provider')

    if not host:
        errors.append('Host is required')
    if port is None or port < 1 or port > 65535:
        errors.append('Port must be between 1 and 65535')
    if not username:
        errors.append('Username is required')
    if not password.strip():
        errors.append('Password is required')
    if encryption not in SMTP_ENCRYPTIONS:
        errors.append('Encryption must be tls, ssl, or none')

    if provider == 'gmail':
        if host != GMAIL_HOST:
            errors.append(f'Gmail host must be {GMAIL_HOST}')
        if port != 587:
            errors.append('Gmail port must be 587')
        if encryption != 'tls':
            errors.append('Gmail encryption must be tls')
        if not GMAIL_USERNAME_RE.match(username):
            errors.append('Gmail username must be a valid Gmail address')
        warnings.append('Gmail requires an App Password, not your regular password')
    elif provider == 'sendgrid':
        if host != SENDGRID_HOST:
            errors.append(f'SendGrid host must be {SENDGRID_HOST}')
        if port != 587:
            errors.append('SendGrid port must be 587')
        if encryption != 'tls':
            errors.append('SendGrid encryption must be tls')
        if username != 'apikey':
            errors.append('SendGrid username must be "apikey"')
        if not password.startswith('SG.'):
            warnings.append('SendGrid password should be an API key starting with "SG."')
    elif provider == 'aws-ses':
        if not AWS_SES_HOST_RE.match(host):
            errors.append('AWS SES host must match pattern: email-smtp.[region].amazonaws.com')
        if port not in AWS_SES_PORTS:
            errors.append(f"AWS SES port must be one of: {', '.join(str(p) for p in AWS_SES_PORTS)}")
        if encryption != 'tls':
            errors.append('AWS SES encryption must be tls')
        if not AWS_SES_USERNAME_RE.match(username):
            errors.append('AWS SES username must be a 20-character access key ID')
        warnings.append('AWS SES requires SMTP credentials, not regular AWS access keys')
    elif provider == 'custom':
        warnings.extend(_custom_provider_warnings(host.lower(), port, encryption))
    else:
        errors.append('Invalid provider')

    return {'is_valid': not errors, 'errors': errors, 'warnings': warnings}


def _custom_provider_warnings(host, port, encryption):
    warnings = []
    if 'gmail' in host:
        warnings.append('This appears to be Gmail - consider using the Gmail provider')
    if 'sendgrid' in host:
        warnings.append('This appears to be SendGrid - consider using the SendGrid provider')
    if 'amazonaws' in host:
        warnings.append('This appears to be AWS SES - consider using the AWS SES provider')
    if port == 25:
        warnings.append('Port 25 is often blocked by ISPs - consider using 587 or 465')
    if port == 465 and encryption != 'ssl':
        warnings.append('Port 465 typically requires SSL encryption')
    if port == 587 and encryption == 'none':
        warnings.append('Port 587 typically requires TLS encryption')
    return warnings


def get_provider_help_text(provider):
    return PROVIDER_HELP_TEXT.get(provider, '')


def get_provider_defaults(provider):
    if provider == 'gmail':
        return {'host': GMAIL_HOST, 'port': 587, 'encryption': 'tls'}
    if provider == 'sendgrid':
        return {'host': SENDGRID_HOST, 'port': 587, 'encryption': 'tls', 'username': 'apikey'}
    if provider in {'aws-ses', 'custom'}:
        return {'port': 587, 'encryption': 'tls'}
    return {}
