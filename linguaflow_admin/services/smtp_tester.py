"""SMTP connection tests and message delivery over smtplib."""

import re
import smtplib
import socket
import ssl
import time
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
DEFAULT_FROM_NAME = 'LinguaFlow'

MAILBOX_ERROR_MESSAGES = {
    550: 'Mailbox unavailable. The recipient address was rejected by the server.',
    551: 'User not local. The recipient is not handled by this server.',
    552: 'Mailbox storage exceeded. The recipient mailbox is full.',
    553: 'Mailbox name not allowed. Please check the recipient address.',
    554: 'Transaction failed. The server rejected the message.',
}


class SmtpTestError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


def is_valid_email(address):
    return bool(EMAIL_RE.match(str(address or '').strip()))


def describe_smtp_error(exc):
    """Map an smtplib/socket failure to ``(friendly_message, error_code)``."""
    if isinstance(exc, smtplib.SMTPAuthenticationError):
        return 'Authentication failed. Please check your username and password.', 'EAUTH'
    if isinstance(exc, ConnectionRefusedError):
        return 'Connection refused. Please check the host and port settings.', 'ECONNREFUSED'
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return 'Connection timed out. Please check your network connection and firewall settings.', 'ETIMEDOUT'
    if isinstance(exc, socket.gaierror):
        return 'Host not found. Please check the SMTP server address.', 'ENOTFOUND'
    smtp_code = getattr(exc, 'smtp_code', None)
    if smtp_code is None and isinstance(exc, smtplib.SMTPRecipientsRefused):
        refused = list((exc.recipients or {}).values())
        smtp_code = refused[0][0] if refused else None
    if smtp_code == 535:
        return 'Authentication failed. Please check your username and password.', 'EAUTH'
    if smtp_code in MAILBOX_ERROR_MESSAGES:
        return MAILBOX_ERROR_MESSAGES[smtp_code], str(smtp_code)
    return f'SMTP Error: {exc}', type(exc).__name__


def _uses_implicit_tls(config):
    return int(config.get('port') or 0) == 465 or config.get('encryption') == 'ssl'


def open_connection(config, timeout=10):
    host = str(config.get('host') or '').strip()
    port = int(config.get('port') or 0)
    if _uses_implicit_tls(config):
        return smtplib.SMTP_SSL(host, port, timeout=timeout, context=ssl.create_default_context())
    server = smtplib.SMTP(host, port, timeout=timeout)
    try:
        server.ehlo()
        if config.get('encryption') == 'tls':
            server.starttls(context=ssl.create_default_context())
            server.ehlo()
    except Exception:
        server.close()
        raise
    return server


def test_smtp_connection(config, timeout=10):
    started = time.monotonic()
    details = {'host': config.get('host'), 'port': config.get('port'), 'encryption': config.get('encryption')}
    try:
        server = open_connection(config, timeout=timeout)
    except (smtplib.SMTPException, OSError) as exc:
        message, code = describe_smtp_error(exc)
        details.update({'error_code': code, 'connection_time_ms': int((time.monotonic() - started) * 1000)})
        return {'success': False, 'message': message, 'details': details}

    connected_at = time.monotonic()
    details['connection_time_ms'] = int((connected_at - started) * 1000)
    try:
        server.login(config.get('username', ''), config.get('password', ''))
        details['auth_time_ms'] = int((time.monotonic() - connected_at) * 1000)
    except (smtplib.SMTPException, OSError) as exc:
        message, code = describe_smtp_error(exc)
        details['error_code'] = code
        return {'success': False, 'message': message, 'details': details}
    finally:
        try:
            server.quit()
        except (smtplib.SMTPException, OSError):
            server.close()
    return {'success': True, 'message': 'SMTP connection successful', 'details': details}


def build_message(config, to, subject, html, text=None, from_name=None):
    sender = str(config.get('from_email') or config.get('username') or '').strip()
    message = EmailMessage()
    message['Subject'] = subject
    message['From'] = formataddr((from_name or config.get('from_name') or DEFAULT_FROM_NAME, sender))
    message['To'] = to
    message['Message-ID'] = make_msgid(domain=sender.split('@')[-1] if '@' in sender else None)
    message.set_content(text or 'This message requires an HTML-capable email client.')
    if html:
        message.add_alternative(html, subtype='html')
    return message


def send_smtp_email(config, to, subject, html, text=None, from_name=None, timeout=15):
    if not is_valid_email(to):
        raise SmtpTestError('Invalid recipient email address', code='EINVALID')
    message = build_message(config, to, subject, html, text=text, from_name=from_name)
    started = time.monotonic()
    try:
        with open_connection(config, timeout=timeout) as server:
            server.login(config.get('username', ''), config.get('password', ''))
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        friendly, code = describe_smtp_error(exc)
        return {
            'success': False,
            'message_id': None,
            'message': friendly,
            'details': {'error_code': code, 'duration_ms': int((time.monotonic() - started) * 1000)},
        }
    return {
        'success': True,
        'message_id': message['Message-ID'],
        'message': f'Email sent to {to}',
        'details': {'duration_ms': int((time.monotonic() - started) * 1000)},
    }
