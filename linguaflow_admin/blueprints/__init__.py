from .smtp import smtp_bp
from .templates import templates_bp
from .email_tests import email_tests_bp
from .email_admin import email_admin_bp
from .audit import audit_bp
from .gdpr import gdpr_bp
from .unsubscribe import unsubscribe_bp
from .google_calendar import calendar_bp
from .discussion import discussion_bp
from .vocabulary import vocabulary_bp

ALL_BLUEPRINTS = (
    smtp_bp,
    templates_bp,
    email_tests_bp,
    email_admin_bp,
    audit_bp,
    gdpr_bp,
    unsubscribe_bp,
    calendar_bp,
    discussion_bp,
    vocabulary_bp,
)

__all__ = [
    'smtp_bp',
    'templates_bp',
    'email_tests_bp',
    'email_admin_bp',
    'audit_bp',
    'gdpr_bp',
    'unsubscribe_bp',
    'calendar_bp',
    'discussion_bp',
    'vocabulary_bp',
    'ALL_BLUEPRINTS',
]
