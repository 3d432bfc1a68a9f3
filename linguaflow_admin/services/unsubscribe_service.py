"""Unsubscribe tokens and per-user email preferences."""

import html
import logging
import secrets
import time
from urllib.parse import urlencode

from linguaflow_admin.repositories import email_logs_repo, unsubscribe_repo
from linguaflow_admin.repositories.query_utils import run_transaction

logger = logging.getLogger('linguaflow_admin')

TOKEN_TTL_DAYS = 30
PREFERENCE_FIELDS = ('welcome_emails', 'lesson_reminders', 'marketing_emails', 'system_notifications', 'all_emails')
EMAIL_TYPE_TO_FIELD = {
    'welcome': 'welcome_emails',
    'lesson_reminder': 'lesson_reminders',
    'marketing': 'marketing_emails',
    'system': 'system_notifications',
}
INVALID_LINK_MESSAGE = 'Invalid or expired unsubscribe link'
EXPIRED_LINK_MESSAGE = 'Unsubscribe link has expired'


class UnsubscribeError(ValueError):
    pass


def default_preferences(user_id, email=''):
    return {
        'user_id': user_id,
        'email': email,
        'welcome_emails': True,
        'lesson_reminders': True,
        'marketing_emails': True,
        'system_notifications': True,
        'all_emails': False,
        'unsubscribed_at': None,
        'resubscribed_at': None,
    }


def generate_unsubscribe_token(db, user_id, email, email_type=None, ttl_days=TOKEN_TTL_DAYS, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    token = secrets.token_hex(32)
    record = {
        'user_id': user_id,
        'email': email,
        'email_type': email_type,
        'used': False,
        'created_at': now_ts,
        'expires_at': now_ts + int(ttl_days) * 86400,
    }
    unsubscribe_repo.set_token(db, token, record)
    return token, record


def generate_unsubscribe_link(db, base_url, user_id, email, email_type=None, ttl_days=TOKEN_TTL_DAYS):
    token, _record = generate_unsubscribe_token(db, user_id, email, email_type=email_type, ttl_days=ttl_days)
    params = {'token': token, 'email': email}
    if email_type:
        params['type'] = email_type
    return {
        'url': f"{str(base_url or '').rstrip('/')}/unsubscribe?{urlencode(params)}",
        'token': token,
        'email_type': email_type,
    }


def _check_token_record(snapshot, now_ts):
    if not snapshot.exists:
        raise UnsubscribeError(INVALID_LINK_MESSAGE)
    record = snapshot.to_dict() or {}
    if record.get('used'):
        raise UnsubscribeError(INVALID_LINK_MESSAGE)
    if float(record.get('expires_at', 0) or 0) < now_ts:
        raise UnsubscribeError(EXPIRED_LINK_MESSAGE)
    return record


def validate_unsubscribe_token(db, token, now_ts=None):
    """Return the stored token record or raise ``UnsubscribeError``."""
    now_ts = now_ts if now_ts is not None else time.time()
    if not token:
        raise UnsubscribeError(INVALID_LINK_MESSAGE)
    return _check_token_record(unsubscribe_repo.get_token_doc(db, token), now_ts)


def get_user_preferences(db, user_id):
    snapshot = unsubscribe_repo.get_preferences_doc(db, user_id)
    if not snapshot.exists:
        return None
    return snapshot.to_dict() or {}


def _apply_unsubscribe(preferences, email_type, now_ts):
    if email_type in EMAIL_TYPE_TO_FIELD:
        preferences[EMAIL_TYPE_TO_FIELD[email_type]] = False
    elif email_type:
        preferences['all_emails'] = True
    else:
        preferences['welcome_emails'] = False
        preferences['lesson_reminders'] = False
        preferences['marketing_emails'] = False
        preferences['all_emails'] = True
    preferences['unsubscribed_at'] = now_ts
    preferences['updated_at'] = now_ts
    return preferences


def process_unsubscribe(db, token, email_type=None, now_ts=None):
    """Consume ``token`` and store the new preferences in one transaction."""
    now_ts = now_ts if now_ts is not None else time.time()
    if not token:
        raise UnsubscribeError(INVALID_LINK_MESSAGE)
    token_ref = unsubscribe_repo.token_ref(db, token)

    def _claim(transaction):
        record = _check_token_record(token_ref.get(transaction=transaction), now_ts)
        user_id = record.get('user_id', '')
        email = record.get('email', '')
        preferences_ref = unsubscribe_repo.preferences_ref(db, user_id)
        current = preferences_ref.get(transaction=transaction)
        preferences = (current.to_dict() or {}) if current.exists else default_preferences(user_id, email)
        _apply_unsubscribe(preferences, email_type, now_ts)
        transaction.set(preferences_ref, preferences)
        transaction.update(token_ref, {'used': True, 'used_at': now_ts})
        return record, preferences

    record, preferences = run_transaction(db, _claim)
    _log_unsubscribe_event(db, record.get('user_id', ''), record.get('email', ''), email_type, now_ts)

    if email_type:
        message = f'Successfully unsubscribed from {email_type} emails'
    else:
        message = 'Successfully unsubscribed from all emails'
    return {'success': True, 'message': message, 'preferences': preferences}


def _log_unsubscribe_event(db, user_id, email, email_type, now_ts):
    try:
        email_logs_repo.add_doc(db, {
            'template_type': 'unsubscribe',
            'recipient_email': email,
            'subject': 'Unsubscribe Event',
            'status': 'delivered',
            'user_id': user_id,
            'is_test': False,
            'created_at': now_ts,
            'metadata': {'event_type': 'unsubscribe', 'email_type': email_type or 'all'},
        })
    except Exception as e:
        logger.info(f"Warning: could not log unsubscribe event for {user_id}: {e}")


def update_user_preferences(db, user_id, updates, email=None, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    changes = {key: bool(updates[key]) for key in PREFERENCE_FIELDS if key in updates}
    if not changes:
        raise UnsubscribeError('No valid preference fields provided')
    # Turning any category back on counts as a resubscribe.
    if any(value is True for key, value in changes.items() if key != 'all_emails') or changes.get('all_emails') is False:
        changes['resubscribed_at'] = now_ts
        changes['unsubscribed_at'] = None
    changes['updated_at'] = now_ts

    current = get_user_preferences(db, user_id) or default_preferences(user_id, email or '')
    current.update(changes)
    if email:
        current['email'] = email
    unsubscribe_repo.set_preferences(db, user_id, current, merge=False)
    return current


def should_receive_email(db, user_id, email_type):
    preferences = get_user_preferences(db, user_id)
    if not preferences:
        return True
    if preferences.get('all_emails') and email_type != 'system':
        return False
    field = EMAIL_TYPE_TO_FIELD.get(email_type)
    if field is None:
        return not preferences.get('all_emails', False)
    return bool(preferences.get(field, True))


def add_unsubscribe_link_to_email(html_content, unsubscribe_url, email_type=None, base_url=''):
    label = f'Unsubscribe from {email_type} emails' if email_type else 'Unsubscribe from all emails'
    safe_url = html.escape(unsubscribe_url, quote=True)
    footer = (
        '<div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #eee; '
        'font-size: 12px; color: #666; text-align: center;">'
        f'<p>If you no longer wish to receive these emails, you can '
        f'<a href="{safe_url}" style="color: #666; text-decoration: underline;">{html.escape(label)}</a></p>'
    )
    if base_url:
        settings_url = html.escape(f"{base_url.rstrip('/')}/settings/notifications", quote=True)
        footer += (
            f'<p style="margin-top: 10px;">You can also <a href="{settings_url}" '
            'style="color: #666; text-decoration: underline;">manage your email preferences</a> at any time.</p>'
        )
    footer += '</div>'
    content = html_content or ''
    if '</body>' in content:
        return content.replace('</body>', f'{footer}</body>', 1)
    return content + footer


def cleanup_expired_tokens(db, now_ts=None, batch_limit=500):
    now_ts = now_ts if now_ts is not None else time.time()
    deleted = 0
    for doc in unsubscribe_repo.list_expired_tokens(db, now_ts, batch_limit):
        doc.reference.delete()
        deleted += 1
    return deleted


def get_unsubscribe_statistics(db):
    stats = {
        'total_unsubscribes': 0,
        'unsubscribes_by_type': {},
        'resubscribes': 0,
        'active_preferences': 0,
    }
    by_type = stats['unsubscribes_by_type']
    for doc in unsubscribe_repo.stream_preferences(db):
        pref = doc.to_dict() or {}
        stats['active_preferences'] += 1
        if pref.get('unsubscribed_at'):
            stats['total_unsubscribes'] += 1
        if pref.get('resubscribed_at'):
            stats['resubscribes'] += 1
        for email_type, field in EMAIL_TYPE_TO_FIELD.items():
            if pref.get(field) is False:
                by_type[email_type] = by_type.get(email_type, 0) + 1
        if pref.get('all_emails'):
            by_type['all'] = by_type.get('all', 0) + 1
    total_tokens, used_tokens = unsubscribe_repo.count_tokens(db)
    stats['tokens_issued'] = total_tokens
    stats['tokens_used'] = used_tokens
    return stats
