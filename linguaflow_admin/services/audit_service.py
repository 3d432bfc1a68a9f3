"""Append-only admin audit log backed by the admin_audit_logs collection."""

import csv
import io
import json
import logging
import time
from collections import Counter
from datetime import datetime, timezone

from linguaflow_admin.repositories import audit_logs_repo

logger = logging.getLogger('linguaflow_admin')

AUDIT_ACTIONS = frozenset({
    'smtp_config_created',
    'smtp_config_updated',
    'smtp_config_deleted',
    'smtp_config_tested',
    'smtp_config_activated',
    'smtp_config_deactivated',
    'template_created',
    'template_updated',
    'template_deleted',
    'template_activated',
    'template_deactivated',
    'template_rolled_back',
    'template_duplicated',
    'test_email_sent',
    'test_email_failed',
    'email_sent',
    'email_failed',
    'template_compliance_warning',
    'bulk_operation',
    'settings_updated',
    'unauthorized_access',
    'rate_limit_exceeded',
    'data_exported',
    'data_purged',
    'consent_recorded',
    'gdpr_deletion',
})
AUDIT_RESOURCES = frozenset({
    'smtp_config',
    'email_template',
    'email_test',
    'email_log',
    'system_settings',
    'admin_user',
    'session',
    'export',
    'gdpr',
})
REDACTED = '***REDACTED***'
MASKED_EMAIL = '***@***.***'
SENSITIVE_KEYS = {'password', 'password_encrypted', 'access_token', 'refresh_token'}
MAX_QUERY_LIMIT = 1000
MAX_SCAN_DOCS = 10000
# Seven years under the legal_obligation basis.
AUDIT_LOG_RETENTION_DAYS = 2555
CSV_HEADERS = ['Timestamp', 'User Email', 'Action', 'Resource', 'Resource ID', 'IP Address', 'Details']


def sanitize_values(values):
    if not isinstance(values, dict):
        return values
    sanitized = {}
    for key, value in values.items():
        if key in SENSITIVE_KEYS and value:
            sanitized[key] = REDACTED
        elif key in {'recipient_email', 'recipientEmail'} and value:
            sanitized[key] = MASKED_EMAIL
        elif isinstance(value, dict):
            sanitized[key] = sanitize_values(value)
        else:
            sanitized[key] = value
    return sanitized


def build_entry(action, resource, user_id='', user_email='', resource_id=None, old_values=None,
                new_values=None, details=None, ip_address='', user_agent='', session_id=''):
    return {
        'user_id': user_id or '',
        'user_email': (user_email or '').lower(),
        'action': action,
        'resource': resource,
        'resource_id': resource_id,
        'old_values': sanitize_values(old_values) if old_values else None,
        'new_values': sanitize_values(new_values) if new_values else None,
        'details': sanitize_values(details) if details else None,
        'ip_address': ip_address or '',
        'user_agent': (user_agent or '')[:300],
        'session_id': session_id or '',
    }


def log_event(db, entry, now_ts=None):
    """Write one audit entry; failures are logged and never propagate."""
    payload = dict(entry)
    payload['timestamp'] = now_ts if now_ts is not None else time.time()
    if payload.get('action') not in AUDIT_ACTIONS:
        logger.warning(f"Unknown audit action recorded: {payload.get('action')}")
    if db is None:
        logger.info(json.dumps({'event': 'audit_fallback', 'reason': 'no_db', 'entry': payload}, default=str))
        return None
    try:
        return audit_logs_repo.add_doc(db, payload)
    except Exception as e:
        logger.info(json.dumps({'event': 'audit_fallback', 'reason': str(e), 'entry': payload}, default=str))
        return None


def _to_dicts(docs):
    logs = []
    for doc in docs:
        data = doc.to_dict() or {}
        data['id'] = doc.id
        logs.append(data)
    return logs


def get_audit_logs(db, user_id=None, action=None, resource=None, start_ts=None, end_ts=None, limit=100, offset=0):
    """Return one page of logs plus the exact number of matching rows."""
    limit = max(1, min(int(limit or 100), MAX_QUERY_LIMIT))
    offset = max(0, int(offset or 0))
    filters = {'user_id': user_id, 'action': action, 'resource': resource, 'start_ts': start_ts, 'end_ts': end_ts}
    docs = audit_logs_repo.query_logs(db, limit=limit, offset=offset, **filters)
    return _to_dicts(docs), audit_logs_repo.count_logs(db, **filters)


def get_logs_for_export(db, max_rows, user_id=None, action=None, resource=None, start_ts=None, end_ts=None):
    docs = audit_logs_repo.query_logs(
        db,
        user_id=user_id,
        action=action,
        resource=resource,
        start_ts=start_ts,
        end_ts=end_ts,
        limit=max(1, int(max_rows)),
    )
    return _to_dicts(docs)


def get_audit_statistics(db, start_ts=None, end_ts=None):
    docs = audit_logs_repo.query_logs(db, start_ts=start_ts, end_ts=end_ts, limit=MAX_SCAN_DOCS)
    by_resource_action = Counter()
    by_user = Counter()
    by_action = Counter()
    for doc in docs:
        data = doc.to_dict() or {}
        by_resource_action[f"{data.get('resource', '')}:{data.get('action', '')}"] += 1
        by_user[data.get('user_email') or data.get('user_id') or 'unknown'] += 1
        by_action[data.get('action', '')] += 1
    return {
        'total': len(docs),
        'by_resource_action': dict(by_resource_action),
        'by_user': dict(by_user),
        'top_actions': [{'action': name, 'count': count} for name, count in by_action.most_common(10)],
    }


def format_timestamp(value):
    if not isinstance(value, (int, float)):
        return ''
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def export_audit_logs(logs, fmt='csv'):
    if fmt == 'json':
        return json.dumps(logs, ensure_ascii=True, default=str, indent=2)
    if fmt != 'csv':
        raise ValueError('Export format must be csv or json')
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for log in logs:
        writer.writerow([
            format_timestamp(log.get('timestamp')),
            log.get('user_email', ''),
            log.get('action', ''),
            log.get('resource', ''),
            log.get('resource_id') or '',
            log.get('ip_address', ''),
            json.dumps(log.get('details') or {}, ensure_ascii=True, default=str),
        ])
    return buffer.getvalue()


def cleanup_old_logs(db, retention_days=AUDIT_LOG_RETENTION_DAYS, now_ts=None, batch_limit=500):
    now_ts = now_ts if now_ts is not None else time.time()
    cutoff = now_ts - (int(retention_days) * 86400)
    deleted = audit_logs_repo.delete_older_than(db, cutoff, batch_limit)
    if deleted:
        logger.info(f"Purged {deleted} audit log entries older than {retention_days} days")
    return deleted
