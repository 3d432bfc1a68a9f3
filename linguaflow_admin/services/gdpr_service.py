"""GDPR helpers: template checks, consent records, export, erasure and retention."""

import logging
import re
import secrets
import time

from linguaflow_admin.repositories import audit_logs_repo, email_logs_repo, gdpr_repo, unsubscribe_repo
from linguaflow_admin.repositories.query_utils import docs_to_dicts, run_transaction
from linguaflow_admin.services.audit_service import AUDIT_LOG_RETENTION_DAYS, cleanup_old_logs
from linguaflow_admin.services.template_utils import PLACEHOLDER_RE

logger = logging.getLogger('linguaflow_admin')

LEGAL_BASES = (
    'consent',
    'contract',
    'legal_obligation',
    'vital_interests',
    'public_task',
    'legitimate_interests',
)
MARKETING_TYPES = {'marketing', 'newsletter', 'promotional'}
SENSITIVE_FIELD_TYPES = {'phone', 'address', 'identifier'}
UNSUBSCRIBE_RE = re.compile(r'unsubscribe|opt.?out', re.IGNORECASE)
PRIVACY_POLICY_RE = re.compile(r'privacy.?policy|data.?protection', re.IGNORECASE)
CONSENT_REFERENCE_RE = re.compile(
    r'consent|permission|opt.?in|agree|terms|privacy policy|data protection|unsubscribe',
    re.IGNORECASE,
)
DEFAULT_RETENTION_POLICIES = [
    {'data_type': 'email_logs', 'retention_days': 730, 'auto_delete': True, 'legal_basis': 'legitimate_interests'},
    {'data_type': 'test_emails', 'retention_days': 90, 'auto_delete': True, 'legal_basis': 'legitimate_interests'},
    {'data_type': 'audit_logs', 'retention_days': AUDIT_LOG_RETENTION_DAYS, 'auto_delete': True,
     'legal_basis': 'legal_obligation'},
]
DELETION_TOKEN_TTL_SECONDS = 48 * 60 * 60
MAX_DOCS_PER_COLLECTION = 10000


class GdprError(ValueError):
    pass


def classify_personal_data_field(name):
    field = name.lower()
    if 'email' in field:
        return {'field': name, 'type': 'email', 'required': True, 'purpose': 'Communication', 'retention': 365}
    if 'name' in field or 'first' in field or 'last' in field:
        return {'field': name, 'type': 'name', 'required': False, 'purpose': 'Personalization', 'retention': 365}
    if 'phone' in field or 'mobile' in field:
        return {'field': name, 'type': 'phone', 'required': False, 'purpose': 'Communication', 'retention': 365}
    if 'address' in field or 'street' in field or 'city' in field:
        return {'field': name, 'type': 'address', 'required': False, 'purpose': 'Service delivery', 'retention': 365}
    if 'id' in field or 'user' in field or 'customer' in field:
        return {'field': name, 'type': 'identifier', 'required': False, 'purpose': 'Account management', 'retention': 365}
    return None


def validate_template_compliance(content, template_type):
    content = content or ''
    issues = []
    warnings = []
    fields = []
    for placeholder in PLACEHOLDER_RE.findall(content):
        classified = classify_personal_data_field(placeholder.strip())
        if classified:
            fields.append(classified)

    has_unsubscribe = bool(UNSUBSCRIBE_RE.search(content))
    has_privacy_policy = bool(PRIVACY_POLICY_RE.search(content))

    if template_type in {'marketing', 'newsletter'}:
        if not has_unsubscribe:
            issues.append('Marketing emails must include an unsubscribe link')
        if not has_privacy_policy:
            warnings.append('Consider including a link to your privacy policy')

    if any(f['type'] in SENSITIVE_FIELD_TYPES for f in fields) and not has_privacy_policy:
        issues.append('Templates with sensitive personal data must reference privacy policy')

    if len(fields) > 5:
        warnings.append('Consider reducing the amount of personal data used in this template')

    requires_consent = template_type in MARKETING_TYPES or any(f['type'] in {'phone', 'address'} for f in fields)
    if requires_consent and not CONSENT_REFERENCE_RE.search(content):
        warnings.append('This template may require explicit consent references')

    return {
        'is_compliant': not issues,
        'issues': issues,
        'warnings': warnings,
        'personal_data_fields': fields,
    }


def anonymize_email(email):
    if not email or '@' not in email:
        return 'anonymized@example.com'
    local, domain = email.split('@', 1)
    masked = local[:2] + '*' * (len(local) - 2) if len(local) > 2 else '**'
    return f'{masked}@{domain}'


def record_consent(db, user_id, purpose, granted, legal_basis='consent', now_ts=None):
    if not user_id or not purpose:
        raise GdprError('User ID and purpose are required')
    if legal_basis not in LEGAL_BASES:
        raise GdprError(f"Legal basis must be one of: {', '.join(LEGAL_BASES)}")
    now_ts = now_ts if now_ts is not None else time.time()
    record = {
        'user_id': user_id,
        'purpose': purpose,
        'granted': bool(granted),
        'granted_at': now_ts if granted else None,
        'revoked_at': None if granted else now_ts,
        'legal_basis': legal_basis,
        'created_at': now_ts,
    }
    record['id'] = gdpr_repo.add_consent(db, record)
    return record


def has_consent(db, user_id, purpose):
    docs = gdpr_repo.list_consents(db, user_id, purpose=purpose, limit=1)
    if not docs:
        return False
    latest = docs[0].to_dict() or {}
    return bool(latest.get('granted')) and not latest.get('revoked_at')


def get_consent_history(db, user_id, purpose=None):
    return docs_to_dicts(gdpr_repo.list_consents(db, user_id, purpose=purpose, limit=MAX_DOCS_PER_COLLECTION))


def export_user_data(db, user_id, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    email_logs = docs_to_dicts(email_logs_repo.list_by_user(db, user_id, MAX_DOCS_PER_COLLECTION))
    consent_records = get_consent_history(db, user_id)
    audit_logs = docs_to_dicts(audit_logs_repo.list_by_user(db, user_id, MAX_DOCS_PER_COLLECTION))
    prefs_doc = unsubscribe_repo.get_preferences_doc(db, user_id)
    return {
        'meta': {
            'user_id': user_id,
            'exported_at': now_ts,
            'exported_by': 'system',
            'data_types': ['email_logs', 'consent_records', 'audit_logs', 'email_preferences'],
        },
        'data': {
            'email_logs': email_logs,
            'consent_records': consent_records,
            'audit_logs': audit_logs,
            'email_preferences': (prefs_doc.to_dict() or {}) if prefs_doc.exists else None,
        },
    }


def request_data_deletion(db, user_id, requested_by='', now_ts=None):
    if not user_id:
        raise GdprError('User ID is required')
    now_ts = now_ts if now_ts is not None else time.time()
    token = secrets.token_urlsafe(32)
    request_doc = {
        'user_id': user_id,
        'requested_by': requested_by,
        'status': 'pending',
        'requested_at': now_ts,
        'expires_at': now_ts + DELETION_TOKEN_TTL_SECONDS,
    }
    gdpr_repo.deletion_doc_ref(db, token).set(request_doc)
    return token, request_doc


def _is_claimable(snapshot, user_id, now_ts):
    if not snapshot.exists:
        return False
    data = snapshot.to_dict() or {}
    if data.get('user_id') != user_id or data.get('status') != 'pending':
        return False
    return float(data.get('expires_at', 0) or 0) > now_ts


def verify_deletion_request(db, user_id, token, now_ts=None):
    if not token:
        return False
    now_ts = now_ts if now_ts is not None else time.time()
    return _is_claimable(gdpr_repo.deletion_doc_ref(db, token).get(), user_id, now_ts)


def claim_deletion_request(db, user_id, token, now_ts=None):
    """Move a pending request to ``processing`` atomically; False if it cannot be claimed."""
    if not token:
        return False
    now_ts = now_ts if now_ts is not None else time.time()
    ref = gdpr_repo.deletion_doc_ref(db, token)

    def _claim(transaction):
        if not _is_claimable(ref.get(transaction=transaction), user_id, now_ts):
            return False
        transaction.update(ref, {'status': 'processing', 'started_at': now_ts})
        return True

    return run_transaction(db, _claim)


def delete_user_data(db, user_id, token, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    if not claim_deletion_request(db, user_id, token, now_ts=now_ts):
        return {'success': False, 'deleted_records': {}, 'errors': ['Invalid verification token']}

    deleted = {}
    errors = []
    try:
        count = 0
        for doc in email_logs_repo.list_by_user(db, user_id, MAX_DOCS_PER_COLLECTION):
            doc.reference.delete()
            count += 1
        deleted['email_logs'] = count
    except Exception as e:
        errors.append(f'Failed to delete email logs: {e}')
    try:
        deleted['consent_records'] = gdpr_repo.delete_consents(db, user_id, MAX_DOCS_PER_COLLECTION)
    except Exception as e:
        errors.append(f'Failed to delete consent records: {e}')
    try:
        audit_docs = audit_logs_repo.list_by_user(db, user_id, MAX_DOCS_PER_COLLECTION)
        for doc in audit_docs:
            doc.reference.update({
                'user_id': 'anonymized',
                'user_email': '',
                'ip_address': '',
                'user_agent': '',
                'details': {'anonymized': True},
            })
        deleted['audit_logs_anonymized'] = len(audit_docs)
    except Exception as e:
        errors.append(f'Failed to anonymize audit logs: {e}')

    gdpr_repo.deletion_doc_ref(db, token).update({
        'status': 'completed' if not errors else 'failed',
        'completed_at': now_ts,
        'deleted_records': deleted,
    })
    return {'success': not errors, 'deleted_records': deleted, 'errors': errors}


def apply_retention_policies(db, policies=None, now_ts=None, batch_limit=500):
    now_ts = now_ts if now_ts is not None else time.time()
    purged = {}
    errors = []
    for policy in policies or DEFAULT_RETENTION_POLICIES:
        if not policy.get('auto_delete', True):
            continue
        data_type = policy.get('data_type')
        cutoff = now_ts - int(policy.get('retention_days', 0)) * 86400
        try:
            if data_type == 'email_logs':
                count = email_logs_repo.delete_older_than(db, cutoff, batch_limit)
            elif data_type == 'test_emails':
                count = email_logs_repo.delete_older_than(db, cutoff, batch_limit, is_test=True)
            elif data_type == 'audit_logs':
                count = cleanup_old_logs(db, retention_days=policy['retention_days'], now_ts=now_ts,
                                         batch_limit=batch_limit)
            else:
                errors.append(f'Unknown retention data type: {data_type}')
                continue
            purged[data_type] = count
        except Exception as e:
            errors.append(f'Failed to apply retention policy for {data_type}: {e}')
    if purged:
        logger.info(f"Retention policies applied: {purged}")
    return {'purged_records': purged, 'errors': errors}


def generate_compliance_report(db, now_ts=None):
    now_ts = now_ts if now_ts is not None else time.time()
    consent_status = {}
    for doc in gdpr_repo.stream_consents(db):
        record = doc.to_dict() or {}
        bucket = consent_status.setdefault(record.get('purpose', 'unknown'), {'granted': 0, 'revoked': 0})
        if record.get('granted') and not record.get('revoked_at'):
            bucket['granted'] += 1
        else:
            bucket['revoked'] += 1
    pending = gdpr_repo.list_pending_deletions(db)
    recommendations = []
    if pending:
        recommendations.append(f'{len(pending)} data deletion request(s) are awaiting completion')
    if not consent_status:
        recommendations.append('No consent records found; verify that consent is captured at signup')
    return {
        'summary': {
            'consent_purposes': len(consent_status),
            'pending_deletion_requests': len(pending),
            'active_retention_policies': len([p for p in DEFAULT_RETENTION_POLICIES if p['auto_delete']]),
            'generated_at': now_ts,
        },
        'consent_status': consent_status,
        'retention_policies': DEFAULT_RETENTION_POLICIES,
        'recommendations': recommendations,
    }
