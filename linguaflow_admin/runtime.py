import os
import sys
import uuid
import threading
import time
import json
import csv
import logging
import warnings

# Keep startup clean in local dev environments.
warnings.filterwarnings(
    "ignore",
    message=r"urllib3 v2 only supports OpenSSL 1\.1\.1\+.*"
)

import requests
from flask import Flask, request, jsonify, Response, stream_with_context, g
from dotenv import load_dotenv
try:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
except Exception:
    sentry_sdk = None
    FlaskIntegration = None
import firebase_admin
from firebase_admin import credentials, auth, firestore
from linguaflow_admin.repositories import admin_users_repo
from linguaflow_admin.services import (
    audit_api_service,
    audit_service,
    auth_service,
    calendar_api_service,
    discussion_api_service,
    email_admin_api_service,
    email_encryption,
    email_test_api_service,
    gdpr_api_service,
    rate_limit_service,
    smtp_config_api_service,
    smtp_tester,
    template_api_service,
    unsubscribe_api_service,
    vocabulary_api_service,
)

load_dotenv()
app = Flask(__name__)
app.secret_key = os.getenv('FLASK_SECRET_KEY', os.urandom(32).hex())
LOG_LEVEL = (os.getenv('LOG_LEVEL', 'INFO') or 'INFO').strip().upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)
logger = logging.getLogger('linguaflow_admin')


def log_event(level, event, **fields):
    payload = {'event': event}
    for key, value in fields.items():
        payload[str(key)] = value
    logger.log(level, json.dumps(payload, ensure_ascii=True, default=str))


# --- Firebase Setup ---
db = None
firebase_init_error = ''
try:
    if os.path.exists('firebase-credentials.json'):
        cred = credentials.Certificate('firebase-credentials.json')
    else:
        firebase_creds_raw = (os.getenv('FIREBASE_CREDENTIALS', '') or '').strip()
        if not firebase_creds_raw:
            raise ValueError("FIREBASE_CREDENTIALS is not set and firebase-credentials.json was not found.")
        cred = credentials.Certificate(json.loads(firebase_creds_raw))
    if not firebase_admin._apps:
        firebase_admin.initialize_app(cred)
    db = firestore.client()
except Exception as e:
    firebase_init_error = str(e)
    logger.info(f"⚠️ Firebase initialization skipped: {firebase_init_error}")

ADMIN_EMAILS = {email.strip().lower() for email in os.getenv('ADMIN_EMAILS', '').split(',') if email.strip()}
ADMIN_UIDS = {uid.strip() for uid in os.getenv('ADMIN_UIDS', '').split(',') if uid.strip()}

EMAIL_ENCRYPTION_KEY = (os.getenv('EMAIL_ENCRYPTION_KEY', '') or '').strip()
APP_BASE_URL = (os.getenv('APP_BASE_URL', 'http://localhost:3000') or 'http://localhost:3000').strip().rstrip('/')
GOOGLE_CLIENT_ID = (os.getenv('GOOGLE_CLIENT_ID', '') or '').strip()
GOOGLE_CLIENT_SECRET = (os.getenv('GOOGLE_CLIENT_SECRET', '') or '').strip()
GOOGLE_REDIRECT_URI = (os.getenv('GOOGLE_REDIRECT_URI', '') or '').strip()
google_http = requests


def safe_int_env(name, default=0, minimum=1, maximum=100000):
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except Exception:
        value = int(default)
    return min(max(value, minimum), maximum)

ADMIN_RATE_LIMIT_WINDOW_SECONDS = safe_int_env('ADMIN_RATE_LIMIT_WINDOW_SECONDS', 60, minimum=10, maximum=3600)
ADMIN_RATE_LIMIT_MAX_REQUESTS = safe_int_env('ADMIN_RATE_LIMIT_MAX_REQUESTS', 100, minimum=1, maximum=5000)
PUBLIC_RATE_LIMIT_WINDOW_SECONDS = safe_int_env('PUBLIC_RATE_LIMIT_WINDOW_SECONDS', 60, minimum=10, maximum=3600)
PUBLIC_RATE_LIMIT_MAX_REQUESTS = safe_int_env('PUBLIC_RATE_LIMIT_MAX_REQUESTS', 30, minimum=1, maximum=1000)
TEST_EMAIL_MAX_RETRY_ATTEMPTS = safe_int_env('TEST_EMAIL_MAX_RETRY_ATTEMPTS', 3, minimum=0, maximum=10)
TEST_EMAIL_RETRY_BASE_DELAY_MINUTES = safe_int_env('TEST_EMAIL_RETRY_BASE_DELAY_MINUTES', 5, minimum=1, maximum=1440)
UNSUBSCRIBE_TOKEN_TTL_DAYS = safe_int_env('UNSUBSCRIBE_TOKEN_TTL_DAYS', 30, minimum=1, maximum=365)
AUDIT_EXPORT_MAX_ROWS = safe_int_env('AUDIT_EXPORT_MAX_ROWS', 10000, minimum=100, maximum=50000)
EMAIL_LOG_EXPORT_MAX_ROWS = safe_int_env('EMAIL_LOG_EXPORT_MAX_ROWS', 10000, minimum=100, maximum=50000)
MAINTENANCE_INTERVAL_SECONDS = safe_int_env('MAINTENANCE_INTERVAL_SECONDS', 5 * 60, minimum=30, maximum=86400)
RATE_LIMIT_EVENTS = {}
RATE_LIMIT_LOCK = threading.Lock()
RATE_LIMIT_COUNTER_COLLECTION = 'rate_limit_counters'
RATE_LIMIT_FIRESTORE_ENABLED = str(os.getenv('RATE_LIMIT_FIRESTORE_ENABLED', '1')).strip().lower() in {'1', 'true', 'yes', 'on'}
BACKGROUND_MAINTENANCE_ENABLED = str(os.getenv('BACKGROUND_MAINTENANCE_ENABLED', '1')).strip().lower() in {'1', 'true', 'yes', 'on'}

SENTRY_BACKEND_DSN = os.getenv('SENTRY_DSN_BACKEND', '').strip()
SENTRY_ENVIRONMENT = (os.getenv('SENTRY_ENVIRONMENT', os.getenv('FLASK_ENV', 'production')) or 'production').strip()
SENTRY_RELEASE = (os.getenv('SENTRY_RELEASE', 'linguaflow-admin') or 'linguaflow-admin').strip()
DEV_ENV_NAMES = {'development', 'dev', 'local', 'test'}
APP_BOOT_TS = time.time()


def parse_cors_allowed_origins():
    raw = (os.getenv('CORS_ALLOWED_ORIGINS', '') or '').strip()
    if raw:
        origins = [part.strip().lower() for part in raw.split(',') if part.strip()]
        return set(origins)
    return {
        'http://127.0.0.1:3000',
        'http://localhost:3000',
        'http://127.0.0.1:5000',
        'http://localhost:5000',
    }


CORS_ALLOWED_ORIGINS = parse_cors_allowed_origins()

def safe_float_env(name, default=0.0):
    raw = os.getenv(name, str(default)).strip()
    try:
        value = float(raw)
    except Exception:
        return default
    return min(max(value, 0.0), 1.0)

SENTRY_TRACES_SAMPLE_RATE = safe_float_env('SENTRY_TRACES_SAMPLE_RATE', 0.0)

if SENTRY_BACKEND_DSN and sentry_sdk and FlaskIntegration:
    sentry_sdk.init(
        dsn=SENTRY_BACKEND_DSN,
        integrations=[FlaskIntegration()],
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
        environment=SENTRY_ENVIRONMENT,
        release=SENTRY_RELEASE,
    )

def is_dev_environment():
    env_value = str(SENTRY_ENVIRONMENT or '').strip().lower()
    flask_debug = str(os.getenv('FLASK_DEBUG', '0')).strip().lower() in {'1', 'true', 'yes', 'on'}
    return env_value in DEV_ENV_NAMES or flask_debug


def apply_cors_headers(response):
    origin = str(request.headers.get('Origin', '') or '').strip()
    if not origin:
        return response
    if not request.path.startswith('/api/'):
        return response
    if origin.lower() not in CORS_ALLOWED_ORIGINS:
        return response
    response.headers['Access-Control-Allow-Origin'] = origin
    response.headers['Vary'] = 'Origin'
    response.headers['Access-Control-Allow-Headers'] = 'Authorization, Content-Type, X-Request-ID'
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, PUT, PATCH, DELETE, OPTIONS'
    return response


@app.before_request
def handle_api_options_preflight():
    if request.method == 'OPTIONS' and request.path.startswith('/api/'):
        return apply_cors_headers(app.make_default_options_response())

@app.before_request
def attach_sentry_route_context():
    request_id = str(request.headers.get('X-Request-ID', '') or '').strip()[:120] or uuid.uuid4().hex
    g.request_id = request_id
    if not sentry_sdk:
        return
    try:
        with sentry_sdk.configure_scope() as scope:
            scope.set_tag('request.id', request_id)
            scope.set_tag('route.path', request.path)
            scope.set_tag('route.method', request.method)
            scope.set_tag('route.endpoint', request.endpoint or '')
            scope.set_tag('route.auth_header_present', 'true' if request.headers.get('Authorization') else 'false')
            scope.set_tag('route.environment', SENTRY_ENVIRONMENT or 'production')
    except Exception as e:
        logger.debug(f"Sentry scope tagging skipped: {e}")

@app.after_request
def attach_sentry_response_context(response):
    request_id = str(getattr(g, 'request_id', '') or '').strip()
    if request_id:
        response.headers['X-Request-ID'] = request_id
    if sentry_sdk:
        try:
            with sentry_sdk.configure_scope() as scope:
                scope.set_tag('route.status_code', str(response.status_code))
        except Exception as e:
            logger.debug(f"Sentry scope tagging skipped: {e}")
    return apply_cors_headers(response)

# =============================================
# HELPER FUNCTIONS
# =============================================

def verify_firebase_token(request):
    return auth_service.verify_firebase_token(request, auth_module=auth, logger=logger)

def get_admin_record(uid):
    if db is None or not uid:
        return None
    try:
        snapshot = admin_users_repo.get_doc(db, uid)
    except Exception as e:
        logger.info(f"⚠️ Could not load admin record for {uid}: {e}")
        return None
    if not snapshot.exists:
        return None
    return snapshot.to_dict() or {}

def is_admin_user(decoded_token):
    if not decoded_token:
        return False
    if auth_service.is_env_admin(decoded_token, ADMIN_UIDS, ADMIN_EMAILS):
        return True
    return get_admin_record(decoded_token.get('uid', '')) is not None

def get_admin_permissions(decoded_token):
    if not is_admin_user(decoded_token):
        return set()
    record = get_admin_record(decoded_token.get('uid', ''))
    if record is None:
        # Admins without a role document are env-listed admins.
        return {auth_service.SYSTEM_ADMIN}
    return auth_service.resolve_permissions(decoded_token, record, ADMIN_UIDS, ADMIN_EMAILS)

def get_client_ip(request):
    forwarded = str(request.headers.get('X-Forwarded-For', '') or '').split(',')[0].strip()
    return forwarded or (request.remote_addr or '')

def record_audit_event(request, decoded_token, action, resource, resource_id=None,
                       old_values=None, new_values=None, details=None):
    decoded_token = decoded_token or {}
    entry = audit_service.build_entry(
        action,
        resource,
        user_id=decoded_token.get('uid', ''),
        user_email=decoded_token.get('email', ''),
        resource_id=resource_id,
        old_values=old_values,
        new_values=new_values,
        details=details,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get('User-Agent', ''),
        session_id=str(getattr(g, 'request_id', '') or ''),
    )
    return audit_service.log_event(db, entry)

def require_admin(request, permission=None):
    """Return ``(decoded_token, None)`` for an allowed admin, else ``(None, error_response)``."""
    decoded_token = verify_firebase_token(request)
    if not decoded_token:
        return None, (jsonify({'error': 'Unauthorized'}), 401)
    permissions = get_admin_permissions(decoded_token)
    if not permissions:
        record_audit_event(request, decoded_token, 'unauthorized_access', 'session', details={
            'path': request.path,
            'method': request.method,
        })
        return None, (jsonify({'error': 'Forbidden'}), 403)
    if not auth_service.has_permission(permissions, permission):
        record_audit_event(request, decoded_token, 'unauthorized_access', 'session', details={
            'path': request.path,
            'method': request.method,
            'required_permission': permission,
        })
        return None, (jsonify({'error': 'Insufficient permissions'}), 403)
    allowed, retry_after = check_rate_limit(
        key=rate_limit_service.build_key('admin', decoded_token.get('uid', '')),
        limit=ADMIN_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=ADMIN_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        record_audit_event(request, decoded_token, 'rate_limit_exceeded', 'session', details={
            'path': request.path,
            'retry_after_seconds': retry_after,
        })
        return None, build_rate_limited_response('Too many admin requests. Please wait and try again.', retry_after)
    return decoded_token, None

def get_admin_window(window_key):
    windows = {
        '24h': 24 * 60 * 60,
        '7d': 7 * 24 * 60 * 60,
        '30d': 30 * 24 * 60 * 60,
    }
    safe_key = window_key if window_key in windows else '7d'
    return safe_key, windows[safe_key]

def get_json_body(request):
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}

def check_rate_limit(key, limit, window_seconds):
    return rate_limit_service.check_rate_limit(
        key,
        limit,
        window_seconds,
        firestore_enabled=RATE_LIMIT_FIRESTORE_ENABLED,
        db=db,
        firestore_module=firestore,
        counter_collection=RATE_LIMIT_COUNTER_COLLECTION,
        in_memory_events=RATE_LIMIT_EVENTS,
        in_memory_lock=RATE_LIMIT_LOCK,
        time_module=time,
        logger=logger,
    )

def build_rate_limited_response(message, retry_after):
    response = jsonify({
        'error': message,
        'retry_after_seconds': int(max(1, retry_after)),
    })
    response.status_code = 429
    response.headers['Retry-After'] = str(int(max(1, retry_after)))
    return response

def encrypt_smtp_password(plaintext):
    return email_encryption.encrypt_password(plaintext, key=EMAIL_ENCRYPTION_KEY or None)

def decrypt_smtp_password(ciphertext):
    return email_encryption.decrypt_password(ciphertext, key=EMAIL_ENCRYPTION_KEY or None)

def check_smtp_connection(config):
    return smtp_tester.test_smtp_connection(config)

def send_smtp_email(config, to, subject, html, text=None, from_name=None):
    return smtp_tester.send_smtp_email(config, to, subject, html, text=text, from_name=from_name)

# =============================================
# BACKGROUND MAINTENANCE
# =============================================

def run_periodic_maintenance():
    now_ts = time.time()
    rate_limit_service.prune_memory_events(
        RATE_LIMIT_EVENTS,
        RATE_LIMIT_LOCK,
        now_ts,
        max(ADMIN_RATE_LIMIT_WINDOW_SECONDS, PUBLIC_RATE_LIMIT_WINDOW_SECONDS),
    )
    if db is None:
        return {'retried': 0, 'counters_deleted': 0}
    counters_deleted = rate_limit_service.cleanup_expired_counters(db, RATE_LIMIT_COUNTER_COLLECTION, now_ts)
    summary = email_test_api_service.process_due_retries(_ctx())
    summary['counters_deleted'] = counters_deleted
    return summary

def _run_periodic_cleanup():
    """Background thread: prune rate-limit windows and resend due test emails."""
    while True:
        time.sleep(MAINTENANCE_INTERVAL_SECONDS)
        try:
            run_periodic_maintenance()
        except Exception as e:
            logger.warning(f"⚠️ Periodic maintenance failed: {e}")

if BACKGROUND_MAINTENANCE_ENABLED:
    _cleanup_thread = threading.Thread(target=_run_periodic_cleanup, daemon=True)
    _cleanup_thread.start()

# =============================================
# ROUTE IMPLEMENTATIONS
# =============================================

def _ctx():
    return sys.modules[__name__]

# --- SMTP configuration ---
def smtp_config_list_impl():
    return smtp_config_api_service.list_configs(_ctx(), request)

def smtp_config_create_impl():
    return smtp_config_api_service.create_config(_ctx(), request)

def smtp_config_get_impl(config_id):
    return smtp_config_api_service.get_config(_ctx(), request, config_id)

def smtp_config_update_impl(config_id):
    return smtp_config_api_service.update_config(_ctx(), request, config_id)

def smtp_config_delete_impl(config_id):
    return smtp_config_api_service.delete_config(_ctx(), request, config_id)

def smtp_config_activate_impl(config_id):
    return smtp_config_api_service.activate_config(_ctx(), request, config_id)

def smtp_config_test_impl(config_id):
    return smtp_config_api_service.test_config(_ctx(), request, config_id)

def smtp_providers_impl():
    return smtp_config_api_service.list_providers(_ctx(), request)

# --- Email templates ---
def templates_list_impl():
    return template_api_service.list_templates(_ctx(), request)

def templates_create_impl():
    return template_api_service.create_template(_ctx(), request)

def template_get_impl(template_id):
    return template_api_service.get_template(_ctx(), request, template_id)

def template_update_impl(template_id):
    return template_api_service.update_template(_ctx(), request, template_id)

def template_delete_impl(template_id):
    return template_api_service.delete_template(_ctx(), request, template_id)

def template_history_impl(template_id):
    return template_api_service.get_history(_ctx(), request, template_id)

def template_rollback_impl(template_id):
    return template_api_service.rollback_template(_ctx(), request, template_id)

def template_preview_impl(template_id):
    return template_api_service.preview_template(_ctx(), request, template_id)

def templates_bulk_impl():
    return template_api_service.bulk_operation(_ctx(), request)

def templates_bulk_operations_impl():
    return template_api_service.list_bulk_operations(_ctx(), request)

# --- Email delivery, test emails and email logs ---
def test_email_send_impl():
    return email_test_api_service.send_test_email(_ctx(), request)

def test_email_status_impl(test_id):
    return email_test_api_service.get_test_status(_ctx(), request, test_id)

def test_email_status_update_impl(test_id):
    return email_test_api_service.update_test_status(_ctx(), request, test_id)

def email_send_impl():
    return email_admin_api_service.send_email(_ctx(), request)

def email_analytics_impl():
    return email_admin_api_service.email_analytics(_ctx(), request)

def email_health_impl():
    return email_admin_api_service.email_health(_ctx(), request)

def email_logs_export_impl():
    return email_test_api_service.export_email_logs(_ctx(), request)

# --- Audit logs ---
def audit_logs_list_impl():
    return audit_api_service.list_audit_logs(_ctx(), request)

def audit_logs_export_impl():
    return audit_api_service.export_audit_logs(_ctx(), request)

def audit_logs_statistics_impl():
    return audit_api_service.audit_statistics(_ctx(), request)

# --- GDPR ---
def gdpr_report_impl():
    return gdpr_api_service.compliance_report(_ctx(), request)

def gdpr_action_impl():
    return gdpr_api_service.run_action(_ctx(), request)

def gdpr_consent_get_impl():
    return gdpr_api_service.get_consent(_ctx(), request)

def gdpr_consent_record_impl():
    return gdpr_api_service.record_consent(_ctx(), request)

# --- Unsubscribe and preferences ---
def unsubscribe_impl():
    return unsubscribe_api_service.unsubscribe(_ctx(), request)

def unsubscribe_validate_impl():
    return unsubscribe_api_service.validate_token(_ctx(), request)

def email_preferences_get_impl():
    return unsubscribe_api_service.get_preferences(_ctx(), request)

def email_preferences_update_impl():
    return unsubscribe_api_service.update_preferences(_ctx(), request)

def unsubscribe_statistics_impl():
    return unsubscribe_api_service.statistics(_ctx(), request)

# --- Google Calendar ---
def calendar_oauth_url_impl():
    return calendar_api_service.oauth_url(_ctx(), request)

def calendar_oauth_callback_impl():
    return calendar_api_service.oauth_callback(_ctx(), request)

def calendar_status_impl():
    return calendar_api_service.connection_status(_ctx(), request)

def calendar_events_impl():
    return calendar_api_service.list_events(_ctx(), request)

def calendar_disconnect_impl():
    return calendar_api_service.disconnect(_ctx(), request)

# --- Discussion topics ---
def discussion_topics_list_impl():
    return discussion_api_service.list_topics(_ctx(), request)

def discussion_topics_create_impl():
    return discussion_api_service.create_topic(_ctx(), request)

def discussion_topic_get_impl(topic_id):
    return discussion_api_service.get_topic(_ctx(), request, topic_id)

def discussion_topic_update_impl(topic_id):
    return discussion_api_service.update_topic(_ctx(), request, topic_id)

def discussion_topic_delete_impl(topic_id):
    return discussion_api_service.delete_topic(_ctx(), request, topic_id)

def discussion_topics_predefined_impl():
    return discussion_api_service.predefined_topics(_ctx(), request)

# --- Vocabulary sessions ---
def vocabulary_session_save_impl():
    return vocabulary_api_service.save_session(_ctx(), request)

def vocabulary_session_get_impl(session_id):
    return vocabulary_api_service.get_session(_ctx(), request, session_id)

def vocabulary_session_recover_impl():
    return vocabulary_api_service.recover_session(_ctx(), request)

def vocabulary_session_end_impl(session_id):
    return vocabulary_api_service.end_session(_ctx(), request, session_id)

def vocabulary_progress_get_impl(student_id):
    return vocabulary_api_service.get_progress(_ctx(), request, student_id)

def vocabulary_progress_update_impl(student_id):
    return vocabulary_api_service.save_progress(_ctx(), request, student_id)

# =============================================
# BLUEPRINTS
# =============================================
from linguaflow_admin.blueprints import ALL_BLUEPRINTS

for _blueprint in ALL_BLUEPRINTS:
    app.register_blueprint(_blueprint)

# =============================================
# HEALTH CHECK
# =============================================
@app.route('/healthz')
def healthz():
    return jsonify({'status': 'ok'}), 200
