"""Send production emails from the active template for a type.

Recipient preferences and marketing consent are checked first. The rendered
message gets an unsubscribe footer unless the type is transactional. It then
goes out through the active SMTP configuration and is recorded in email_logs
with the same retry fields as test emails.
"""

from linguaflow_admin.repositories import email_logs_repo, email_templates_repo
from linguaflow_admin.services import (
    audit_service,
    email_encryption,
    email_test_api_service,
    gdpr_service,
    smtp_tester,
    template_utils,
    unsubscribe_service,
)

NO_UNSUBSCRIBE_TYPES = frozenset({'password_reset', 'account_verification', 'security_alert'})


class DeliveryRejected(Exception):
    """The email was not sent; ``status_code`` is the HTTP status an API caller should use."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def includes_unsubscribe_link(template_type):
    return template_type not in NO_UNSUBSCRIBE_TYPES


def find_active_template(db, template_type):
    docs = email_templates_repo.list_docs(db, template_type=template_type, is_active=True)
    if not docs:
        return None, None
    return docs[0].id, docs[0].to_dict() or {}


def check_recipient(db, user_id, template_type):
    if not user_id:
        return
    if not unsubscribe_service.should_receive_email(db, user_id, template_type):
        raise DeliveryRejected('User has unsubscribed from this email type', status_code=409)
    if template_type in gdpr_service.MARKETING_TYPES and not gdpr_service.has_consent(db, user_id, template_type):
        raise DeliveryRejected('User consent required for this email type', status_code=409)


def _audit(app_ctx, action, resource, actor_id, resource_id=None, details=None):
    entry = audit_service.build_entry(action, resource, user_id=actor_id or 'system', resource_id=resource_id,
                                      details=details)
    audit_service.log_event(app_ctx.db, entry)


def deliver_email(app_ctx, template_type, recipient_email, template_data=None, user_id=None, actor_id='system'):
    """Render and send one email; returns ``{'log_id', 'status', 'message', 'message_id', 'next_retry_at'}``.

    Raises ``DeliveryRejected`` when nothing was attempted. SMTP failures are
    logged with a retry schedule and returned with ``status`` ``failed``.
    """
    template_type = str(template_type or '').strip()
    recipient_email = str(recipient_email or '').strip()
    if not template_type or not recipient_email:
        raise DeliveryRejected('Template type and recipient email are required')
    if not smtp_tester.is_valid_email(recipient_email):
        raise DeliveryRejected('Invalid recipient email address')

    db = app_ctx.db
    check_recipient(db, user_id, template_type)

    try:
        smtp_config_id, smtp_config = email_test_api_service.load_active_smtp_config(app_ctx)
    except email_encryption.EncryptionError as e:
        app_ctx.logger.error(f"Could not decrypt active SMTP password: {e}")
        raise DeliveryRejected('Failed to decrypt SMTP password', status_code=500) from e
    if smtp_config is None:
        raise DeliveryRejected('No active SMTP configuration found', status_code=503)

    template_id, template = find_active_template(db, template_type)
    if template is None:
        raise DeliveryRejected(f'No active template found for type: {template_type}', status_code=404)

    compliance = gdpr_service.validate_template_compliance(template.get('html_content', ''), template_type)
    if not compliance['is_compliant']:
        # Sending continues; the finding is left for an admin to review.
        _audit(app_ctx, 'template_compliance_warning', 'email_template', actor_id, resource_id=template_id,
               details={'issues': compliance['issues'], 'warnings': compliance['warnings']})

    params = dict(template_data or {})
    params.setdefault('user_email', recipient_email)
    subject = template_utils.replace_placeholders(template.get('subject', ''), params)
    html = template_utils.replace_placeholders(template.get('html_content', ''), params)
    text = template_utils.replace_placeholders(template.get('text_content') or '', params) or None

    unsubscribe_token = None
    if user_id and includes_unsubscribe_link(template_type):
        link = unsubscribe_service.generate_unsubscribe_link(
            db,
            app_ctx.APP_BASE_URL,
            user_id,
            recipient_email,
            email_type=template_type,
            ttl_days=app_ctx.UNSUBSCRIBE_TOKEN_TTL_DAYS,
        )
        unsubscribe_token = link['token']
        html = unsubscribe_service.add_unsubscribe_link_to_email(html, link['url'], email_type=template_type,
                                                                 base_url=app_ctx.APP_BASE_URL)

    now_ts = app_ctx.time.time()
    log_id = email_logs_repo.add_doc(db, {
        'template_id': template_id,
        'template_type': template_type,
        'recipient_email': recipient_email,
        'subject': subject,
        'rendered_html': html,
        'rendered_text': text,
        'status': 'pending',
        'sent_at': None,
        'delivered_at': None,
        'error_message': None,
        'error_code': None,
        'retry_attempts': 0,
        'next_retry_at': None,
        'is_test': False,
        'smtp_config_id': smtp_config_id,
        'user_id': user_id or '',
        'metadata': {
            'template_version': template.get('version', 1),
            'unsubscribe_token_issued': unsubscribe_token is not None,
            'requested_by': actor_id,
        },
        'created_at': now_ts,
        'updated_at': now_ts,
    })

    result = app_ctx.send_smtp_email(smtp_config, recipient_email, subject, html, text=text,
                                     from_name=smtp_config.get('from_name'))
    success = bool(result.get('success'))
    done_ts = app_ctx.time.time()
    updates = (email_test_api_service.success_updates(result, 0, done_ts) if success
               else email_test_api_service.failure_updates(app_ctx, result, 0, done_ts))
    try:
        email_logs_repo.update_doc(db, log_id, updates)
    except Exception as e:
        app_ctx.logger.warning(f"Could not update email log {log_id}: {e}")

    _audit(app_ctx, 'email_sent' if success else 'email_failed', 'email_log', actor_id, resource_id=log_id,
           details={
               'template_type': template_type,
               'recipient_email': recipient_email,
               'error': None if success else result.get('message'),
           })
    app_ctx.log_event(app_ctx.logging.INFO if success else app_ctx.logging.WARNING, 'email_delivery',
                      log_id=log_id, template_type=template_type, status=updates['status'])
    return {
        'log_id': log_id,
        'status': updates['status'],
        'message': result.get('message', ''),
        'message_id': result.get('message_id'),
        'next_retry_at': updates.get('next_retry_at'),
    }
