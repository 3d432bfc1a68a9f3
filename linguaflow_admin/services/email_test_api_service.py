"""Business logic handlers for test emails, their retries and the email log export."""

from linguaflow_admin.repositories import email_logs_repo, email_templates_repo, smtp_configs_repo
from linguaflow_admin.services import email_encryption, smtp_tester, template_utils

TEST_EMAIL_STATUSES = ('pending', 'sent', 'delivered', 'failed')
MAX_DUE_RETRIES_PER_RUN = 50


def compute_next_retry_at(retry_attempts, max_attempts, base_delay_minutes, now_ts):
    """Return when the next retry is due, or None once ``max_attempts`` retries have run."""
    next_attempt = int(retry_attempts or 0) + 1
    if next_attempt > int(max_attempts):
        return None
    return now_ts + (base_delay_minutes * (2 ** (next_attempt - 1)) * 60)


def load_active_smtp_config(app_ctx):
    """Return ``(config_id, config_with_plain_password)`` or ``(None, None)``."""
    snapshot = smtp_configs_repo.get_active_doc(app_ctx.db)
    if snapshot is None:
        return None, None
    stored = snapshot.to_dict() or {}
    password = app_ctx.decrypt_smtp_password(stored.get('password_encrypted', ''))
    return snapshot.id, dict(stored, password=password)


def failure_updates(app_ctx, result, retry_attempts, now_ts):
    details = result.get('details') or {}
    next_retry_at = compute_next_retry_at(
        retry_attempts,
        app_ctx.TEST_EMAIL_MAX_RETRY_ATTEMPTS,
        app_ctx.TEST_EMAIL_RETRY_BASE_DELAY_MINUTES,
        now_ts,
    )
    return {
        'status': 'failed' if next_retry_at is not None else 'retry_exhausted',
        'error_message': result.get('message', 'Unknown error'),
        'error_code': details.get('error_code'),
        'retry_attempts': int(retry_attempts or 0),
        'next_retry_at': next_retry_at,
        'metadata.next_retry_at': next_retry_at,
        'metadata.smtp_details': details,
        'updated_at': now_ts,
    }


def success_updates(result, retry_attempts, now_ts):
    return {
        'status': 'sent',
        'sent_at': now_ts,
        'error_message': None,
        'error_code': None,
        'retry_attempts': int(retry_attempts or 0),
        'next_retry_at': None,
        'metadata.next_retry_at': None,
        'metadata.message_id': result.get('message_id'),
        'metadata.smtp_details': result.get('details') or {},
        'updated_at': now_ts,
    }


def send_test_email(app_ctx, request):
    decoded_token, error = app_ctx.require_admin(request, 'email:test:send')
    if error:
        return error
    payload = app_ctx.get_json_body(request)
    template_id = str(payload.get('templateId') or '').strip()
    recipient = str(payload.get('recipientEmail') or '').strip()
    test_parameters = payload.get('testParameters') if isinstance(payload.get('testParameters'), dict) else {}
    if not template_id or not recipient:
        return app_ctx.jsonify({'error': 'Template ID and recipient email are required'}), 400
    if not smtp_tester.is_valid_email(recipient):
        return app_ctx.jsonify({'error': 'Invalid recipient email address'}), 400

    template_snapshot = email_templates_repo.get_doc(app_ctx.db, template_id)
    if not template_snapshot.exists:
        return app_ctx.jsonify({'error': 'Template not found'}), 404
    template = template_snapshot.to_dict() or {}

    try:
        smtp_config_id, smtp_config = load_active_smtp_config(app_ctx)
    except email_encryption.EncryptionError as e:
        app_ctx.logger.error(f"Could not decrypt active SMTP password: {e}")
        return app_ctx.jsonify({'error': 'Failed to decrypt SMTP password'}), 500
    if smtp_config is None:
        return app_ctx.jsonify({'error': 'No active SMTP configuration found'}), 400

    params = template_utils.get_sample_data(template.get('type'))
    params.update(test_parameters)
    subject = template_utils.replace_placeholders(template.get('subject', ''), params)
    html = template_utils.replace_placeholders(template.get('html_content', ''), params)
    text = template_utils.replace_placeholders(template.get('text_content') or '', params) or None

    now_ts = app_ctx.time.time()
    log_record = {
        'template_id': template_id,
        'template_type': template.get('type', ''),
        'recipient_email': recipient,
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
        'is_test': True,
        'smtp_config_id': smtp_config_id,
        'user_id': decoded_token.get('uid', ''),
        'test_parameters': test_parameters,
        'metadata': {'template_version': template.get('version', 1)},
        'created_at': now_ts,
        'updated_at': now_ts,
    }
    try:
        test_id = email_logs_repo.add_doc(app_ctx.db, log_record)
    except Exception as e:
        app_ctx.logger.error(f"Could not create test email log: {e}")
        return app_ctx.jsonify({'error': 'Failed to create test email record'}), 500

    result = app_ctx.send_smtp_email(smtp_config, recipient, subject, html, text=text,
                                     from_name=smtp_config.get('from_name'))
    success = bool(result.get('success'))
    done_ts = app_ctx.time.time()
    updates = success_updates(result, 0, done_ts) if success else failure_updates(app_ctx, result, 0, done_ts)
    try:
        email_logs_repo.update_doc(app_ctx.db, test_id, updates)
    except Exception as e:
        app_ctx.logger.warning(f"Could not update test email log {test_id}: {e}")

    app_ctx.record_audit_event(
        request,
        decoded_token,
        'test_email_sent' if success else 'test_email_failed',
        'email_test',
        resource_id=test_id,
        details={
            'template_id': template_id,
            'recipient_email': recipient,
            'success': success,
            'error': None if success else result.get('message'),
        },
    )
    if not success:
        app_ctx.log_event(app_ctx.logging.WARNING, 'test_email_retry_scheduled', test_id=test_id,
                          next_retry_at=updates['next_retry_at'])
    return app_ctx.jsonify({
        'testId': test_id,
        'status': updates['status'],
        'message': 'Test email sent successfully' if success else result.get('message', 'Failed to send test email'),
        'previewHtml': html,
    }), (200 if success else 500)


def get_test_status(app_ctx, request, test_id):
    _decoded, error = app_ctx.require_admin(request, 'email:test:send')
    if error:
        return error
    snapshot = email_logs_repo.get_doc(app_ctx.db, test_id)
    data = snapshot.to_dict() or {} if snapshot.exists else {}
    if not snapshot.exists or not data.get('is_test'):
        return app_ctx.jsonify({'error': 'Test email not found'}), 404
    return app_ctx.jsonify({
        'testId': snapshot.id,
        'status': data.get('status'),
        'recipientEmail': data.get('recipient_email'),
        'subject': data.get('subject'),
        'sentAt': data.get('sent_at'),
        'deliveredAt': data.get('delivered_at'),
        'errorMessage': data.get('error_message'),
        'errorCode': data.get('error_code'),
        'retryAttempts': data.get('retry_attempts', 0),
        'nextRetryAt': data.get('next_retry_at'),
        'metadata': data.get('metadata') or {},
    })


def update_test_status(app_ctx, request, test_id):
    decoded_token, error = app_ctx.require_admin(request, 'email:test:send')
    if error:
        return error
    payload = app_ctx.get_json_body(request)
    status = str(payload.get('status') or '').strip()
    if status not in TEST_EMAIL_STATUSES:
        return app_ctx.jsonify({'error': f"Status must be one of: {', '.join(TEST_EMAIL_STATUSES)}"}), 400
    snapshot = email_logs_repo.get_doc(app_ctx.db, test_id)
    existing = (snapshot.to_dict() or {}) if snapshot.exists else {}
    if not snapshot.exists or not existing.get('is_test'):
        return app_ctx.jsonify({'error': 'Test email not found'}), 404

    now_ts = app_ctx.time.time()
    updates = {'status': status, 'updated_at': now_ts}
    if status == 'delivered':
        updates['delivered_at'] = now_ts
    if payload.get('errorMessage'):
        updates['error_message'] = str(payload['errorMessage'])[:1000]
    try:
        email_logs_repo.update_doc(app_ctx.db, test_id, updates)
    except Exception as e:
        app_ctx.logger.error(f"Could not update test email status {test_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to update test email status'}), 500
    app_ctx.record_audit_event(request, decoded_token, 'settings_updated', 'email_test', resource_id=test_id,
                               old_values={'status': existing.get('status')},
                               new_values={'status': status})
    return app_ctx.jsonify({'testId': test_id, 'status': status, 'updatedAt': now_ts})


def process_due_retries(app_ctx, now_ts=None):
    """Resend failed emails, test and production, whose retry time has passed."""
    summary = {'retried': 0, 'sent': 0, 'rescheduled': 0, 'exhausted': 0}
    if app_ctx.db is None:
        return summary
    now_ts = now_ts if now_ts is not None else app_ctx.time.time()
    docs = email_logs_repo.list_due_retries(app_ctx.db, now_ts, limit=MAX_DUE_RETRIES_PER_RUN)
    if not docs:
        return summary
    try:
        _config_id, smtp_config = load_active_smtp_config(app_ctx)
    except email_encryption.EncryptionError as e:
        app_ctx.logger.error(f"Skipping email retries, SMTP password unreadable: {e}")
        return summary
    if smtp_config is None:
        app_ctx.logger.info("Skipping email retries: no active SMTP configuration")
        return summary

    for doc in docs:
        data = doc.to_dict() or {}
        attempts = int(data.get('retry_attempts', 0) or 0) + 1
        result = app_ctx.send_smtp_email(
            smtp_config,
            data.get('recipient_email', ''),
            data.get('subject', ''),
            data.get('rendered_html', ''),
            text=data.get('rendered_text'),
            from_name=smtp_config.get('from_name'),
        )
        summary['retried'] += 1
        if result.get('success'):
            updates = success_updates(result, attempts, now_ts)
            summary['sent'] += 1
        else:
            updates = failure_updates(app_ctx, result, attempts, now_ts)
            if updates['status'] == 'retry_exhausted':
                summary['exhausted'] += 1
            else:
                summary['rescheduled'] += 1
        email_logs_repo.update_doc(app_ctx.db, doc.id, updates)
        app_ctx.log_event(app_ctx.logging.INFO, 'email_retry', log_id=doc.id, attempt=attempts,
                          status=updates['status'])
    return summary


def export_email_logs(app_ctx, request):
    decoded_token, error = app_ctx.require_admin(request, 'email:logs:export')
    if error:
        return error
    window_key, window_seconds = app_ctx.get_admin_window(request.args.get('window', '7d'))
    now_ts = app_ctx.time.time()
    window_start = now_ts - window_seconds
    status_filter = (request.args.get('status', '') or '').strip() or None

    class _CsvBuffer:
        def write(self, value):
            return value

    def iter_rows():
        yield [
            'log_id', 'created_at', 'template_type', 'recipient_email', 'subject', 'status',
            'is_test', 'retry_attempts', 'error_code', 'error_message', 'sent_at', 'delivered_at',
        ]
        docs = email_logs_repo.query_window(
            app_ctx.db,
            window_start,
            now_ts,
            limit=app_ctx.EMAIL_LOG_EXPORT_MAX_ROWS,
            status=status_filter,
        )
        for doc in docs:
            entry = doc.to_dict() or {}
            yield [
                doc.id,
                entry.get('created_at', ''),
                entry.get('template_type', ''),
                entry.get('recipient_email', ''),
                entry.get('subject', ''),
                entry.get('status', ''),
                bool(entry.get('is_test')),
                entry.get('retry_attempts', 0),
                entry.get('error_code') or '',
                entry.get('error_message') or '',
                entry.get('sent_at') or '',
                entry.get('delivered_at') or '',
            ]

    def generate_csv():
        buffer = _CsvBuffer()
        writer = app_ctx.csv.writer(buffer)
        for row in iter_rows():
            yield writer.writerow(row)

    app_ctx.record_audit_event(request, decoded_token, 'data_exported', 'email_log', details={
        'window': window_key,
        'status': status_filter,
        'format': 'csv',
    })
    try:
        filename = f"email-logs-{window_key}.csv"
        response = app_ctx.Response(app_ctx.stream_with_context(generate_csv()), mimetype='text/csv')
        response.headers['Content-Disposition'] = f'attachment; filename={filename}'
        return response
    except Exception as e:
        app_ctx.logger.error(f"Error exporting email logs CSV: {e}")
        return app_ctx.jsonify({'error': 'Could not export CSV'}), 500
