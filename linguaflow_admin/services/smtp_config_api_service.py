"""Business logic handlers for SMTP configuration admin APIs."""

from linguaflow_admin.repositories import email_logs_repo, smtp_configs_repo
from linguaflow_admin.services import email_encryption, smtp_tester, smtp_validation

HIDDEN_PASSWORD = '***HIDDEN***'
REQUIRED_CREATE_FIELDS = ('provider', 'host', 'port', 'username', 'password', 'encryption')
REQUIRED_UPDATE_FIELDS = ('provider', 'host', 'port', 'username', 'encryption')
TEST_TYPES = ('connection', 'email')


def serialize_config(config_id, data):
    public = {key: value for key, value in (data or {}).items() if key != 'password_encrypted'}
    public['id'] = config_id
    public['password'] = HIDDEN_PASSWORD
    return public


def _missing_fields(payload, fields):
    return [name for name in fields if payload.get(name) in (None, '')]


def _config_fields(payload):
    return {
        'provider': str(payload.get('provider', '')).strip(),
        'host': str(payload.get('host', '')).strip(),
        'port': int(payload.get('port')),
        'username': str(payload.get('username', '')).strip(),
        'encryption': str(payload.get('encryption', '')).strip().lower(),
        'from_email': str(payload.get('from_email') or payload.get('username') or '').strip(),
        'from_name': str(payload.get('from_name') or '').strip() or smtp_tester.DEFAULT_FROM_NAME,
    }


def _invalid_config_response(app_ctx, validation):
    return app_ctx.jsonify({
        'error': 'Invalid SMTP configuration',
        'details': validation['errors'],
        'warnings': validation['warnings'],
    }), 400


def list_configs(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:config:read')
    if error:
        return error
    try:
        docs = smtp_configs_repo.list_docs(app_ctx.db)
    except Exception as e:
        app_ctx.logger.error(f"Error listing SMTP configurations: {e}")
        return app_ctx.jsonify({'error': 'Failed to fetch SMTP configurations'}), 500
    return app_ctx.jsonify({'configs': [serialize_config(doc.id, doc.to_dict()) for doc in docs]})


def create_config(app_ctx, request):
    decoded_token, error = app_ctx.require_admin(request, 'email:config:write')
    if error:
        return error
    payload = app_ctx.get_json_body(request)
    if _missing_fields(payload, REQUIRED_CREATE_FIELDS):
        return app_ctx.jsonify({'error': 'Missing required fields'}), 400

    validation = smtp_validation.validate_smtp_config(payload)
    if not validation['is_valid']:
        return _invalid_config_response(app_ctx, validation)

    try:
        password_encrypted = app_ctx.encrypt_smtp_password(str(payload['password']))
    except email_encryption.EncryptionError as e:
        app_ctx.logger.error(f"SMTP password encryption failed: {e}")
        return app_ctx.jsonify({'error': 'Failed to encrypt SMTP password'}), 500

    now_ts = app_ctx.time.time()
    record = _config_fields(payload)
    record.update({
        'password_encrypted': password_encrypted,
        'is_active': bool(payload.get('is_active', False)),
        'test_status': 'never_tested',
        'last_tested': None,
        'created_by': decoded_token.get('uid', ''),
        'created_at': now_ts,
        'updated_at': now_ts,
    })
    try:
        ref = smtp_configs_repo.new_doc_ref(app_ctx.db)
        if record['is_active']:
            smtp_configs_repo.deactivate_others(app_ctx.db, ref.id, now_ts)
        ref.set(record)
    except Exception as e:
        app_ctx.logger.error(f"Error creating SMTP configuration: {e}")
        return app_ctx.jsonify({'error': 'Failed to create SMTP configuration'}), 500

    config = serialize_config(ref.id, record)
    app_ctx.record_audit_event(request, decoded_token, 'smtp_config_created', 'smtp_config', resource_id=ref.id,
                               new_values=config)
    return app_ctx.jsonify({'config': config, 'warnings': validation['warnings']}), 201


def get_config(app_ctx, request, config_id):
    _decoded, error = app_ctx.require_admin(request, 'email:config:read')
    if error:
        return error
    snapshot = smtp_configs_repo.get_doc(app_ctx.db, config_id)
    if not snapshot.exists:
        return app_ctx.jsonify({'error': 'SMTP configuration not found'}), 404
    return app_ctx.jsonify({'config': serialize_config(snapshot.id, snapshot.to_dict())})


def update_config(app_ctx, request, config_id):
    decoded_token, error = app_ctx.require_admin(request, 'email:config:write')
    if error:
        return error
    payload = app_ctx.get_json_body(request)
    if _missing_fields(payload, REQUIRED_UPDATE_FIELDS):
        return app_ctx.jsonify({'error': 'Missing required fields'}), 400

    snapshot = smtp_configs_repo.get_doc(app_ctx.db, config_id)
    if not snapshot.exists:
        return app_ctx.jsonify({'error': 'SMTP configuration not found'}), 404
    existing = snapshot.to_dict() or {}

    new_password = payload.get('password')
    keep_password = new_password in (None, '', HIDDEN_PASSWORD)
    if keep_password:
        try:
            plain_password = app_ctx.decrypt_smtp_password(existing.get('password_encrypted', ''))
        except email_encryption.EncryptionError as e:
            app_ctx.logger.error(f"Could not decrypt stored SMTP password for {config_id}: {e}")
            return app_ctx.jsonify({'error': 'Failed to decrypt existing SMTP password'}), 500
    else:
        plain_password = str(new_password)

    validation = smtp_validation.validate_smtp_config(dict(payload, password=plain_password))
    if not validation['is_valid']:
        return _invalid_config_response(app_ctx, validation)

    now_ts = app_ctx.time.time()
    updates = _config_fields(payload)
    updates.update({
        'is_active': bool(payload.get('is_active', existing.get('is_active', False))),
        'test_status': 'never_tested',
        'last_tested': None,
        'updated_at': now_ts,
    })
    if not keep_password:
        try:
            updates['password_encrypted'] = app_ctx.encrypt_smtp_password(plain_password)
        except email_encryption.EncryptionError as e:
            app_ctx.logger.error(f"SMTP password encryption failed: {e}")
            return app_ctx.jsonify({'error': 'Failed to encrypt SMTP password'}), 500

    try:
        if updates['is_active']:
            smtp_configs_repo.deactivate_others(app_ctx.db, config_id, now_ts)
        smtp_configs_repo.update_doc(app_ctx.db, config_id, updates)
    except Exception as e:
        app_ctx.logger.error(f"Error updating SMTP configuration {config_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to update SMTP configuration'}), 500

    merged = dict(existing)
    merged.update(updates)
    config = serialize_config(config_id, merged)
    old_values = serialize_config(config_id, existing)
    new_values = dict(config)
    if not keep_password:
        new_values['password'] = 'changed'
    app_ctx.record_audit_event(request, decoded_token, 'smtp_config_updated', 'smtp_config', resource_id=config_id,
                               old_values=old_values, new_values=new_values)
    return app_ctx.jsonify({'config': config, 'warnings': validation['warnings']})


def delete_config(app_ctx, request, config_id):
    decoded_token, error = app_ctx.require_admin(request, 'email:config:delete')
    if error:
        return error
    snapshot = smtp_configs_repo.get_doc(app_ctx.db, config_id)
    if not snapshot.exists:
        return app_ctx.jsonify({'error': 'SMTP configuration not found'}), 404
    existing = snapshot.to_dict() or {}
    if existing.get('is_active'):
        return app_ctx.jsonify({
            'error': 'Cannot delete active SMTP configuration. Please activate another configuration first.'
        }), 400
    try:
        smtp_configs_repo.delete_doc(app_ctx.db, config_id)
    except Exception as e:
        app_ctx.logger.error(f"Error deleting SMTP configuration {config_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to delete SMTP configuration'}), 500
    app_ctx.record_audit_event(request, decoded_token, 'smtp_config_deleted', 'smtp_config', resource_id=config_id,
                               old_values=serialize_config(config_id, existing))
    return app_ctx.jsonify({'message': 'SMTP configuration deleted successfully'})


def activate_config(app_ctx, request, config_id):
    decoded_token, error = app_ctx.require_admin(request, 'email:config:write')
    if error:
        return error
    snapshot = smtp_configs_repo.get_doc(app_ctx.db, config_id)
    if not snapshot.exists:
        return app_ctx.jsonify({'error': 'SMTP configuration not found'}), 404
    now_ts = app_ctx.time.time()
    try:
        deactivated = smtp_configs_repo.deactivate_others(app_ctx.db, config_id, now_ts)
        smtp_configs_repo.update_doc(app_ctx.db, config_id, {'is_active': True, 'updated_at': now_ts})
    except Exception as e:
        app_ctx.logger.error(f"Error activating SMTP configuration {config_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to activate SMTP configuration'}), 500
    app_ctx.record_audit_event(request, decoded_token, 'smtp_config_activated', 'smtp_config', resource_id=config_id,
                               details={'deactivated_count': deactivated})
    data = snapshot.to_dict() or {}
    data.update({'is_active': True, 'updated_at': now_ts})
    return app_ctx.jsonify({'message': 'SMTP configuration activated', 'config': serialize_config(config_id, data)})


def _parse_test_request(payload):
    test_type = str(payload.get('testType') or 'connection').strip()
    if test_type not in TEST_TYPES:
        return None, None, 'testType must be connection or email'
    test_email = payload.get('testEmail') if isinstance(payload.get('testEmail'), dict) else {}
    if test_type == 'email':
        if not test_email.get('to') or not test_email.get('subject'):
            return None, None, 'Test email recipient and subject are required'
        if not smtp_tester.is_valid_email(test_email.get('to')):
            return None, None, 'Invalid test email address'
    return test_type, test_email, None


def test_config(app_ctx, request, config_id):
    decoded_token, error = app_ctx.require_admin(request, 'email:test:send')
    if error:
        return error
    test_type, test_email, problem = _parse_test_request(app_ctx.get_json_body(request))
    if problem:
        return app_ctx.jsonify({'error': problem}), 400

    snapshot = smtp_configs_repo.get_doc(app_ctx.db, config_id)
    if not snapshot.exists:
        return app_ctx.jsonify({'error': 'SMTP configuration not found'}), 404
    stored = snapshot.to_dict() or {}
    try:
        password = app_ctx.decrypt_smtp_password(stored.get('password_encrypted', ''))
    except email_encryption.EncryptionError as e:
        app_ctx.logger.error(f"Could not decrypt stored SMTP password for {config_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to decrypt SMTP password'}), 500
    config = dict(stored, password=password)

    if test_type == 'email':
        html = test_email.get('html') or (
            '<p>This is a test email from LinguaFlow confirming your SMTP configuration works.</p>'
        )
        result = app_ctx.send_smtp_email(config, test_email['to'], test_email['subject'], html,
                                         text=test_email.get('text'))
        recipient = test_email['to']
        subject = test_email['subject']
        template_type = 'smtp_test'
    else:
        result = app_ctx.check_smtp_connection(config)
        recipient = stored.get('from_email') or stored.get('username', '')
        subject = 'SMTP connection test'
        template_type = 'smtp_connection_test'

    now_ts = app_ctx.time.time()
    success = bool(result.get('success'))
    details = result.get('details') or {}
    try:
        smtp_configs_repo.update_doc(app_ctx.db, config_id, {
            'last_tested': now_ts,
            'test_status': 'success' if success else 'failed',
        })
        email_logs_repo.add_doc(app_ctx.db, {
            'template_type': template_type,
            'recipient_email': recipient,
            'subject': subject,
            'status': 'sent' if success else 'failed',
            'sent_at': now_ts if success else None,
            'error_message': None if success else result.get('message'),
            'error_code': None if success else details.get('error_code'),
            'is_test': True,
            'smtp_config_id': config_id,
            'metadata': {'test_type': test_type, 'details': details},
            'created_at': now_ts,
        })
    except Exception as e:
        app_ctx.logger.warning(f"Could not record SMTP test result for {config_id}: {e}")

    app_ctx.record_audit_event(request, decoded_token, 'smtp_config_tested', 'smtp_config', resource_id=config_id,
                               details={'test_type': test_type, 'success': success, 'recipient_email': recipient})
    app_ctx.log_event(app_ctx.logging.INFO, 'smtp_test_completed', config_id=config_id, test_type=test_type,
                      success=success)
    return app_ctx.jsonify({
        'success': success,
        'message': result.get('message', ''),
        'details': details,
        'testType': test_type,
    })


def list_providers(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:config:read')
    if error:
        return error
    providers = [
        {
            'id': provider,
            'help_text': smtp_validation.get_provider_help_text(provider),
            'defaults': smtp_validation.get_provider_defaults(provider),
        }
        for provider in smtp_validation.SMTP_PROVIDERS
    ]
    return app_ctx.jsonify({'providers': providers})
