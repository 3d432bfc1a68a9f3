"""Business logic handlers for GDPR admin tools and user consent APIs."""

from linguaflow_admin.services import gdpr_service

ACTION_PERMISSIONS = {
    'validate-template': 'email:template:read',
    'export-user-data': 'email:logs:export',
    'request-deletion': 'system:admin',
    'delete-user-data': 'system:admin',
    'apply-retention': 'system:admin',
}


def compliance_report(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:analytics:read')
    if error:
        return error
    try:
        report = gdpr_service.generate_compliance_report(app_ctx.db)
    except Exception as e:
        app_ctx.logger.error(f"Error generating GDPR compliance report: {e}")
        return app_ctx.jsonify({'error': 'Failed to generate compliance report'}), 500
    return app_ctx.jsonify({'report': report})


def run_action(app_ctx, request):
    payload = app_ctx.get_json_body(request)
    action = str(payload.get('action') or '').strip()
    if action not in ACTION_PERMISSIONS:
        return app_ctx.jsonify({'error': 'Invalid action'}), 400
    decoded_token, error = app_ctx.require_admin(request, ACTION_PERMISSIONS[action])
    if error:
        return error

    if action == 'validate-template':
        content = payload.get('templateContent')
        if not isinstance(content, str) or not content.strip():
            return app_ctx.jsonify({'error': 'Template content is required'}), 400
        result = gdpr_service.validate_template_compliance(content, str(payload.get('templateType') or ''))
        return app_ctx.jsonify({'validation': result})

    if action == 'apply-retention':
        result = gdpr_service.apply_retention_policies(app_ctx.db)
        app_ctx.record_audit_event(request, decoded_token, 'data_purged', 'gdpr', details=result)
        return app_ctx.jsonify(result)

    user_id = str(payload.get('userId') or '').strip()
    if not user_id:
        return app_ctx.jsonify({'error': 'User ID is required'}), 400

    if action == 'export-user-data':
        try:
            export = gdpr_service.export_user_data(app_ctx.db, user_id)
        except Exception as e:
            app_ctx.logger.error(f"Error exporting GDPR data for {user_id}: {e}")
            return app_ctx.jsonify({'error': 'Failed to export user data'}), 500
        export['meta']['exported_by'] = decoded_token.get('uid', '')
        app_ctx.record_audit_event(request, decoded_token, 'data_exported', 'gdpr', resource_id=user_id,
                                   details={'data_types': export['meta']['data_types']})
        return app_ctx.jsonify(export)

    if action == 'request-deletion':
        token, request_doc = gdpr_service.request_data_deletion(app_ctx.db, user_id, decoded_token.get('uid', ''))
        app_ctx.record_audit_event(request, decoded_token, 'gdpr_deletion', 'gdpr', resource_id=user_id,
                                   details={'stage': 'requested', 'expires_at': request_doc['expires_at']})
        return app_ctx.jsonify({'token': token, 'expiresAt': request_doc['expires_at']}), 201

    token = str(payload.get('token') or '').strip()
    if not token:
        return app_ctx.jsonify({'error': 'Verification token is required'}), 400
    result = gdpr_service.delete_user_data(app_ctx.db, user_id, token)
    if not result['success'] and not result['deleted_records']:
        return app_ctx.jsonify({'error': result['errors'][0] if result['errors'] else 'Deletion failed'}), 400
    app_ctx.record_audit_event(request, decoded_token, 'gdpr_deletion', 'gdpr', resource_id=user_id,
                               details={'stage': 'completed', 'deleted_records': result['deleted_records']})
    return app_ctx.jsonify(result), (200 if result['success'] else 500)


def get_consent(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return app_ctx.jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token.get('uid', '')
    purpose = (request.args.get('purpose', '') or '').strip()
    if purpose:
        return app_ctx.jsonify({
            'purpose': purpose,
            'granted': gdpr_service.has_consent(app_ctx.db, uid, purpose),
        })
    return app_ctx.jsonify({'history': gdpr_service.get_consent_history(app_ctx.db, uid)})


def record_consent(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return app_ctx.jsonify({'error': 'Unauthorized'}), 401
    payload = app_ctx.get_json_body(request)
    granted = payload.get('granted')
    if not isinstance(granted, bool):
        return app_ctx.jsonify({'error': 'granted must be true or false'}), 400
    try:
        record = gdpr_service.record_consent(
            app_ctx.db,
            decoded_token.get('uid', ''),
            str(payload.get('purpose') or '').strip(),
            granted,
            legal_basis=str(payload.get('legalBasis') or 'consent').strip(),
        )
    except gdpr_service.GdprError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    app_ctx.record_audit_event(request, decoded_token, 'consent_recorded', 'gdpr', resource_id=record['id'],
                               new_values={'purpose': record['purpose'], 'granted': record['granted'],
                                           'legal_basis': record['legal_basis']})
    return app_ctx.jsonify({'consent': record}), 201
