"""Business logic handlers for unsubscribe links and email preferences."""

from linguaflow_admin.services import rate_limit_service, unsubscribe_service


def _check_public_rate_limit(app_ctx, request):
    allowed, retry_after = app_ctx.check_rate_limit(
        key=rate_limit_service.build_key('unsubscribe', app_ctx.get_client_ip(request)),
        limit=app_ctx.PUBLIC_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=app_ctx.PUBLIC_RATE_LIMIT_WINDOW_SECONDS,
    )
    if allowed:
        return None
    return app_ctx.build_rate_limited_response('Too many unsubscribe requests. Please wait and try again.', retry_after)


def unsubscribe(app_ctx, request):
    limited = _check_public_rate_limit(app_ctx, request)
    if limited is not None:
        return limited
    payload = app_ctx.get_json_body(request)
    token = str(payload.get('token') or '').strip()
    email_type = str(payload.get('type') or '').strip() or None
    if not token:
        return app_ctx.jsonify({'error': 'Unsubscribe token is required'}), 400
    try:
        result = unsubscribe_service.process_unsubscribe(app_ctx.db, token, email_type=email_type)
    except unsubscribe_service.UnsubscribeError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    except Exception as e:
        app_ctx.logger.error(f"Error processing unsubscribe: {e}")
        return app_ctx.jsonify({'error': 'Failed to process unsubscribe request'}), 500
    app_ctx.log_event(app_ctx.logging.INFO, 'unsubscribe_processed', email_type=email_type or 'all')
    return app_ctx.jsonify(result)


def validate_token(app_ctx, request):
    limited = _check_public_rate_limit(app_ctx, request)
    if limited is not None:
        return limited
    token = (request.args.get('token', '') or '').strip()
    try:
        record = unsubscribe_service.validate_unsubscribe_token(app_ctx.db, token)
    except unsubscribe_service.UnsubscribeError as e:
        return app_ctx.jsonify({'valid': False, 'error': str(e)}), 400
    return app_ctx.jsonify({
        'valid': True,
        'email': record.get('email', ''),
        'emailType': record.get('email_type') or request.args.get('type') or None,
        'expiresAt': record.get('expires_at'),
    })


def get_preferences(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return app_ctx.jsonify({'error': 'Unauthorized'}), 401
    uid = decoded_token.get('uid', '')
    preferences = unsubscribe_service.get_user_preferences(app_ctx.db, uid)
    if preferences is None:
        preferences = unsubscribe_service.default_preferences(uid, decoded_token.get('email', ''))
    return app_ctx.jsonify({'preferences': preferences})


def update_preferences(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return app_ctx.jsonify({'error': 'Unauthorized'}), 401
    try:
        preferences = unsubscribe_service.update_user_preferences(
            app_ctx.db,
            decoded_token.get('uid', ''),
            app_ctx.get_json_body(request),
            email=decoded_token.get('email', ''),
        )
    except unsubscribe_service.UnsubscribeError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    return app_ctx.jsonify({'preferences': preferences})


def statistics(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:analytics:read')
    if error:
        return error
    try:
        stats = unsubscribe_service.get_unsubscribe_statistics(app_ctx.db)
    except Exception as e:
        app_ctx.logger.error(f"Error computing unsubscribe statistics: {e}")
        return app_ctx.jsonify({'error': 'Failed to compute unsubscribe statistics'}), 500
    return app_ctx.jsonify({'statistics': stats})
