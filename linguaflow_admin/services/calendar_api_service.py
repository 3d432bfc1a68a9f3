"""Business logic handlers for tutor Google Calendar linking."""

from linguaflow_admin.services import google_calendar_service


def _require_user(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return None, (app_ctx.jsonify({'error': 'Unauthorized'}), 401)
    return decoded_token, None


def _optional_float(value):
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def oauth_url(app_ctx, request):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    try:
        state = google_calendar_service.create_oauth_state(app_ctx.db, decoded_token.get('uid', ''))
        url = google_calendar_service.build_oauth_url(
            app_ctx.GOOGLE_CLIENT_ID,
            app_ctx.GOOGLE_REDIRECT_URI,
            state,
            login_hint=decoded_token.get('email'),
        )
    except google_calendar_service.OAuthError as e:
        return app_ctx.jsonify({'error': str(e)}), 503
    return app_ctx.jsonify({'url': url})


def oauth_callback(app_ctx, request):
    if request.args.get('error'):
        return app_ctx.jsonify({'error': f"Google authorization failed: {request.args.get('error')}"}), 400
    code = (request.args.get('code', '') or '').strip()
    state = (request.args.get('state', '') or '').strip()
    if not code or not state:
        return app_ctx.jsonify({'error': 'Missing authorization code or state'}), 400
    try:
        tutor_id = google_calendar_service.consume_oauth_state(app_ctx.db, state)
        token_data = google_calendar_service.exchange_code_for_tokens(
            code,
            app_ctx.GOOGLE_CLIENT_ID,
            app_ctx.GOOGLE_CLIENT_SECRET,
            app_ctx.GOOGLE_REDIRECT_URI,
            http=app_ctx.google_http,
        )
        google_calendar_service.store_tokens(app_ctx.db, tutor_id, token_data)
    except google_calendar_service.OAuthError as e:
        app_ctx.logger.info(f"Google Calendar OAuth callback rejected: {e}")
        return app_ctx.jsonify({'error': str(e)}), 400
    except Exception as e:
        app_ctx.logger.error(f"Google Calendar OAuth callback failed: {e}")
        return app_ctx.jsonify({'error': 'Failed to connect Google Calendar'}), 500
    app_ctx.log_event(app_ctx.logging.INFO, 'calendar_connected', tutor_id=tutor_id)
    return app_ctx.jsonify({'connected': True, 'email': token_data.get('email')})


def connection_status(app_ctx, request):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    tutor_id = decoded_token.get('uid', '')
    status = google_calendar_service.get_connection_status(app_ctx.db, tutor_id)
    if status.get('connected'):
        try:
            google_calendar_service.get_valid_access_token(
                app_ctx.db,
                tutor_id,
                app_ctx.GOOGLE_CLIENT_ID,
                app_ctx.GOOGLE_CLIENT_SECRET,
                http=app_ctx.google_http,
            )
            status['token_valid'] = True
        except google_calendar_service.OAuthError as e:
            app_ctx.logger.info(f"Google Calendar token refresh failed for {tutor_id}: {e}")
            status['token_valid'] = False
    return app_ctx.jsonify(status)


def list_events(app_ctx, request):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    tutor_id = decoded_token.get('uid', '')
    if not google_calendar_service.is_connected(app_ctx.db, tutor_id):
        return app_ctx.jsonify({'error': 'Google Calendar is not connected'}), 404
    events = google_calendar_service.get_calendar_events(
        app_ctx.db,
        tutor_id,
        _optional_float(request.args.get('start')),
        _optional_float(request.args.get('end')),
    )
    return app_ctx.jsonify({'events': events})


def disconnect(app_ctx, request):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    tutor_id = decoded_token.get('uid', '')
    try:
        result = google_calendar_service.disconnect(app_ctx.db, tutor_id, http=app_ctx.google_http)
    except Exception as e:
        app_ctx.logger.error(f"Error disconnecting Google Calendar for {tutor_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to disconnect Google Calendar'}), 500
    app_ctx.log_event(app_ctx.logging.INFO, 'calendar_disconnected', tutor_id=tutor_id,
                      deleted_events=result['deleted_events'])
    return app_ctx.jsonify(result)
