"""Business logic handlers for vocabulary session persistence APIs."""

from linguaflow_admin.services import vocabulary_service


def _require_user(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return None, (app_ctx.jsonify({'error': 'Unauthorized'}), 401)
    return decoded_token, None


def _can_access_session(decoded_token, session):
    uid = decoded_token.get('uid', '')
    return bool(uid) and uid in {session.get('student_id'), session.get('tutor_id')}


def _load_owned_session(app_ctx, decoded_token, session_id):
    session = vocabulary_service.load_session(app_ctx.db, session_id)
    if session is None or not _can_access_session(decoded_token, session):
        return None, (app_ctx.jsonify({'error': 'Session not found'}), 404)
    return session, None


def _require_self(app_ctx, decoded_token, student_id):
    if decoded_token.get('uid', '') != student_id:
        return app_ctx.jsonify({'error': 'Forbidden'}), 403
    return None


def save_session(app_ctx, request):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    session = app_ctx.get_json_body(request)
    if not session.get('id'):
        session['id'] = vocabulary_service.generate_session_id()
    if session.get('student_id') and not _can_access_session(decoded_token, session):
        return app_ctx.jsonify({'error': 'Forbidden'}), 403
    existing = vocabulary_service.load_session(app_ctx.db, str(session['id']))
    if existing is not None and not _can_access_session(decoded_token, existing):
        return app_ctx.jsonify({'error': 'Forbidden'}), 403
    try:
        saved = vocabulary_service.save_session(app_ctx.db, session)
    except vocabulary_service.VocabularySessionError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    except Exception as e:
        app_ctx.logger.error(f"Error saving vocabulary session {session.get('id')}: {e}")
        return app_ctx.jsonify({'error': 'Failed to save vocabulary session'}), 500
    return app_ctx.jsonify({'session': saved})


def get_session(app_ctx, request, session_id):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    session, error = _load_owned_session(app_ctx, decoded_token, session_id)
    if error:
        return error
    return app_ctx.jsonify({'session': session})


def recover_session(app_ctx, request):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    student_id = (request.args.get('student_id', '') or '').strip()
    if not student_id:
        return app_ctx.jsonify({'error': 'student_id is required'}), 400
    forbidden = _require_self(app_ctx, decoded_token, student_id)
    if forbidden:
        return forbidden
    return app_ctx.jsonify({'session': vocabulary_service.recover_session(app_ctx.db, student_id)})


def end_session(app_ctx, request, session_id):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    _session, error = _load_owned_session(app_ctx, decoded_token, session_id)
    if error:
        return error
    vocabulary_service.end_session(app_ctx.db, session_id)
    return app_ctx.jsonify({'ok': True, 'session_id': session_id})


def get_progress(app_ctx, request, student_id):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    forbidden = _require_self(app_ctx, decoded_token, student_id)
    if forbidden:
        return forbidden
    return app_ctx.jsonify({'progress': vocabulary_service.get_progress(app_ctx.db, student_id)})


def save_progress(app_ctx, request, student_id):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    forbidden = _require_self(app_ctx, decoded_token, student_id)
    if forbidden:
        return forbidden
    try:
        progress = vocabulary_service.save_progress(app_ctx.db, student_id, app_ctx.get_json_body(request))
    except vocabulary_service.VocabularySessionError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    except Exception as e:
        app_ctx.logger.error(f"Error saving vocabulary progress for {student_id}: {e}")
        return app_ctx.jsonify({'error': 'Failed to save vocabulary progress'}), 500
    return app_ctx.jsonify({'progress': progress})
