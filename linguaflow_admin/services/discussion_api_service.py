"""Business logic handlers for discussion topic APIs.

Topics belong to a tutor/student pair; only those two users can see or change them.
"""

from linguaflow_admin.services import discussion_service


def _require_user(app_ctx, request):
    decoded_token = app_ctx.verify_firebase_token(request)
    if not decoded_token:
        return None, (app_ctx.jsonify({'error': 'Unauthorized'}), 401)
    return decoded_token, None


def _is_participant(decoded_token, student_id, tutor_id):
    uid = decoded_token.get('uid', '')
    return bool(uid) and uid in {student_id, tutor_id}


def _load_owned_topic(app_ctx, decoded_token, topic_id):
    """Return ``(topic, None)``; topics owned by other users read as missing."""
    topic = discussion_service.get_topic_by_id(app_ctx.db, topic_id)
    if topic is None or not _is_participant(decoded_token, topic.get('student_id'), topic.get('tutor_id')):
        return None, (app_ctx.jsonify({'error': 'Topic not found'}), 404)
    return topic, None


def list_topics(app_ctx, request):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    student_id = (request.args.get('student_id', '') or '').strip()
    tutor_id = (request.args.get('tutor_id', '') or '').strip()
    level = (request.args.get('level', '') or '').strip()
    search = (request.args.get('search', '') or '').strip()
    if student_id and tutor_id and not _is_participant(decoded_token, student_id, tutor_id):
        return app_ctx.jsonify({'error': 'Forbidden'}), 403
    try:
        if search:
            topics = discussion_service.search_topics(app_ctx.db, student_id, tutor_id, search)
        elif level:
            topics = discussion_service.get_topics_by_level(app_ctx.db, student_id, tutor_id, level)
        else:
            topics = discussion_service.get_topics_by_student(app_ctx.db, student_id, tutor_id)
    except discussion_service.TopicValidationError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    return app_ctx.jsonify({'topics': topics})


def create_topic(app_ctx, request):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    payload = app_ctx.get_json_body(request)
    student_id = str(payload.get('student_id') or '').strip()
    tutor_id = str(payload.get('tutor_id') or '').strip()
    title = payload.get('title')
    if student_id and tutor_id and not _is_participant(decoded_token, student_id, tutor_id):
        return app_ctx.jsonify({'error': 'Forbidden'}), 403
    try:
        if discussion_service.topic_exists(app_ctx.db, student_id, tutor_id, title):
            return app_ctx.jsonify({'error': 'A topic with this title already exists'}), 409
        topic = discussion_service.create_custom_topic(
            app_ctx.db,
            student_id,
            tutor_id,
            title,
            level=payload.get('level') or 'intermediate',
            description=payload.get('description'),
        )
    except discussion_service.TopicValidationError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    return app_ctx.jsonify({'topic': topic}), 201


def get_topic(app_ctx, request, topic_id):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    topic, error = _load_owned_topic(app_ctx, decoded_token, topic_id)
    if error:
        return error
    return app_ctx.jsonify({'topic': topic})


def update_topic(app_ctx, request, topic_id):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    _topic, error = _load_owned_topic(app_ctx, decoded_token, topic_id)
    if error:
        return error
    try:
        topic = discussion_service.update_topic(app_ctx.db, topic_id, app_ctx.get_json_body(request))
    except discussion_service.TopicValidationError as e:
        return app_ctx.jsonify({'error': str(e)}), 400
    return app_ctx.jsonify({'topic': topic})


def delete_topic(app_ctx, request, topic_id):
    decoded_token, error = _require_user(app_ctx, request)
    if error:
        return error
    _topic, error = _load_owned_topic(app_ctx, decoded_token, topic_id)
    if error:
        return error
    discussion_service.delete_topic(app_ctx.db, topic_id)
    return app_ctx.jsonify({'ok': True})


def predefined_topics(app_ctx, request):
    level = (request.args.get('level', '') or '').strip() or 'intermediate'
    return app_ctx.jsonify({'topics': discussion_service.get_predefined_topics(level)})
