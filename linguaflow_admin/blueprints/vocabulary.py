from flask import Blueprint

vocabulary_bp = Blueprint('vocabulary_api', __name__)


@vocabulary_bp.route('/api/vocabulary/sessions', methods=['POST'])
def save_session():
    from linguaflow_admin import runtime

    return runtime.vocabulary_session_save_impl()


@vocabulary_bp.route('/api/vocabulary/sessions/recover', methods=['GET'])
def recover_session():
    from linguaflow_admin import runtime

    return runtime.vocabulary_session_recover_impl()


@vocabulary_bp.route('/api/vocabulary/sessions/<session_id>', methods=['GET'])
def get_session(session_id):
    from linguaflow_admin import runtime

    return runtime.vocabulary_session_get_impl(session_id)


@vocabulary_bp.route('/api/vocabulary/sessions/<session_id>/end', methods=['POST'])
def end_session(session_id):
    from linguaflow_admin import runtime

    return runtime.vocabulary_session_end_impl(session_id)


@vocabulary_bp.route('/api/vocabulary/progress/<student_id>', methods=['GET'])
def get_progress(student_id):
    from linguaflow_admin import runtime

    return runtime.vocabulary_progress_get_impl(student_id)


@vocabulary_bp.route('/api/vocabulary/progress/<student_id>', methods=['PUT'])
def save_progress(student_id):
    from linguaflow_admin import runtime

    return runtime.vocabulary_progress_update_impl(student_id)
