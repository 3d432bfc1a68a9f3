from flask import Blueprint

discussion_bp = Blueprint('discussion_api', __name__)


@discussion_bp.route('/api/discussion-topics', methods=['GET'])
def list_topics():
    from linguaflow_admin import runtime

    return runtime.discussion_topics_list_impl()


@discussion_bp.route('/api/discussion-topics', methods=['POST'])
def create_topic():
    from linguaflow_admin import runtime

    return runtime.discussion_topics_create_impl()


@discussion_bp.route('/api/discussion-topics/predefined', methods=['GET'])
def predefined_topics():
    from linguaflow_admin import runtime

    return runtime.discussion_topics_predefined_impl()


@discussion_bp.route('/api/discussion-topics/<topic_id>', methods=['GET'])
def get_topic(topic_id):
    from linguaflow_admin import runtime

    return runtime.discussion_topic_get_impl(topic_id)


@discussion_bp.route('/api/discussion-topics/<topic_id>', methods=['PUT'])
def update_topic(topic_id):
    from linguaflow_admin import runtime

    return runtime.discussion_topic_update_impl(topic_id)


@discussion_bp.route('/api/discussion-topics/<topic_id>', methods=['DELETE'])
def delete_topic(topic_id):
    from linguaflow_admin import runtime

    return runtime.discussion_topic_delete_impl(topic_id)
