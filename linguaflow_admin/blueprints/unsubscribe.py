from flask import Blueprint

unsubscribe_bp = Blueprint('unsubscribe_api', __name__)


@unsubscribe_bp.route('/api/unsubscribe', methods=['POST'])
def unsubscribe():
    from linguaflow_admin import runtime

    return runtime.unsubscribe_impl()


@unsubscribe_bp.route('/api/unsubscribe', methods=['GET'])
def validate_unsubscribe_token():
    from linguaflow_admin import runtime

    return runtime.unsubscribe_validate_impl()


@unsubscribe_bp.route('/api/email-preferences', methods=['GET'])
def get_email_preferences():
    from linguaflow_admin import runtime

    return runtime.email_preferences_get_impl()


@unsubscribe_bp.route('/api/email-preferences', methods=['PUT'])
def update_email_preferences():
    from linguaflow_admin import runtime

    return runtime.email_preferences_update_impl()


@unsubscribe_bp.route('/api/admin/email/unsubscribe/statistics', methods=['GET'])
def unsubscribe_statistics():
    from linguaflow_admin import runtime

    return runtime.unsubscribe_statistics_impl()
