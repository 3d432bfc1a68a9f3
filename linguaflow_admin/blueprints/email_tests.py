from flask import Blueprint

email_tests_bp = Blueprint('email_tests_api', __name__)


@email_tests_bp.route('/api/admin/email/test', methods=['POST'])
def send_test_email():
    from linguaflow_admin import runtime

    return runtime.test_email_send_impl()


@email_tests_bp.route('/api/admin/email/test/<test_id>/status', methods=['GET'])
def test_email_status(test_id):
    from linguaflow_admin import runtime

    return runtime.test_email_status_impl(test_id)


@email_tests_bp.route('/api/admin/email/test/<test_id>/status', methods=['PUT'])
def update_test_email_status(test_id):
    from linguaflow_admin import runtime

    return runtime.test_email_status_update_impl(test_id)


@email_tests_bp.route('/api/admin/email/logs/export', methods=['GET'])
def export_email_logs():
    from linguaflow_admin import runtime

    return runtime.email_logs_export_impl()
