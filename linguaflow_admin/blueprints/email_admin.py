from flask import Blueprint

email_admin_bp = Blueprint('email_admin_api', __name__)


@email_admin_bp.route('/api/admin/email/send', methods=['POST'])
def send_email():
    from linguaflow_admin import runtime

    return runtime.email_send_impl()


@email_admin_bp.route('/api/admin/email/analytics', methods=['GET'])
def email_analytics():
    from linguaflow_admin import runtime

    return runtime.email_analytics_impl()


@email_admin_bp.route('/api/admin/email/health', methods=['GET'])
def email_health():
    from linguaflow_admin import runtime

    return runtime.email_health_impl()
