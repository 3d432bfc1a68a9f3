from flask import Blueprint

gdpr_bp = Blueprint('gdpr_api', __name__)


@gdpr_bp.route('/api/admin/email/gdpr', methods=['GET'])
def compliance_report():
    from linguaflow_admin import runtime

    return runtime.gdpr_report_impl()


@gdpr_bp.route('/api/admin/email/gdpr', methods=['POST'])
def gdpr_action():
    from linguaflow_admin import runtime

    return runtime.gdpr_action_impl()


@gdpr_bp.route('/api/gdpr/consent', methods=['GET'])
def get_consent():
    from linguaflow_admin import runtime

    return runtime.gdpr_consent_get_impl()


@gdpr_bp.route('/api/gdpr/consent', methods=['POST'])
def record_consent():
    from linguaflow_admin import runtime

    return runtime.gdpr_consent_record_impl()
