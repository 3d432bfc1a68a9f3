from flask import Blueprint

audit_bp = Blueprint('audit_api', __name__)


@audit_bp.route('/api/admin/email/audit-logs', methods=['GET'])
def list_audit_logs():
    from linguaflow_admin import runtime

    return runtime.audit_logs_list_impl()


@audit_bp.route('/api/admin/email/audit-logs', methods=['POST'])
def export_audit_logs():
    from linguaflow_admin import runtime

    return runtime.audit_logs_export_impl()


@audit_bp.route('/api/admin/email/audit-logs/statistics', methods=['GET'])
def audit_statistics():
    from linguaflow_admin import runtime

    return runtime.audit_logs_statistics_impl()
