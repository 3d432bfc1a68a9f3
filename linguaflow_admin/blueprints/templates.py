from flask import Blueprint

templates_bp = Blueprint('email_templates_api', __name__)


@templates_bp.route('/api/admin/email/templates', methods=['GET'])
def list_templates():
    from linguaflow_admin import runtime

    return runtime.templates_list_impl()


@templates_bp.route('/api/admin/email/templates', methods=['POST'])
def create_template():
    from linguaflow_admin import runtime

    return runtime.templates_create_impl()


@templates_bp.route('/api/admin/email/templates/bulk', methods=['GET'])
def bulk_operations():
    from linguaflow_admin import runtime

    return runtime.templates_bulk_operations_impl()


@templates_bp.route('/api/admin/email/templates/bulk', methods=['POST'])
def bulk_operation():
    from linguaflow_admin import runtime

    return runtime.templates_bulk_impl()


@templates_bp.route('/api/admin/email/templates/<template_id>', methods=['GET'])
def get_template(template_id):
    from linguaflow_admin import runtime

    return runtime.template_get_impl(template_id)


@templates_bp.route('/api/admin/email/templates/<template_id>', methods=['PUT'])
def update_template(template_id):
    from linguaflow_admin import runtime

    return runtime.template_update_impl(template_id)


@templates_bp.route('/api/admin/email/templates/<template_id>', methods=['DELETE'])
def delete_template(template_id):
    from linguaflow_admin import runtime

    return runtime.template_delete_impl(template_id)


@templates_bp.route('/api/admin/email/templates/<template_id>/history', methods=['GET'])
def template_history(template_id):
    from linguaflow_admin import runtime

    return runtime.template_history_impl(template_id)


@templates_bp.route('/api/admin/email/templates/<template_id>/history', methods=['POST'])
def rollback_template(template_id):
    from linguaflow_admin import runtime

    return runtime.template_rollback_impl(template_id)


@templates_bp.route('/api/admin/email/templates/<template_id>/preview', methods=['GET', 'POST'])
def preview_template(template_id):
    from linguaflow_admin import runtime

    return runtime.template_preview_impl(template_id)
