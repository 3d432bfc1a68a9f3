from flask import Blueprint

smtp_bp = Blueprint('smtp_config_api', __name__)


@smtp_bp.route('/api/admin/email/smtp-config', methods=['GET'])
def list_smtp_configs():
    from linguaflow_admin import runtime

    return runtime.smtp_config_list_impl()


@smtp_bp.route('/api/admin/email/smtp-config', methods=['POST'])
def create_smtp_config():
    from linguaflow_admin import runtime

    return runtime.smtp_config_create_impl()


@smtp_bp.route('/api/admin/email/smtp-config/providers', methods=['GET'])
def smtp_providers():
    from linguaflow_admin import runtime

    return runtime.smtp_providers_impl()


@smtp_bp.route('/api/admin/email/smtp-config/<config_id>', methods=['GET'])
def get_smtp_config(config_id):
    from linguaflow_admin import runtime

    return runtime.smtp_config_get_impl(config_id)


@smtp_bp.route('/api/admin/email/smtp-config/<config_id>', methods=['PUT'])
def update_smtp_config(config_id):
    from linguaflow_admin import runtime

    return runtime.smtp_config_update_impl(config_id)


@smtp_bp.route('/api/admin/email/smtp-config/<config_id>', methods=['DELETE'])
def delete_smtp_config(config_id):
    from linguaflow_admin import runtime

    return runtime.smtp_config_delete_impl(config_id)


@smtp_bp.route('/api/admin/email/smtp-config/<config_id>/activate', methods=['POST'])
def activate_smtp_config(config_id):
    from linguaflow_admin import runtime

    return runtime.smtp_config_activate_impl(config_id)


@smtp_bp.route('/api/admin/email/smtp-config/<config_id>/test', methods=['POST'])
def test_smtp_config(config_id):
    from linguaflow_admin import runtime

    return runtime.smtp_config_test_impl(config_id)
