from flask import Blueprint

calendar_bp = Blueprint('calendar_api', __name__)


@calendar_bp.route('/api/calendar/oauth-url', methods=['GET'])
def calendar_oauth_url():
    from linguaflow_admin import runtime

    return runtime.calendar_oauth_url_impl()


@calendar_bp.route('/api/calendar/oauth/callback', methods=['GET'])
def calendar_oauth_callback():
    from linguaflow_admin import runtime

    return runtime.calendar_oauth_callback_impl()


@calendar_bp.route('/api/calendar/status', methods=['GET'])
def calendar_status():
    from linguaflow_admin import runtime

    return runtime.calendar_status_impl()


@calendar_bp.route('/api/calendar/events', methods=['GET'])
def calendar_events():
    from linguaflow_admin import runtime

    return runtime.calendar_events_impl()


@calendar_bp.route('/api/calendar/disconnect', methods=['POST'])
def calendar_disconnect():
    from linguaflow_admin import runtime

    return runtime.calendar_disconnect_impl()
