"""Business logic handlers for audit log admin APIs."""

from datetime import datetime, timezone

from linguaflow_admin.services import audit_service

EXPORT_FORMATS = {'csv': 'text/csv', 'json': 'application/json'}


def _parse_ts(value):
    if value in (None, ''):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def parse_filter(source):
    source = source or {}
    return {
        'user_id': (str(source.get('userId') or source.get('user_id') or '').strip() or None),
        'action': (str(source.get('action') or '').strip() or None),
        'resource': (str(source.get('resource') or '').strip() or None),
        'start_ts': _parse_ts(source.get('startDate') or source.get('start_date')),
        'end_ts': _parse_ts(source.get('endDate') or source.get('end_date')),
    }


def _safe_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def list_audit_logs(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:logs:read')
    if error:
        return error
    filters = parse_filter(request.args)
    limit = max(1, min(_safe_int(request.args.get('limit'), 100), audit_service.MAX_QUERY_LIMIT))
    offset = max(0, _safe_int(request.args.get('offset'), 0))
    try:
        logs, total = audit_service.get_audit_logs(app_ctx.db, limit=limit, offset=offset, **filters)
    except Exception as e:
        app_ctx.logger.error(f"Error fetching audit logs: {e}")
        return app_ctx.jsonify({'error': 'Failed to fetch audit logs'}), 500
    return app_ctx.jsonify({
        'logs': logs,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'hasMore': offset + len(logs) < total,
        },
        'filter': filters,
    })


def export_audit_logs(app_ctx, request):
    decoded_token, error = app_ctx.require_admin(request, 'email:logs:export')
    if error:
        return error
    payload = app_ctx.get_json_body(request)
    fmt = str(payload.get('format') or 'csv').strip().lower()
    if fmt not in EXPORT_FORMATS:
        return app_ctx.jsonify({'error': 'Export format must be csv or json'}), 400
    filters = parse_filter(payload.get('filter') if isinstance(payload.get('filter'), dict) else {})
    try:
        logs = audit_service.get_logs_for_export(app_ctx.db, app_ctx.AUDIT_EXPORT_MAX_ROWS, **filters)
        body = audit_service.export_audit_logs(logs, fmt)
    except Exception as e:
        app_ctx.logger.error(f"Error exporting audit logs: {e}")
        return app_ctx.jsonify({'error': 'Failed to export audit logs'}), 500

    app_ctx.record_audit_event(request, decoded_token, 'data_exported', 'export', details={
        'format': fmt,
        'record_count': len(logs),
        'filter': filters,
    })
    day = datetime.fromtimestamp(app_ctx.time.time(), tz=timezone.utc).strftime('%Y-%m-%d')
    response = app_ctx.Response(body, mimetype=EXPORT_FORMATS[fmt])
    response.headers['Content-Disposition'] = f'attachment; filename=audit-logs-{day}.{fmt}'
    return response


def audit_statistics(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:analytics:read')
    if error:
        return error
    filters = parse_filter(request.args)
    if filters['start_ts'] is None:
        _window_key, window_seconds = app_ctx.get_admin_window(request.args.get('window', '30d'))
        filters['start_ts'] = app_ctx.time.time() - window_seconds
    try:
        stats = audit_service.get_audit_statistics(app_ctx.db, filters['start_ts'], filters['end_ts'])
    except Exception as e:
        app_ctx.logger.error(f"Error computing audit statistics: {e}")
        return app_ctx.jsonify({'error': 'Failed to compute audit statistics'}), 500
    return app_ctx.jsonify({'statistics': stats, 'start': filters['start_ts'], 'end': filters['end_ts']})
