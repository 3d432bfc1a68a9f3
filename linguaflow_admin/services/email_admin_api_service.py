"""Business logic handlers for production sends, delivery analytics and email health."""

from linguaflow_admin.services import email_analytics_service, email_delivery_service

TRUE_VALUES = {'1', 'true', 'yes'}


def send_email(app_ctx, request):
    decoded_token, error = app_ctx.require_admin(request, 'email:test:send')
    if error:
        return error
    payload = app_ctx.get_json_body(request)
    template_data = payload.get('templateData') if isinstance(payload.get('templateData'), dict) else {}
    user_id = str(payload.get('userId') or '').strip() or None
    try:
        result = email_delivery_service.deliver_email(
            app_ctx,
            payload.get('templateType'),
            payload.get('recipientEmail'),
            template_data=template_data,
            user_id=user_id,
            actor_id=(decoded_token or {}).get('uid', 'system'),
        )
    except email_delivery_service.DeliveryRejected as e:
        return app_ctx.jsonify({'success': False, 'error': e.message}), e.status_code
    except Exception as e:
        app_ctx.logger.error(f"Error sending email: {e}")
        return app_ctx.jsonify({'success': False, 'error': 'Failed to send email'}), 500
    body = {
        'success': result['status'] == 'sent',
        'logId': result['log_id'],
        'status': result['status'],
        'message': result['message'],
        'messageId': result['message_id'],
        'nextRetryAt': result['next_retry_at'],
    }
    return app_ctx.jsonify(body), 200 if body['success'] else 500


def email_analytics(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:analytics:read')
    if error:
        return error
    period_key, period_seconds = email_analytics_service.resolve_period(request.args.get('period'))
    if period_key is None:
        allowed = ', '.join(email_analytics_service.ANALYTICS_PERIODS)
        return app_ctx.jsonify({'success': False, 'error': f'period must be one of: {allowed}'}), 400
    try:
        data = email_analytics_service.get_email_analytics(
            app_ctx.db,
            period_seconds,
            app_ctx.time.time(),
            template_type=(request.args.get('type') or '').strip() or None,
            smtp_config_id=(request.args.get('provider') or '').strip() or None,
            include_tests=str(request.args.get('includeTests', '')).strip().lower() in TRUE_VALUES,
        )
    except Exception as e:
        app_ctx.logger.error(f"Error fetching email analytics: {e}")
        return app_ctx.jsonify({'success': False, 'error': 'Failed to fetch analytics data'}), 500
    data['period'] = period_key
    return app_ctx.jsonify({'success': True, 'data': data})


def email_health(app_ctx, request):
    _decoded, error = app_ctx.require_admin(request, 'email:analytics:read')
    if error:
        return error
    report = email_analytics_service.run_health_checks(app_ctx.db, app_ctx.time.time(), logger=app_ctx.logger)
    app_ctx.log_event(app_ctx.logging.INFO, 'email_health_check', status=report['status'],
                      failed_checks=report['summary']['failed_checks'])
    return app_ctx.jsonify(report), 200 if report['status'] != 'critical' else 503
