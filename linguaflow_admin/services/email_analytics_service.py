"""Delivery analytics and health checks over the email_logs collection."""

import time
from datetime import datetime, timezone

from linguaflow_admin.repositories import email_logs_repo, email_templates_repo, smtp_configs_repo

ANALYTICS_PERIODS = {
    '24h': 24 * 60 * 60,
    '7d': 7 * 24 * 60 * 60,
    '30d': 30 * 24 * 60 * 60,
    '90d': 90 * 24 * 60 * 60,
}
DEFAULT_PERIOD = '7d'
MAX_ANALYZED_LOGS = 10000
DELIVERED_STATUSES = frozenset({'sent', 'delivered'})
FAILED_STATUSES = frozenset({'failed', 'retry_exhausted'})
BOUNCE_RATE_THRESHOLD = 0.05
FAILURE_RATE_THRESHOLD = 0.10
DAILY_VOLUME_THRESHOLD = 1000
MIN_VOLUME_FOR_RATE_ALERTS = 10
SMTP_TEST_MAX_AGE_SECONDS = 60 * 60
SLOW_DATABASE_SECONDS = 5.0
ESSENTIAL_TEMPLATE_TYPES = ('welcome', 'password_reset')
DELIVERY_FAIL_RATE = 0.20
DELIVERY_WARNING_RATE = 0.10
RECOMMENDATIONS = {
    'smtp': 'Check SMTP configuration and credentials',
    'database': 'Check database connectivity and performance',
    'templates': 'Create and activate templates for the essential email types',
    'email_delivery': 'Investigate email delivery issues',
}


def resolve_period(value):
    key = str(value or DEFAULT_PERIOD).strip().lower()
    if key not in ANALYTICS_PERIODS:
        return None, None
    return key, ANALYTICS_PERIODS[key]


def _bucket(log):
    status = log.get('status')
    return {
        'sent': 1,
        'delivered': 1 if status in DELIVERED_STATUSES else 0,
        'failed': 1 if status in FAILED_STATUSES else 0,
        'bounced': 1 if status == 'bounced' else 0,
    }


def _add(target, counts):
    for key, value in counts.items():
        target[key] = target.get(key, 0) + value


def _percent(part, total):
    return round(part / total * 100) if total else 0


def _day(ts):
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).strftime('%Y-%m-%d')


def build_alerts(totals, recent_count):
    """Bounce and failure alerts need more than ten sends; volume compares the last day to the daily cap."""
    alerts = []
    sent = totals['sent']
    if sent > MIN_VOLUME_FOR_RATE_ALERTS:
        bounce_rate = totals['bounced'] / sent
        if bounce_rate > BOUNCE_RATE_THRESHOLD:
            alerts.append({
                'type': 'high_bounce_rate',
                'severity': 'high' if bounce_rate > BOUNCE_RATE_THRESHOLD * 2 else 'medium',
                'message': f"Bounce rate ({bounce_rate * 100:.2f}%) exceeds threshold "
                           f"({BOUNCE_RATE_THRESHOLD * 100:.2f}%)",
                'value': bounce_rate,
                'threshold': BOUNCE_RATE_THRESHOLD,
            })
        failure_rate = totals['failed'] / sent
        if failure_rate > FAILURE_RATE_THRESHOLD:
            alerts.append({
                'type': 'delivery_failure',
                'severity': 'high' if failure_rate > FAILURE_RATE_THRESHOLD * 2 else 'medium',
                'message': f"Delivery failure rate ({failure_rate * 100:.2f}%) exceeds threshold "
                           f"({FAILURE_RATE_THRESHOLD * 100:.2f}%)",
                'value': failure_rate,
                'threshold': FAILURE_RATE_THRESHOLD,
            })
    if recent_count > DAILY_VOLUME_THRESHOLD * 0.9:
        severity = 'high'
    elif recent_count > DAILY_VOLUME_THRESHOLD * 0.8:
        severity = 'medium'
    else:
        severity = None
    if severity:
        alerts.append({
            'type': 'high_volume',
            'severity': severity,
            'message': f"{recent_count}/{DAILY_VOLUME_THRESHOLD} emails sent in the last 24 hours",
            'value': recent_count,
            'threshold': DAILY_VOLUME_THRESHOLD,
        })
    return alerts


def summarize_logs(logs, window_start, window_end):
    totals = {'sent': 0, 'delivered': 0, 'failed': 0, 'bounced': 0}
    by_type = {}
    by_day = {}
    recent_count = 0
    for log in logs:
        counts = _bucket(log)
        _add(totals, counts)
        _add(by_type.setdefault(log.get('template_type') or 'unknown', {}), counts)
        created_at = log.get('created_at')
        if isinstance(created_at, (int, float)):
            _add(by_day.setdefault(_day(created_at), {}), counts)
            if created_at >= window_end - ANALYTICS_PERIODS['24h'] and not log.get('is_test'):
                recent_count += 1
    return {
        'totalSent': totals['sent'],
        'totalDelivered': totals['delivered'],
        'totalFailed': totals['failed'],
        'totalBounced': totals['bounced'],
        'deliveryRate': _percent(totals['delivered'], totals['sent']),
        'bounceRate': _percent(totals['bounced'], totals['sent']),
        'timeRange': {'start': window_start, 'end': window_end},
        'emailTypeBreakdown': by_type,
        'dailyStats': [dict(by_day[day], date=day) for day in sorted(by_day)],
        'alerts': build_alerts(totals, recent_count),
    }


def get_email_analytics(db, period_seconds, now_ts, template_type=None, smtp_config_id=None,
                        include_tests=False):
    window_start = now_ts - period_seconds
    docs = email_logs_repo.query_window(
        db,
        window_start,
        now_ts,
        limit=MAX_ANALYZED_LOGS,
        template_type=template_type,
        smtp_config_id=smtp_config_id,
    )
    logs = [doc.to_dict() or {} for doc in docs]
    if not include_tests:
        logs = [log for log in logs if not log.get('is_test')]
    summary = summarize_logs(logs, window_start, now_ts)
    summary['truncated'] = len(docs) >= MAX_ANALYZED_LOGS
    return summary


def _check(status, message, **details):
    return {'status': status, 'message': message, 'details': details}


def check_smtp(db, now_ts):
    snapshot = smtp_configs_repo.get_active_doc(db)
    if snapshot is None:
        return _check('fail', 'No active SMTP configuration found')
    config = snapshot.to_dict() or {}
    test_status = config.get('test_status')
    last_tested = config.get('last_tested')
    if not isinstance(last_tested, (int, float)) or now_ts - last_tested > SMTP_TEST_MAX_AGE_SECONDS:
        return _check('warning', 'SMTP configuration not recently tested', config_id=snapshot.id,
                      last_tested=last_tested, test_status=test_status)
    if test_status != 'success':
        return _check('fail', f'SMTP test failed: {test_status}', config_id=snapshot.id, test_status=test_status)
    return _check('pass', 'SMTP configuration is healthy', config_id=snapshot.id)


def check_database(db, clock=time.monotonic):
    started = clock()
    email_logs_repo.query_window(db, 0, limit=1)
    elapsed = clock() - started
    if elapsed > SLOW_DATABASE_SECONDS:
        return _check('warning', 'Database response time is slow', response_time_ms=int(elapsed * 1000))
    return _check('pass', 'Database is healthy', response_time_ms=int(elapsed * 1000))


def check_templates(db):
    templates = [doc.to_dict() or {} for doc in email_templates_repo.list_docs(db)]
    if not templates:
        return _check('fail', 'No email templates configured')
    active = [template for template in templates if template.get('is_active')]
    active_types = {template.get('type') for template in active}
    missing = [template_type for template_type in ESSENTIAL_TEMPLATE_TYPES if template_type not in active_types]
    if missing:
        return _check('warning', f"Missing active templates for: {', '.join(missing)}", missing=missing,
                      active_templates=len(active), total_templates=len(templates))
    return _check('pass', f'{len(active)} of {len(templates)} templates are active',
                  active_templates=len(active), total_templates=len(templates))


def check_delivery(db, now_ts):
    docs = email_logs_repo.query_window(db, now_ts - ANALYTICS_PERIODS['24h'], now_ts, limit=MAX_ANALYZED_LOGS)
    logs = [doc.to_dict() or {} for doc in docs]
    logs = [log for log in logs if not log.get('is_test')]
    if not logs:
        return _check('pass', 'No emails sent in the last 24 hours', total=0)
    failed = sum(1 for log in logs if log.get('status') in FAILED_STATUSES or log.get('status') == 'bounced')
    delivered = sum(1 for log in logs if log.get('status') in DELIVERED_STATUSES)
    failure_rate = failed / len(logs)
    details = {'total': len(logs), 'delivered': delivered, 'failed': failed,
               'failure_rate': _percent(failed, len(logs))}
    if failure_rate > DELIVERY_FAIL_RATE:
        return _check('fail', f'High failure rate: {failure_rate * 100:.1f}%', **details)
    if failure_rate > DELIVERY_WARNING_RATE:
        return _check('warning', f'Elevated failure rate: {failure_rate * 100:.1f}%', **details)
    return _check('pass', f'Email delivery is healthy ({_percent(delivered, len(logs))}% success rate)', **details)


def run_health_checks(db, now_ts, logger=None):
    checks = {}
    runners = {
        'smtp': lambda: check_smtp(db, now_ts),
        'database': lambda: check_database(db),
        'templates': lambda: check_templates(db),
        'email_delivery': lambda: check_delivery(db, now_ts),
    }
    for name, runner in runners.items():
        try:
            checks[name] = runner()
        except Exception as e:
            if logger is not None:
                logger.error(f"Email health check {name} failed: {e}")
            checks[name] = _check('fail', f'{name} health check failed: {e}')
    statuses = [check['status'] for check in checks.values()]
    if 'fail' in statuses:
        overall = 'critical'
    elif 'warning' in statuses:
        overall = 'warning'
    else:
        overall = 'healthy'
    return {
        'status': overall,
        'timestamp': now_ts,
        'checks': checks,
        'summary': {
            'total_checks': len(statuses),
            'passed_checks': statuses.count('pass'),
            'warning_checks': statuses.count('warning'),
            'failed_checks': statuses.count('fail'),
        },
        'recommendations': [RECOMMENDATIONS[name] for name, check in checks.items() if check['status'] != 'pass'],
    }
