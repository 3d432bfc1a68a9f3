#!/usr/bin/env python3
"""One-off maintenance pass for cron or manual runs.

Applies GDPR retention policies (including the audit log retention), purges
expired unsubscribe tokens, drops stale rate-limit counters and resends due
test emails.
Runs as a dry run unless --apply is given.
"""
import argparse
import logging
import os
import time

from linguaflow_admin.logging_config import configure_logging
from linguaflow_admin.repositories import email_logs_repo, unsubscribe_repo
from linguaflow_admin.repositories.query_utils import apply_equals, apply_where

logger = logging.getLogger('linguaflow_admin.maintenance')


def count_older_than(db, collection, field_path, cutoff_ts, limit, **filters):
    query = apply_equals(db.collection(collection), filters)
    query = apply_where(query, field_path, '<', cutoff_ts)
    return len(list(query.limit(limit).stream()))


def plan(runtime, gdpr_service, now_ts, batch_limit):
    """Count what an --apply run would touch."""
    retention = {}
    for policy in gdpr_service.DEFAULT_RETENTION_POLICIES:
        cutoff = now_ts - int(policy['retention_days']) * 86400
        if policy['data_type'] == 'audit_logs':
            retention['audit_logs'] = count_older_than(runtime.db, 'admin_audit_logs', 'timestamp', cutoff, batch_limit)
        elif policy['data_type'] == 'test_emails':
            retention['test_emails'] = count_older_than(
                runtime.db, email_logs_repo.COLLECTION, 'created_at', cutoff, batch_limit, is_test=True
            )
        else:
            retention[policy['data_type']] = count_older_than(
                runtime.db, email_logs_repo.COLLECTION, 'created_at', cutoff, batch_limit
            )
    return {
        'retention': retention,
        'expired_unsubscribe_tokens': len(unsubscribe_repo.list_expired_tokens(runtime.db, now_ts, batch_limit)),
        'due_test_email_retries': len(email_logs_repo.list_due_retries(runtime.db, now_ts)),
    }


def apply(runtime, gdpr_service, unsubscribe_service, now_ts, batch_limit):
    retention = gdpr_service.apply_retention_policies(runtime.db, now_ts=now_ts, batch_limit=batch_limit)
    return {
        'retention': retention,
        'expired_unsubscribe_tokens': unsubscribe_service.cleanup_expired_tokens(
            runtime.db, now_ts=now_ts, batch_limit=batch_limit
        ),
        'maintenance': runtime.run_periodic_maintenance(),
    }


def main():
    parser = argparse.ArgumentParser(description="Run retention, cleanup and test email retry maintenance.")
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Apply changes. Without this flag, the script runs in dry-run mode.",
    )
    parser.add_argument("--batch-limit", type=int, default=500, help="Max documents touched per collection")
    args = parser.parse_args()

    # The one-shot run replaces the in-process maintenance thread.
    os.environ.setdefault('BACKGROUND_MAINTENANCE_ENABLED', '0')
    configure_logging(os.getenv('LOG_LEVEL', 'INFO'))

    from linguaflow_admin import runtime
    from linguaflow_admin.services import gdpr_service, unsubscribe_service

    if runtime.db is None:
        raise SystemExit(f"Firestore is not available: {runtime.firebase_init_error}")

    now_ts = time.time()
    batch_limit = max(1, int(args.batch_limit))
    if args.apply:
        summary = apply(runtime, gdpr_service, unsubscribe_service, now_ts, batch_limit)
    else:
        summary = plan(runtime, gdpr_service, now_ts, batch_limit)
    mode = "APPLY" if args.apply else "DRY-RUN"
    logger.info(f"[{mode}] maintenance summary: {summary}")
    if not args.apply:
        print("No changes were written. Re-run with --apply to persist.")


if __name__ == "__main__":
    main()
