import time

import pytest

from fakes import FakeDB
from linguaflow_admin import runtime as app_module
from linguaflow_admin.repositories import email_templates_repo
from linguaflow_admin.services import email_analytics_service

ADMIN = {"uid": "admin-1", "email": "admin@example.com"}
# 2023-11-14 12:00:00 UTC
NOW = 1_699_963_200.0
HOUR = 3600
DAY = 24 * HOUR


@pytest.fixture()
def client():
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def disable_sentry(monkeypatch):
    monkeypatch.setattr(app_module, "sentry_sdk", None)


@pytest.fixture()
def fake_db(monkeypatch):
    db = FakeDB()
    monkeypatch.setattr(app_module, "db", db)
    monkeypatch.setattr(app_module, "verify_firebase_token", lambda _request: dict(ADMIN))
    monkeypatch.setattr(app_module, "get_admin_permissions", lambda _decoded: {"email:analytics:read"})
    monkeypatch.setattr(app_module, "check_rate_limit", lambda **_kwargs: (True, 0))
    return db


def _logs(db, entries):
    db.store["email_logs"] = {f"log-{index}": dict(entry) for index, entry in enumerate(entries)}


def _healthy_setup(db, now):
    db.store["smtp_configs"] = {
        "smtp-1": {"is_active": True, "last_tested": now - 60, "test_status": "success"},
    }
    db.store["email_templates"] = {
        "tpl-1": {"type": "welcome", "is_active": True, "updated_at": 1},
        "tpl-2": {"type": "password_reset", "is_active": True, "updated_at": 1},
        "tpl-3": {"type": "marketing", "is_active": False, "updated_at": 1},
    }


def test_summary_counts_rates_and_daily_buckets():
    logs = [
        {"template_type": "welcome", "status": "sent", "created_at": NOW - HOUR},
        {"template_type": "welcome", "status": "delivered", "created_at": NOW - 2 * HOUR},
        {"template_type": "marketing", "status": "bounced", "created_at": NOW - DAY - HOUR},
        {"template_type": "marketing", "status": "retry_exhausted", "created_at": NOW - DAY - HOUR},
    ]

    summary = email_analytics_service.summarize_logs(logs, NOW - 7 * DAY, NOW)

    assert summary["totalSent"] == 4
    assert summary["totalDelivered"] == 2
    assert summary["totalFailed"] == 1
    assert summary["totalBounced"] == 1
    assert summary["deliveryRate"] == 50
    assert summary["bounceRate"] == 25
    assert summary["timeRange"] == {"start": NOW - 7 * DAY, "end": NOW}
    assert summary["emailTypeBreakdown"]["marketing"] == {"sent": 2, "delivered": 0, "failed": 1, "bounced": 1}
    assert summary["dailyStats"] == [
        {"date": "2023-11-13", "sent": 2, "delivered": 0, "failed": 1, "bounced": 1},
        {"date": "2023-11-14", "sent": 2, "delivered": 2, "failed": 0, "bounced": 0},
    ]
    assert summary["alerts"] == []


def test_empty_window_has_zero_rates():
    summary = email_analytics_service.summarize_logs([], NOW - DAY, NOW)

    assert summary["totalSent"] == 0
    assert summary["deliveryRate"] == 0
    assert summary["bounceRate"] == 0
    assert summary["dailyStats"] == []


def test_alerts_need_volume_and_compare_against_thresholds():
    quiet = email_analytics_service.build_alerts({"sent": 10, "delivered": 0, "failed": 10, "bounced": 0}, 10)
    assert quiet == []

    alerts = email_analytics_service.build_alerts({"sent": 20, "delivered": 16, "failed": 1, "bounced": 3}, 950)

    assert [(alert["type"], alert["severity"]) for alert in alerts] == [
        ("high_bounce_rate", "high"),
        ("high_volume", "high"),
    ]
    medium = email_analytics_service.build_alerts({"sent": 20, "delivered": 17, "failed": 3, "bounced": 0}, 850)
    assert [(alert["type"], alert["severity"]) for alert in medium] == [
        ("delivery_failure", "medium"),
        ("high_volume", "medium"),
    ]


def test_analytics_filters_window_type_and_test_sends():
    db = FakeDB()
    _logs(db, [
        {"template_type": "welcome", "status": "sent", "created_at": NOW - HOUR, "smtp_config_id": "smtp-1"},
        {"template_type": "welcome", "status": "sent", "created_at": NOW - HOUR, "is_test": True},
        {"template_type": "welcome", "status": "failed", "created_at": NOW - 8 * DAY},
        {"template_type": "marketing", "status": "sent", "created_at": NOW - 2 * HOUR},
    ])

    week = email_analytics_service.get_email_analytics(db, 7 * DAY, NOW)
    assert week["totalSent"] == 2
    assert week["truncated"] is False

    welcome = email_analytics_service.get_email_analytics(db, 7 * DAY, NOW, template_type="welcome",
                                                          include_tests=True)
    assert welcome["totalSent"] == 2

    by_provider = email_analytics_service.get_email_analytics(db, 90 * DAY, NOW, smtp_config_id="smtp-1")
    assert by_provider["totalSent"] == 1


@pytest.mark.parametrize("period", ["24h", "7d", "30d", "90d"])
def test_analytics_endpoint_accepts_each_period(client, fake_db, period):
    _logs(fake_db, [{"template_type": "welcome", "status": "sent", "created_at": time.time() - HOUR}])

    response = client.get(f"/api/admin/email/analytics?period={period}")

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["data"]["period"] == period
    assert body["data"]["totalSent"] == 1
    assert body["data"]["deliveryRate"] == 100


def test_analytics_endpoint_rejects_unknown_period(client, fake_db):
    response = client.get("/api/admin/email/analytics?period=1y")

    assert response.status_code == 400
    assert "24h, 7d, 30d, 90d" in response.get_json()["error"]


def test_analytics_endpoint_requires_permission(client, fake_db, monkeypatch):
    monkeypatch.setattr(app_module, "get_admin_permissions", lambda _decoded: {"email:config:read"})

    assert client.get("/api/admin/email/analytics").status_code == 403
    assert client.get("/api/admin/email/health").status_code == 403


def test_health_is_healthy_when_every_check_passes():
    db = FakeDB()
    _healthy_setup(db, NOW)
    _logs(db, [{"status": "sent", "created_at": NOW - HOUR} for _ in range(10)])

    report = email_analytics_service.run_health_checks(db, NOW)

    assert report["status"] == "healthy"
    assert {name: check["status"] for name, check in report["checks"].items()} == {
        "smtp": "pass",
        "database": "pass",
        "templates": "pass",
        "email_delivery": "pass",
    }
    assert report["summary"]["passed_checks"] == 4
    assert report["recommendations"] == []


def test_health_is_critical_without_smtp_or_templates():
    report = email_analytics_service.run_health_checks(FakeDB(), NOW)

    assert report["status"] == "critical"
    assert report["checks"]["smtp"]["message"] == "No active SMTP configuration found"
    assert report["checks"]["templates"]["message"] == "No email templates configured"
    assert report["checks"]["email_delivery"]["status"] == "pass"
    assert report["summary"]["failed_checks"] == 2
    assert "Check SMTP configuration and credentials" in report["recommendations"]


def test_health_warns_on_stale_smtp_test_and_missing_essential_template():
    db = FakeDB()
    _healthy_setup(db, NOW)
    db.store["smtp_configs"]["smtp-1"]["last_tested"] = NOW - 2 * HOUR
    db.store["email_templates"]["tpl-2"]["is_active"] = False

    report = email_analytics_service.run_health_checks(db, NOW)

    assert report["status"] == "warning"
    assert report["checks"]["smtp"]["message"] == "SMTP configuration not recently tested"
    assert report["checks"]["templates"]["details"]["missing"] == ["password_reset"]


def test_failed_smtp_test_fails_the_check():
    db = FakeDB()
    _healthy_setup(db, NOW)
    db.store["smtp_configs"]["smtp-1"]["test_status"] = "failed"

    check = email_analytics_service.check_smtp(db, NOW)

    assert check["status"] == "fail"
    assert check["message"] == "SMTP test failed: failed"


@pytest.mark.parametrize(
    "failed, expected",
    [(1, "pass"), (2, "warning"), (3, "fail")],
)
def test_delivery_check_grades_failure_rate(failed, expected):
    db = FakeDB()
    statuses = ["failed"] * (failed - 1) + ["bounced"] + ["sent"] * (10 - failed)
    entries = [{"status": status, "created_at": NOW - HOUR} for status in statuses]
    entries.append({"status": "failed", "created_at": NOW - HOUR, "is_test": True})
    _logs(db, entries)

    check = email_analytics_service.check_delivery(db, NOW)

    assert check["status"] == expected
    assert check["details"]["total"] == 10


def test_slow_database_is_a_warning():
    ticks = iter([0.0, 6.0])

    check = email_analytics_service.check_database(FakeDB(), clock=lambda: next(ticks))

    assert check["status"] == "warning"
    assert check["details"]["response_time_ms"] == 6000


def test_check_errors_are_reported_as_failures(monkeypatch):
    db = FakeDB()
    _healthy_setup(db, NOW)

    def _boom(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(email_templates_repo, "list_docs", _boom)

    report = email_analytics_service.run_health_checks(db, NOW)

    assert report["checks"]["templates"] == {
        "status": "fail",
        "message": "templates health check failed: boom",
        "details": {},
    }
    assert report["status"] == "critical"


def test_health_endpoint_status_code_follows_overall_status(client, fake_db):
    critical = client.get("/api/admin/email/health")
    assert critical.status_code == 503
    assert critical.get_json()["status"] == "critical"

    _healthy_setup(fake_db, time.time())
    healthy = client.get("/api/admin/email/health")
    assert healthy.status_code == 200
    assert healthy.get_json()["status"] == "healthy"
