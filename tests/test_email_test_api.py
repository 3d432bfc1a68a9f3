import pytest

from fakes import FakeDB
from linguaflow_admin import runtime as app_module
from linguaflow_admin.services import email_encryption, email_test_api_service

TEST_KEY = "cd" * 32
ADMIN = {"uid": "admin-1", "email": "admin@example.com"}


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
    db = FakeDB({
        "smtp_configs": {
            "smtp-1": {
                "provider": "custom",
                "host": "smtp.example.com",
                "port": 587,
                "username": "mailer@example.com",
                "password_encrypted": email_encryption.encrypt_password("pw", key=TEST_KEY),
                "encryption": "tls",
                "from_email": "mailer@example.com",
                "from_name": "LinguaFlow",
                "is_active": True,
            },
        },
        "email_templates": {
            "tpl-1": {
                "name": "Reminder",
                "type": "lesson_reminder",
                "subject": "Reminder: {{lesson_title}}",
                "html_content": "<p>Hi {{user_name}}, see you at {{lesson_time}}</p>",
                "text_content": "Hi {{user_name}}",
                "version": 4,
            },
        },
    })
    monkeypatch.setattr(app_module, "db", db)
    monkeypatch.setattr(app_module, "EMAIL_ENCRYPTION_KEY", TEST_KEY)
    monkeypatch.setattr(app_module, "verify_firebase_token", lambda _request: dict(ADMIN))
    monkeypatch.setattr(app_module, "get_admin_permissions", lambda _decoded: {"system:admin"})
    monkeypatch.setattr(app_module, "check_rate_limit", lambda **_kwargs: (True, 0))
    return db


def _sender(results, calls=None):
    results = list(results)

    def _send(config, to, subject, html, text=None, from_name=None):
        if calls is not None:
            calls.append({"password": config["password"], "to": to, "subject": subject, "html": html})
        return results.pop(0)

    return _send


OK = {"success": True, "message_id": "<abc@example.com>", "message": "sent", "details": {"duration_ms": 3}}
FAIL = {"success": False, "message_id": None, "message": "Connection refused.", "details": {"error_code": "ECONNREFUSED"}}


def test_compute_next_retry_at_backs_off_exponentially():
    assert email_test_api_service.compute_next_retry_at(0, 3, 5, 1000.0) == 1000.0 + 5 * 60
    assert email_test_api_service.compute_next_retry_at(1, 3, 5, 1000.0) == 1000.0 + 10 * 60
    assert email_test_api_service.compute_next_retry_at(2, 3, 5, 1000.0) == 1000.0 + 20 * 60
    assert email_test_api_service.compute_next_retry_at(3, 3, 5, 1000.0) is None


def test_send_test_email_renders_with_sample_data(client, fake_db, monkeypatch):
    calls = []
    monkeypatch.setattr(app_module, "send_smtp_email", _sender([OK], calls))

    response = client.post(
        "/api/admin/email/test",
        json={"templateId": "tpl-1", "recipientEmail": "qa@example.com", "testParameters": {"user_name": "Ana"}},
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "sent"
    assert body["previewHtml"] == "<p>Hi Ana, see you at 2:00 PM EST</p>"
    assert calls[0]["password"] == "pw"
    assert calls[0]["subject"] == "Reminder: Advanced English Conversation"

    log = fake_db.docs("email_logs")[body["testId"]]
    assert log["is_test"] is True
    assert log["status"] == "sent"
    assert log["metadata"]["message_id"] == "<abc@example.com>"
    assert log["metadata"]["template_version"] == 4

    actions = [entry["action"] for entry in fake_db.docs("admin_audit_logs").values()]
    assert actions == ["test_email_sent"]


def test_failed_send_schedules_retry(client, fake_db, monkeypatch):
    monkeypatch.setattr(app_module, "send_smtp_email", _sender([FAIL]))

    response = client.post("/api/admin/email/test", json={"templateId": "tpl-1", "recipientEmail": "qa@example.com"})

    assert response.status_code == 500
    body = response.get_json()
    assert body["status"] == "failed"
    assert body["message"] == "Connection refused."
    log = fake_db.docs("email_logs")[body["testId"]]
    assert log["error_code"] == "ECONNREFUSED"
    assert log["next_retry_at"] == log["updated_at"] + 5 * 60
    assert log["metadata"]["next_retry_at"] == log["next_retry_at"]
    actions = [entry["action"] for entry in fake_db.docs("admin_audit_logs").values()]
    assert actions == ["test_email_failed"]


@pytest.mark.parametrize(
    "payload, status, error",
    [
        ({}, 400, "Template ID and recipient email are required"),
        ({"templateId": "tpl-1", "recipientEmail": "bad"}, 400, "Invalid recipient email address"),
        ({"templateId": "nope", "recipientEmail": "qa@example.com"}, 404, "Template not found"),
    ],
)
def test_send_test_email_input_errors(client, fake_db, payload, status, error):
    response = client.post("/api/admin/email/test", json=payload)

    assert response.status_code == status
    assert response.get_json()["error"] == error


def test_send_test_email_needs_active_config(client, fake_db):
    fake_db.store["smtp_configs"]["smtp-1"]["is_active"] = False

    response = client.post("/api/admin/email/test", json={"templateId": "tpl-1", "recipientEmail": "qa@example.com"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "No active SMTP configuration found"


def test_process_due_retries_sends_and_exhausts(fake_db, monkeypatch):
    fake_db.store["email_logs"] = {
        "due-ok": {
            "status": "failed", "next_retry_at": 50.0, "retry_attempts": 0, "is_test": True,
            "recipient_email": "a@example.com", "subject": "S", "rendered_html": "<p>x</p>", "metadata": {},
        },
        "due-last": {
            "status": "failed", "next_retry_at": 60.0, "retry_attempts": 2, "is_test": True,
            "recipient_email": "b@example.com", "subject": "S", "rendered_html": "<p>y</p>", "metadata": {},
        },
        "not-due": {
            "status": "failed", "next_retry_at": 5_000.0, "retry_attempts": 0, "is_test": True,
            "recipient_email": "c@example.com", "subject": "S", "rendered_html": "<p>z</p>", "metadata": {},
        },
    }
    monkeypatch.setattr(app_module, "send_smtp_email", _sender([OK, FAIL]))

    summary = email_test_api_service.process_due_retries(app_module, now_ts=100.0)

    assert summary == {"retried": 2, "sent": 1, "rescheduled": 0, "exhausted": 1}
    logs = fake_db.docs("email_logs")
    assert logs["due-ok"]["status"] == "sent"
    assert logs["due-ok"]["retry_attempts"] == 1
    assert logs["due-ok"]["next_retry_at"] is None
    assert logs["due-last"]["status"] == "retry_exhausted"
    assert logs["due-last"]["retry_attempts"] == 3
    assert logs["not-due"]["status"] == "failed"


def test_process_due_retries_reschedules(fake_db, monkeypatch):
    fake_db.store["email_logs"] = {
        "due": {
            "status": "failed", "next_retry_at": 50.0, "retry_attempts": 0, "is_test": True,
            "recipient_email": "a@example.com", "subject": "S", "rendered_html": "<p>x</p>", "metadata": {},
        },
    }
    monkeypatch.setattr(app_module, "send_smtp_email", _sender([FAIL]))

    summary = email_test_api_service.process_due_retries(app_module, now_ts=100.0)

    assert summary["rescheduled"] == 1
    assert fake_db.docs("email_logs")["due"]["next_retry_at"] == 100.0 + 10 * 60


def test_status_lookup_and_update(client, fake_db):
    fake_db.store["email_logs"] = {
        "t1": {"status": "sent", "is_test": True, "recipient_email": "qa@example.com", "retry_attempts": 0},
        "real": {"status": "sent", "is_test": False},
    }

    status = client.get("/api/admin/email/test/t1/status")
    hidden = client.get("/api/admin/email/test/real/status")
    updated = client.put("/api/admin/email/test/t1/status", json={"status": "delivered"})
    invalid = client.put("/api/admin/email/test/t1/status", json={"status": "bounced"})

    assert status.status_code == 200
    assert status.get_json()["recipientEmail"] == "qa@example.com"
    assert hidden.status_code == 404
    assert updated.status_code == 200
    assert fake_db.docs("email_logs")["t1"]["delivered_at"] is not None
    assert invalid.status_code == 400


def test_status_update_ignores_non_test_logs(client, fake_db):
    fake_db.store["email_logs"] = {"real": {"status": "sent", "is_test": False}}

    response = client.put("/api/admin/email/test/real/status", json={"status": "delivered"})

    assert response.status_code == 404
    assert response.get_json()["error"] == "Test email not found"
    assert fake_db.docs("email_logs")["real"] == {"status": "sent", "is_test": False}


def test_email_log_export_streams_csv(client, fake_db):
    now = app_module.time.time()
    fake_db.store["email_logs"] = {
        "l1": {"created_at": now - 60, "template_type": "welcome", "recipient_email": "a@example.com",
               "subject": "Hi", "status": "sent", "is_test": False},
        "l2": {"created_at": now - 40 * 86400, "template_type": "welcome", "recipient_email": "old@example.com",
               "subject": "Old", "status": "sent", "is_test": False},
    }

    response = client.get("/api/admin/email/logs/export?window=24h")

    assert response.status_code == 200
    assert response.headers["Content-Disposition"] == "attachment; filename=email-logs-24h.csv"
    lines = response.get_data(as_text=True).strip().splitlines()
    assert lines[0].startswith("log_id,created_at,template_type")
    assert len(lines) == 2
    assert "a@example.com" in lines[1]
