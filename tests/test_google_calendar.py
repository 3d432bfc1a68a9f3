from urllib.parse import parse_qs, urlparse

import pytest
import requests

from fakes import FakeDB, FakeFirestore
from linguaflow_admin import runtime as app_module
from linguaflow_admin.repositories import query_utils
from linguaflow_admin.services import google_calendar_service

TUTOR = {"uid": "tutor-1", "email": "tutor@example.com"}


class _Response:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeHttp:
    def __init__(self, post_responses=(), get_responses=()):
        self.post_responses = list(post_responses)
        self.get_responses = list(get_responses)
        self.posts = []
        self.gets = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        response = self.post_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        self.gets.append((url, kwargs))
        response = self.get_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture()
def client():
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def disable_sentry(monkeypatch):
    monkeypatch.setattr(app_module, "sentry_sdk", None)


@pytest.fixture(autouse=True)
def inline_transactions(monkeypatch):
    monkeypatch.setattr(query_utils, "firestore", FakeFirestore)


@pytest.fixture()
def fake_db(monkeypatch):
    db = FakeDB()
    monkeypatch.setattr(app_module, "db", db)
    monkeypatch.setattr(app_module, "verify_firebase_token", lambda _request: dict(TUTOR))
    monkeypatch.setattr(app_module, "GOOGLE_CLIENT_ID", "client-id")
    monkeypatch.setattr(app_module, "GOOGLE_CLIENT_SECRET", "client-secret")
    monkeypatch.setattr(app_module, "GOOGLE_REDIRECT_URI", "https://api.example.com/api/calendar/oauth/callback")
    return db


def _token_response(**overrides):
    payload = {"access_token": "at-1", "refresh_token": "rt-1", "expires_in": 3600, "scope": "calendar"}
    payload.update(overrides)
    return _Response(200, payload)


def test_build_oauth_url_requests_offline_access():
    url = google_calendar_service.build_oauth_url("cid", "https://cb.example/", "state-1", login_hint="t@example.com")

    query = parse_qs(urlparse(url).query)
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["state"] == ["state-1"]
    assert "https://www.googleapis.com/auth/calendar.readonly" in query["scope"][0]


def test_build_oauth_url_requires_configuration():
    with pytest.raises(google_calendar_service.OAuthError):
        google_calendar_service.build_oauth_url("", "", "s")


def test_oauth_state_is_single_use_and_expires():
    db = FakeDB()
    state = google_calendar_service.create_oauth_state(db, "tutor-1", now_ts=0.0)
    stale = google_calendar_service.create_oauth_state(db, "tutor-1", now_ts=0.0)

    assert google_calendar_service.consume_oauth_state(db, state, now_ts=60.0) == "tutor-1"
    with pytest.raises(google_calendar_service.OAuthError, match="Invalid OAuth state"):
        google_calendar_service.consume_oauth_state(db, state, now_ts=61.0)
    with pytest.raises(google_calendar_service.OAuthError, match="expired"):
        google_calendar_service.consume_oauth_state(db, stale, now_ts=11 * 60.0)


def test_oauth_state_claim_deletes_inside_transaction():
    db = FakeDB()
    state = google_calendar_service.create_oauth_state(db, "tutor-1", now_ts=0.0)
    calls = []
    real_transaction = db.transaction

    def tracking_transaction():
        transaction = real_transaction()
        real_delete = transaction.delete

        def delete(reference):
            calls.append(reference.id)
            real_delete(reference)

        transaction.delete = delete
        return transaction

    db.transaction = tracking_transaction

    assert google_calendar_service.consume_oauth_state(db, state, now_ts=1.0) == "tutor-1"
    assert calls == [state]
    assert db.docs("google_oauth_states") == {}


@pytest.mark.parametrize(
    "response",
    [
        requests.ConnectionError("offline"),
        requests.Timeout("slow"),
        _Response(200, ValueError("Expecting value")),
        _Response(200, ["not", "a", "dict"]),
    ],
)
def test_token_requests_wrap_transport_and_decoding_errors(response):
    with pytest.raises(google_calendar_service.OAuthError, match="Token exchange failed"):
        google_calendar_service.exchange_code_for_tokens(
            "code", "cid", "secret", "https://cb", http=_FakeHttp([response]),
        )
    with pytest.raises(google_calendar_service.OAuthError, match="Token refresh failed"):
        google_calendar_service.refresh_access_token("rt-1", "cid", "secret", http=_FakeHttp([response]))


def test_exchange_code_collects_tokens_and_email():
    http = _FakeHttp([_token_response()], [_Response(200, {"email": "tutor@gmail.com"})])

    tokens = google_calendar_service.exchange_code_for_tokens("code", "cid", "secret", "https://cb", http=http, now_ts=100.0)

    assert tokens == {
        "access_token": "at-1",
        "refresh_token": "rt-1",
        "expires_at": 3700.0,
        "scope": "calendar",
        "email": "tutor@gmail.com",
    }
    assert http.posts[0][1]["data"]["grant_type"] == "authorization_code"


def test_exchange_code_tolerates_userinfo_failure():
    http = _FakeHttp([_token_response()], [requests.ConnectionError("offline")])

    tokens = google_calendar_service.exchange_code_for_tokens("code", "cid", "secret", "https://cb", http=http)

    assert tokens["email"] is None


def test_exchange_code_requires_refresh_token():
    http = _FakeHttp([_token_response(refresh_token=None)])

    with pytest.raises(google_calendar_service.OAuthError):
        google_calendar_service.exchange_code_for_tokens("code", "cid", "secret", "https://cb", http=http)


def test_valid_token_is_refreshed_near_expiry():
    db = FakeDB({"google_calendar_tokens": {"tutor-1": {
        "access_token": "old", "refresh_token": "rt-1", "expires_at": 1000.0,
    }}})
    http = _FakeHttp([_Response(200, {"access_token": "fresh", "expires_in": 3600})])

    fresh = google_calendar_service.get_valid_access_token(db, "tutor-1", "cid", "secret", http=http, now_ts=900.0)
    cached = google_calendar_service.get_valid_access_token(db, "tutor-1", "cid", "secret", http=http, now_ts=1000.0)

    assert fresh == "fresh"
    assert cached == "fresh"
    assert len(http.posts) == 1
    assert db.docs("google_calendar_tokens")["tutor-1"]["refresh_token"] == "rt-1"


def test_disconnect_stops_webhook_and_removes_events():
    db = FakeDB({
        "google_calendar_tokens": {"tutor-1": {"access_token": "at", "channel_id": "ch", "resource_id": "res"}},
        "calendar_events": {
            "ev1": {"tutor_id": "tutor-1", "start_time": 1.0},
            "ev2": {"tutor_id": "tutor-2", "start_time": 1.0},
        },
    })
    http = _FakeHttp([_Response(200)])

    result = google_calendar_service.disconnect(db, "tutor-1", http=http)

    assert result == {"disconnected": True, "deleted_events": 1}
    assert http.posts[0][1]["json"] == {"id": "ch", "resourceId": "res"}
    assert db.docs("google_calendar_tokens") == {}
    assert list(db.docs("calendar_events")) == ["ev2"]


def test_connection_status_reports_webhook():
    db = FakeDB({"google_calendar_tokens": {"tutor-1": {
        "email": "t@example.com", "expires_at": 10_000.0, "channel_id": "ch", "channel_expiration": 7200.0,
    }}})

    status = google_calendar_service.get_connection_status(db, "tutor-1", now_ts=0.0)

    assert status["connected"] is True
    assert status["webhook_status"]["active"] is True
    assert status["webhook_status"]["hours_until_expiration"] == 2.0
    assert google_calendar_service.get_connection_status(db, "tutor-2") == {"connected": False}


def test_oauth_flow_through_api(client, fake_db, monkeypatch):
    http = _FakeHttp([_token_response()], [_Response(200, {"email": "tutor@gmail.com"})])
    monkeypatch.setattr(app_module, "google_http", http)

    url = client.get("/api/calendar/oauth-url").get_json()["url"]
    state = parse_qs(urlparse(url).query)["state"][0]
    callback = client.get(f"/api/calendar/oauth/callback?code=abc&state={state}")

    assert callback.status_code == 200
    assert callback.get_json() == {"connected": True, "email": "tutor@gmail.com"}
    stored = fake_db.docs("google_calendar_tokens")["tutor-1"]
    assert stored["refresh_token"] == "rt-1"
    assert fake_db.docs("google_oauth_states") == {}


def test_oauth_callback_rejects_bad_input(client, fake_db):
    denied = client.get("/api/calendar/oauth/callback?error=access_denied")
    missing = client.get("/api/calendar/oauth/callback?code=abc")
    unknown_state = client.get("/api/calendar/oauth/callback?code=abc&state=forged")

    assert denied.status_code == 400
    assert missing.status_code == 400
    assert unknown_state.status_code == 400
    assert unknown_state.get_json()["error"] == "Invalid OAuth state"


def test_oauth_url_unconfigured_returns_503(client, fake_db, monkeypatch):
    monkeypatch.setattr(app_module, "GOOGLE_CLIENT_ID", "")

    assert client.get("/api/calendar/oauth-url").status_code == 503


def test_events_require_connection(client, fake_db):
    missing = client.get("/api/calendar/events")
    fake_db.store["google_calendar_tokens"] = {"tutor-1": {"access_token": "at"}}
    fake_db.store["calendar_events"] = {
        "late": {"tutor_id": "tutor-1", "start_time": 300.0},
        "early": {"tutor_id": "tutor-1", "start_time": 100.0},
        "outside": {"tutor_id": "tutor-1", "start_time": 900.0},
    }

    events = client.get("/api/calendar/events?start=0&end=500").get_json()["events"]

    assert missing.status_code == 404
    assert [event["id"] for event in events] == ["early", "late"]


def test_status_reports_invalid_token_when_refresh_is_unreachable(client, fake_db, monkeypatch):
    fake_db.store["google_calendar_tokens"] = {"tutor-1": {
        "access_token": "old", "refresh_token": "rt-1", "expires_at": 0.0, "email": "t@example.com",
    }}
    monkeypatch.setattr(app_module, "google_http", _FakeHttp([requests.ConnectionError("offline")]))

    response = client.get("/api/calendar/status")

    assert response.status_code == 200
    assert response.get_json()["connected"] is True
    assert response.get_json()["token_valid"] is False


def test_oauth_callback_reports_unreachable_google_as_bad_request(client, fake_db, monkeypatch):
    monkeypatch.setattr(app_module, "google_http", _FakeHttp([_Response(502, ValueError("no json"), text="<html>")]))
    url = client.get("/api/calendar/oauth-url").get_json()["url"]
    state = parse_qs(urlparse(url).query)["state"][0]

    callback = client.get(f"/api/calendar/oauth/callback?code=abc&state={state}")

    assert callback.status_code == 400
    assert callback.get_json()["error"].startswith("Token exchange failed")
    assert fake_db.docs("google_calendar_tokens") == {}


def test_calendar_requires_auth(client, fake_db, monkeypatch):
    monkeypatch.setattr(app_module, "verify_firebase_token", lambda _request: None)

    assert client.get("/api/calendar/status").status_code == 401
