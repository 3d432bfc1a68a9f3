#!/usr/bin/env python3
"""Lightweight smoke tests for the admin backend HTTP routes.

Usage:
  ./venv/bin/python scripts/smoke_test.py
  ./venv/bin/python scripts/smoke_test.py --base-url https://your-domain.com
"""

from __future__ import annotations

import argparse
import json
import os
import time
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Tuple


def _request(
    method: str,
    url: str,
    *,
    json_body: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 10.0,
) -> Tuple[int, str, Dict[str, str]]:
    payload = None
    request_headers: Dict[str, str] = dict(headers or {})
    if json_body is not None:
        payload = json.dumps(json_body).encode("utf-8")
        request_headers.setdefault("Content-Type", "application/json")
    req = urllib.request.Request(url=url, data=payload, method=method.upper(), headers=request_headers)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            body = response.read().decode("utf-8", errors="replace")
            status = int(response.getcode())
            response_headers = {k: v for k, v in response.getheaders()}
            return status, body, response_headers
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace")
        response_headers = {k: v for k, v in exc.headers.items()}
        return int(exc.code), body, response_headers


class SmokeRunner:
    def __init__(self, base_url: str, timeout: float, bearer_token: str = "") -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.bearer_token = bearer_token.strip()
        self.failures = 0
        self.total = 0

    def _print_result(self, ok: bool, label: str, detail: str = "") -> None:
        prefix = "PASS" if ok else "FAIL"
        print(f"[{prefix}] {label}")
        if detail:
            print(f"       {detail}")
        if not ok:
            self.failures += 1

    def _expect_status(self, label: str, method: str, path: str, expected_status: int, **kwargs: Any) -> Tuple[int, str, Dict[str, str]]:
        self.total += 1
        url = f"{self.base_url}{path}"
        started = time.time()
        try:
            status, body, headers = _request(method, url, timeout=self.timeout, **kwargs)
        except Exception as exc:
            self._print_result(False, label, f"request error: {exc}")
            return 0, "", {}
        elapsed_ms = int((time.time() - started) * 1000)
        ok = status == expected_status
        body_preview = body.strip().replace("\n", " ")[:140]
        detail = f"expected {expected_status}, got {status} ({elapsed_ms}ms)"
        if body_preview:
            detail += f" | body: {body_preview}"
        self._print_result(ok, label, detail)
        return status, body, headers

    def _expect_json(self, label: str, body: str, predicate) -> None:
        self.total += 1
        try:
            parsed = json.loads(body or "{}")
            self._print_result(bool(predicate(parsed)), label)
        except Exception as exc:
            self._print_result(False, label, f"invalid json: {exc}")

    def run(self) -> int:
        print(f"Running smoke tests against: {self.base_url}")
        print(f"Timeout per request: {self.timeout:.1f}s")
        print("")

        _status, body, headers = self._expect_status(
            "Health check reachable",
            "GET",
            "/healthz",
            200,
            headers={"X-Request-ID": "smoke-healthz"},
        )
        self._expect_json("Health check reports ok", body, lambda parsed: parsed.get("status") == "ok")
        self.total += 1
        self._print_result(headers.get("X-Request-ID") == "smoke-healthz", "Request ID is echoed")

        # Public API sanity
        self._expect_status(
            "Predefined discussion topics are public",
            "GET",
            "/api/discussion-topics/predefined?level=beginner",
            200,
        )
        _status, body, _headers = self._expect_status(
            "Unsubscribe rejects missing token",
            "POST",
            "/api/unsubscribe",
            400,
            json_body={},
        )
        self._expect_json(
            "Unsubscribe error message",
            body,
            lambda parsed: parsed.get("error") == "Unsubscribe token is required",
        )
        self._expect_status("Unsubscribe validation rejects unknown token", "GET", "/api/unsubscribe?token=smoke", 400)
        self._expect_status("Calendar callback rejects missing code", "GET", "/api/calendar/oauth/callback", 400)

        # Unauthorized guardrails
        self._expect_status("SMTP configs require auth", "GET", "/api/admin/email/smtp-config", 401)
        self._expect_status("Templates require auth", "GET", "/api/admin/email/templates", 401)
        self._expect_status(
            "Test email requires auth",
            "POST",
            "/api/admin/email/test",
            401,
            json_body={"templateId": "smoke", "recipientEmail": "smoke@example.com"},
        )
        self._expect_status("Audit logs require auth", "GET", "/api/admin/email/audit-logs", 401)
        self._expect_status("GDPR report requires auth", "GET", "/api/admin/email/gdpr", 401)
        self._expect_status("Email preferences require auth", "GET", "/api/email-preferences", 401)
        self._expect_status("Vocabulary sessions require auth", "POST", "/api/vocabulary/sessions", 401, json_body={})

        if self.bearer_token:
            auth_headers = {"Authorization": f"Bearer {self.bearer_token}"}
            self._expect_status("Authenticated email preferences", "GET", "/api/email-preferences", 200, headers=auth_headers)
            self._expect_status("Authenticated calendar status", "GET", "/api/calendar/status", 200, headers=auth_headers)
        else:
            print("")
            print("Note: Skipped authenticated smoke checks (set FIREBASE_TEST_BEARER to enable).")

        print("")
        passed = self.total - self.failures
        print(f"Summary: {passed}/{self.total} checks passed.")
        if self.failures:
            print("Smoke test status: FAILED")
            return 1
        print("Smoke test status: PASSED")
        return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run admin backend smoke tests.")
    parser.add_argument("--base-url", default="http://127.0.0.1:5000", help="Base URL for the app (default: http://127.0.0.1:5000)")
    parser.add_argument("--timeout", default=10.0, type=float, help="Request timeout in seconds")
    parser.add_argument("--bearer-token", default="", help="Optional Firebase bearer token for authenticated checks")
    args = parser.parse_args()

    token = args.bearer_token.strip() or os.getenv("FIREBASE_TEST_BEARER", "").strip()

    runner = SmokeRunner(base_url=args.base_url, timeout=args.timeout, bearer_token=token)
    return runner.run()


if __name__ == "__main__":
    raise SystemExit(main())
