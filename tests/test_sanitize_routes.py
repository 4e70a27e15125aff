"""HTTP tests for the sanitize-and-gate endpoints."""

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings


def test_sanitize_string_endpoint(client: TestClient):
    response = client.post("/v1/sanitize/string", json={"value": "<script>alert(1)</script>hello"})

    assert response.status_code == 200
    body = response.json()
    assert body == {
        "sanitized": "hello",
        "is_modified": True,
        "detected_threats": ["xss_attempt"],
        "original_length": 30,
        "sanitized_length": 5,
    }
    assert response.headers["X-RateLimit-Limit"] == str(settings.rate_limit.general_max)


def test_sanitize_string_accepts_options(client: TestClient):
    response = client.post(
        "/v1/sanitize/string",
        json={"value": "HELLO world", "options": {"max_length": 5, "convert_to_lower_case": True}},
    )

    assert response.status_code == 200
    assert response.json()["sanitized"] == "hello"


def test_sanitize_string_rejects_unknown_options(client: TestClient):
    response = client.post("/v1/sanitize/string", json={"value": "x", "options": {"allowHtml": True}})

    assert response.status_code == 422


def test_non_string_value_is_invalid_input_type(client: TestClient):
    response = client.post("/v1/sanitize/string", json={"value": 42})

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "invalid_input_type"
    assert error["details"]["actual_type"] == "int"
    assert error["request_id"] == response.headers["X-Request-ID"]


def test_sanitize_object_endpoint(client: TestClient):
    response = client.post(
        "/v1/sanitize/object",
        json={"value": {"a": "<img onerror=x>", "b": {"c": "../../etc/passwd"}, "n": 3}},
    )

    assert response.status_code == 200
    body = response.json()
    assert [item["field"] for item in body["threats"]] == ["a", "b.c"]
    assert body["sanitized"]["n"] == 3
    assert "../" not in body["sanitized"]["b"]["c"]


def test_threats_are_logged_without_values(client: TestClient, caplog: pytest.LogCaptureFixture):
    with caplog.at_level(logging.WARNING, logger="app.api.routes.sanitize"):
        client.post("/v1/sanitize/object", json={"value": {"secret": "../../etc/passwd"}})

    records = [r for r in caplog.records if r.getMessage() == "sanitizer.threats_detected"]
    assert len(records) == 1
    assert records[0].findings == [
        {"field": "secret", "threats": ["path_traversal_attempt", "html_content"]}
    ]
    assert "passwd" not in str(records[0].__dict__)


def test_sanitize_filename_endpoint_uses_upload_policy(client: TestClient):
    response = client.post("/v1/sanitize/filename", json={"value": "my file (1).pdf"})

    assert response.status_code == 200
    assert response.json() == {"sanitized": "my_file_1.pdf"}
    assert response.headers["X-RateLimit-Limit"] == str(settings.rate_limit.upload_max)


def test_validate_email_endpoint(client: TestClient):
    response = client.post("/v1/validate/email", json={"value": "USER@EXAMPLE.COM"})

    assert response.json() == {"is_valid": True, "sanitized": "user@example.com"}


def test_validate_url_endpoint(client: TestClient):
    ok = client.post("/v1/validate/url", json={"value": "https://example.com/x"})
    bad = client.post("/v1/validate/url", json={"value": "javascript:alert(1)"})

    assert ok.json() == {"is_valid": True, "sanitized": "https://example.com/x"}
    assert bad.json()["is_valid"] is False


def test_general_policy_denies_after_ceiling(client: TestClient, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings.rate_limit, "general_max", 2)

    for _ in range(2):
        assert client.post("/v1/validate/email", json={"value": "a@b.co"}).status_code == 200

    response = client.post("/v1/sanitize/string", json={"value": "x"})
    assert response.status_code == 429
    assert response.json()["details"]["limit"] == 2


def test_health_is_not_rate_limited(client: TestClient):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert "X-RateLimit-Limit" not in response.headers


def test_openapi_documents_bearer_and_429(client: TestClient):
    schema = client.get("/openapi.json").json()

    assert schema["components"]["securitySchemes"]["BearerAuth"]["scheme"] == "bearer"
    assert "429" in schema["paths"]["/v1/sanitize/string"]["post"]["responses"]
    assert schema["paths"]["/health"]["get"]["security"] == []
