"""Tests for rate limit key derivation."""

from __future__ import annotations

import base64
import hashlib
import time

import pytest
from jose import jwt
from starlette.requests import Request

from app.core.config import settings
from app.core.rate_limit import derive_rate_limit_key, ip_based_key, user_based_key


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.0.0.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def _bearer(claims: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {jwt.encode(claims, 'test-secret', algorithm='HS256')}"}


def test_bearer_user_id_claim_wins() -> None:
    request = _request({**_bearer({"user_id": "u-1", "sub": "other"}), "X-Forwarded-For": "1.1.1.1"})

    assert derive_rate_limit_key(request) == "user:u-1"


def test_bearer_sub_claim_used_without_user_id() -> None:
    assert derive_rate_limit_key(_request(_bearer({"sub": "alice"}))) == "user:alice"


def test_unparseable_bearer_falls_back_to_address() -> None:
    request = _request({"Authorization": "Bearer not-a-jwt"})

    assert derive_rate_limit_key(request) == "ip:10.0.0.9"


def test_unsigned_token_claims_are_ignored() -> None:
    header = base64.urlsafe_b64encode(b'{"alg":"HS256","typ":"JWT"}').rstrip(b"=").decode()
    payload = base64.urlsafe_b64encode(b'{"sub":"x1"}').rstrip(b"=").decode()
    request = _request({"Authorization": f"Bearer {header}.{payload}.forged"})

    assert derive_rate_limit_key(request) == "ip:10.0.0.9"


def test_token_signed_with_another_secret_is_ignored() -> None:
    token = jwt.encode({"sub": "mallory"}, "attacker-secret", algorithm="HS256")
    request = _request({"Authorization": f"Bearer {token}"})

    assert derive_rate_limit_key(request) == "ip:10.0.0.9"
    assert user_based_key(request) == "ip:10.0.0.9"


def test_expired_token_is_ignored() -> None:
    request = _request(_bearer({"sub": "alice", "exp": int(time.time()) - 60}))

    assert derive_rate_limit_key(request) == "ip:10.0.0.9"


def test_bearer_ignored_without_configured_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.rate_limit, "jwt_secret_key", None)

    assert derive_rate_limit_key(_request(_bearer({"sub": "alice"}))) == "ip:10.0.0.9"


def test_non_bearer_scheme_is_ignored() -> None:
    request = _request({"Authorization": "Basic dXNlcjpwYXNz"})

    assert derive_rate_limit_key(request) == "ip:10.0.0.9"


def test_first_forwarded_for_entry_is_used() -> None:
    request = _request({"X-Forwarded-For": " 203.0.113.7 , 10.0.0.1, 10.0.0.2"})

    assert derive_rate_limit_key(request) == "ip:203.0.113.7"


def test_real_ip_header_when_no_forwarded_for() -> None:
    request = _request({"X-Real-IP": "198.51.100.4"})

    assert derive_rate_limit_key(request) == "ip:198.51.100.4"


def test_forwarding_headers_ignored_when_untrusted(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.rate_limit, "trust_forwarded_for", False)
    request = _request({"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.4"})

    assert derive_rate_limit_key(request) == "ip:10.0.0.9"


def test_user_agent_hash_as_last_resort() -> None:
    request = _request({"User-Agent": "curl/8.0"}, client=None)
    expected = hashlib.sha256(b"curl/8.0").hexdigest()[:16]

    assert derive_rate_limit_key(request) == f"ua:{expected}"


def test_user_agent_hash_is_stable_without_header() -> None:
    first = derive_rate_limit_key(_request(client=None))
    second = derive_rate_limit_key(_request(client=None))

    assert first == second
    assert first.startswith("ua:")


def test_user_based_key_prefers_user() -> None:
    assert user_based_key(_request(_bearer({"sub": "bob"}))) == "user:bob"
    assert user_based_key(_request()) == "ip:10.0.0.9"


def test_ip_based_key_ignores_credentials() -> None:
    request = _request(_bearer({"sub": "bob"}))

    assert ip_based_key(request) == "ip:10.0.0.9"
    assert ip_based_key(_request(client=None)).startswith("ua:")
