"""
Test the storefront backend client against a mocked transport.
"""

import asyncio
import base64
import json
import sys
from pathlib import Path

import httpx
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront_sessions.backend_client import BackendClient, BackendError, unverified_claims


def encode_segment(part) -> str:
    return base64.urlsafe_b64encode(json.dumps(part).encode()).decode().rstrip("=")


def make_jwt(claims) -> str:
    # "c2ln" is base64url for "sig"; the signature itself is never checked here
    return f"{encode_segment({'alg': 'HS256', 'typ': 'JWT'})}.{encode_segment(claims)}.c2ln"


def client_for(handler) -> BackendClient:
    return BackendClient("http://backend.test", transport=httpx.MockTransport(handler))


def login_error(handler) -> BackendError:
    with pytest.raises(BackendError) as exc_info:
        asyncio.run(client_for(handler).login("a@example.com", "pw"))
    return exc_info.value


def test_unverified_claims():
    token = make_jwt({"userId": "42", "role": "admin"})
    assert unverified_claims(token) == {"userId": "42", "role": "admin"}
    assert unverified_claims("not-a-jwt") is None
    assert unverified_claims("a.!!!.c") is None


def test_unverified_claims_rejects_non_object_payload():
    assert unverified_claims(make_jwt(["userId", "42"])) is None
def test_login_with_user_payload():
    def handler(request):
        assert request.url.path == "/auth/login"
        return httpx.Response(200, json={"data": {
            "accessToken": "tok",
            "user": {"_id": "abc", "email": "a@example.com", "userName": "Ann", "role": "user"},
        }})

    result = asyncio.run(client_for(handler).login("a@example.com", "pw"))

    assert result.access_token == "tok"
    assert result.user.user_id == "abc"
    assert result.user.name == "Ann"


def test_login_falls_back_to_token_claims():
    token = make_jwt({"userId": "77", "email": "t@example.com", "name": "Tia", "role": "admin"})

    def handler(request):
        return httpx.Response(200, json={"data": {"accessToken": token}})

    result = asyncio.run(client_for(handler).login("t@example.com", "pw"))

    assert result.user.user_id == "77"
    assert result.user.role == "admin"


def test_login_rejected_keeps_status():
    def handler(request):
        return httpx.Response(403, json={"message": "Email not confirmed"})

    with pytest.raises(BackendError) as exc_info:
        asyncio.run(client_for(handler).login("a@example.com", "pw"))

    assert exc_info.value.status_code == 403
    assert exc_info.value.message == "Email not confirmed"


def test_login_backend_unreachable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(BackendError) as exc_info:
        asyncio.run(client_for(handler).login("a@example.com", "pw"))

    assert exc_info.value.status_code == 502


def test_logout_failures_are_not_raised():
    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    def failing(request):
        return httpx.Response(500)

    def ok(request):
        assert request.headers["authorization"] == "tok"
        return httpx.Response(200)

    assert asyncio.run(client_for(refused).logout("tok")) is False
    assert asyncio.run(client_for(failing).logout("tok")) is False
    assert asyncio.run(client_for(ok).logout("tok")) is True


def test_login_token_with_array_claims_is_bad_gateway():
    token = make_jwt(["not", "an", "object"])

    def handler(request):
        return httpx.Response(200, json={"data": {"accessToken": token}})

    error = login_error(handler)
    assert error.status_code == 502
    assert error.message == "No user data received"


def test_login_malformed_token_without_user_is_bad_gateway():
    def handler(request):
        return httpx.Response(200, json={"data": {"accessToken": "opaque-token"}})

    assert login_error(handler).status_code == 502


def test_login_data_not_an_object_is_bad_gateway():
    def handler(request):
        return httpx.Response(200, json={"data": ["tok"]})

    error = login_error(handler)
    assert error.status_code == 502
    assert error.message == "Malformed login response"


def test_login_user_not_an_object_is_bad_gateway():
    def handler(request):
        return httpx.Response(200, json={"data": {"accessToken": "tok", "user": "abc"}})

    error = login_error(handler)
    assert error.status_code == 502
    assert error.message == "No user data received"


def test_login_non_string_token_is_bad_gateway():
    def handler(request):
        return httpx.Response(200, json={"data": {"accessToken": 12345, "user": {"id": "1"}}})

    error = login_error(handler)
    assert error.status_code == 502
    assert error.message == "No access token received"
