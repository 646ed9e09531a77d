"""
Storefront Backend Client

Talks to the storefront API that owns user accounts. Credentials are
verified there; this service only keeps the resulting login session.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from jose import JWTError, jwt

logger = logging.getLogger('storefront.http')


class BackendError(Exception):
    """The backend refused a request or could not be reached."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class BackendUser:
    user_id: str
    email: str
    name: str
    role: str


@dataclass
class LoginResult:
    user: BackendUser
    access_token: str


def unverified_claims(token: str) -> Optional[dict]:
    """Claims of a JWT without checking the signature (the backend already did)."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    return claims if isinstance(claims, dict) else None


class BackendClient:
    """Async HTTP client for the storefront backend."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def login(self, email: str, password: str) -> LoginResult:
        """Verify credentials. Raises BackendError when they are rejected."""
        try:
            async with self._client() as client:
                response = await client.post("/auth/login", json={"email": email, "password": password})
        except httpx.HTTPError as e:
            logger.warning("Backend login call failed: %s", e)
            raise BackendError(502, "Authentication service unavailable") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            raise BackendError(response.status_code, data.get("message") or "Login failed")

        payload = data.get("data")
        if not isinstance(payload, dict):
            raise BackendError(502, "Malformed login response")

        access_token = payload.get("accessToken")
        if not access_token or not isinstance(access_token, str):
            raise BackendError(502, "No access token received")

        user = payload.get("user")
        if not user:
            # Older backend builds only return the token
            claims = unverified_claims(access_token)
            if not claims:
                raise BackendError(502, "No user data received")
            user = {
                "id": claims.get("userId"),
                "email": claims.get("email") or email,
                "name": claims.get("name") or "Unknown User",
                "role": claims.get("role") or "user",
            }
        elif not isinstance(user, dict):
            raise BackendError(502, "No user data received")

        user_id = user.get("id") or user.get("_id")
        if not user_id:
            raise BackendError(502, "No user id received")

        return LoginResult(
            user=BackendUser(
                user_id=str(user_id),
                email=user.get("email") or email,
                name=user.get("name") or user.get("userName") or user.get("email") or email,
                role=user.get("role") or "user",
            ),
            access_token=access_token,
        )

    async def logout(self, access_token: str) -> bool:
        """Tell the backend to drop its token. Failures are logged, not raised."""
        try:
            async with self._client() as client:
                response = await client.post(
                    "/auth/logout",
                    headers={"Authorization": access_token},
                )
        except httpx.HTTPError as e:
            logger.warning("Backend logout call failed: %s", e)
            return False

        if response.status_code >= 400:
            logger.warning("Backend logout returned %d, continuing", response.status_code)
            return False
        return True
