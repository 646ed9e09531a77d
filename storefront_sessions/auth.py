"""
Authentication Helpers - Session Cookies

Signs the session ID into the `session` cookie, reads it back, and exposes
the FastAPI dependency that resolves a request to a validated session.
"""

from datetime import datetime
from typing import Optional

from fastapi import HTTPException, Request, Response
from itsdangerous import BadSignature, URLSafeSerializer

from .session_manager import SessionConfig, SessionManager
from .session_store import SessionRecord

SESSION_COOKIE = "session"
AUTH_TOKEN_COOKIE = "auth_token"


def get_serializer(secret_key: str) -> URLSafeSerializer:
    return URLSafeSerializer(secret_key, salt="session-cookie")


def sign_session_id(secret_key: str, session_id: str) -> str:
    """Sign a session ID to prevent tampering."""
    return get_serializer(secret_key).dumps(session_id)


def verify_session_id(secret_key: str, signed_session_id: str) -> Optional[str]:
    """Verify and extract session ID from signed value."""
    try:
        session_id = get_serializer(secret_key).loads(signed_session_id)
    except BadSignature:
        return None
    return session_id if isinstance(session_id, str) else None


def get_client_ip(request: Request) -> str:
    """Client IP, honouring the reverse proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_session_token(request: Request) -> Optional[str]:
    """Unsigned session ID from the cookie, or None if absent or tampered with."""
    signed_session_id = request.cookies.get(SESSION_COOKIE)
    if not signed_session_id:
        return None
    return verify_session_id(request.app.state.secret_key, signed_session_id)


def set_session_cookie(
    response: Response,
    secret_key: str,
    config: SessionConfig,
    session_id: str,
    expires_at: datetime,
    now: datetime,
) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=sign_session_id(secret_key, session_id),
        httponly=True,
        secure=config.secure_only,
        samesite=config.same_site,
        max_age=max(0, int((expires_at - now).total_seconds())),
        path="/",
    )


def clear_session_cookie(response: Response, config: SessionConfig) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value="",
        httponly=True,
        secure=config.secure_only,
        samesite=config.same_site,
        max_age=0,
        path="/",
    )


def set_auth_token_cookie(response: Response, config: SessionConfig, access_token: str) -> None:
    response.set_cookie(
        key=AUTH_TOKEN_COOKIE,
        value=access_token,
        httponly=True,
        secure=config.secure_only,
        samesite=config.same_site,
        max_age=int(config.max_age.total_seconds()),
        path="/",
    )


def clear_auth_token_cookie(response: Response, config: SessionConfig) -> None:
    response.set_cookie(
        key=AUTH_TOKEN_COOKIE,
        value="",
        httponly=True,
        secure=config.secure_only,
        samesite=config.same_site,
        max_age=0,
        path="/",
    )


async def get_current_session(request: Request) -> SessionRecord:
    """
    FastAPI dependency to get the current validated session.
    Raises 401 if not authenticated; never says why.
    """
    session_id = get_session_token(request)
    if not session_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    manager = get_session_manager(request)
    session = manager.validate_session(session_id, get_client_ip(request))
    if not session:
        raise HTTPException(status_code=401, detail="Not authenticated")

    return session


async def require_admin(request: Request) -> SessionRecord:
    """Like get_current_session, but 403 for non-admin roles."""
    session = await get_current_session(request)
    if session.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return session
