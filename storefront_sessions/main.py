"""
Storefront Session Service - FastAPI Backend

Owns login sessions for the storefront: login/logout, "who am I", the
device list, remote logout, session extension and session maintenance.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from starlette.middleware.base import BaseHTTPMiddleware

from . import auth
from .backend_client import BackendClient, BackendError
from .config import load_config, session_config_from
from .session_manager import SessionManager
from .session_store import SessionRecord, SessionStoreError

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('storefront')
audit_logger = logging.getLogger('storefront.audit')

VERSION = "1.0.0"


# Pydantic models for API
class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class LogoutSessionRequest(BaseModel):
    session_id: Optional[str] = None

    @field_validator('session_id')
    @classmethod
    def strip_session_id(cls, v):
        return v.strip() if v else v


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: str


def user_from_session(session: SessionRecord) -> UserResponse:
    return UserResponse(id=session.user_id, email=session.email, name=session.name, role=session.role)


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


def create_app(
    config: Optional[dict] = None,
    session_manager: Optional[SessionManager] = None,
    backend_client: Optional[BackendClient] = None,
) -> FastAPI:
    """Build the application. Collaborators can be injected for tests."""
    config = config if config is not None else load_config()
    manager = session_manager or SessionManager(session_config_from(config))
    backend = backend_client or BackendClient(
        config["backend"]["api_url"],
        timeout=config["backend"].get("timeout", 10.0),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the expiry sweep for as long as the app is up."""
        manager.start_sweeper()
        yield
        manager.shutdown()

    app = FastAPI(
        title="Storefront Sessions",
        description="Login session service for the storefront",
        version=VERSION,
        lifespan=lifespan
    )
    app.state.session_manager = manager
    app.state.backend_client = backend
    app.state.secret_key = config["secret_key"]

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get("cors", {}).get("allow_origins", []),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["content-type"],
    )

    @app.exception_handler(SessionStoreError)
    async def session_store_error_handler(request: Request, exc: SessionStoreError):
        logger.error("Session store failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # Authentication Routes

    @app.post("/api/auth/login")
    async def login(body: LoginRequest, request: Request):
        """Verify credentials with the backend and open a session."""
        if not body.email or not body.password:
            raise HTTPException(status_code=400, detail="Email and password are required")

        try:
            result = await backend.login(body.email, body.password)
        except BackendError as e:
            audit_logger.info("LOGIN_FAILED email=%s status=%d", body.email, e.status_code)
            raise HTTPException(status_code=e.status_code, detail=e.message)

        ticket = manager.create_session(
            user_id=result.user.user_id,
            email=result.user.email,
            name=result.user.name,
            role=result.user.role,
            ip_address=auth.get_client_ip(request),
            user_agent=auth.get_user_agent(request),
        )

        response = JSONResponse({
            "success": True,
            "user": {
                "id": result.user.user_id,
                "email": result.user.email,
                "name": result.user.name,
                "role": result.user.role,
            },
            "expires_at": ticket.expires_at.isoformat(),
        })
        auth.set_session_cookie(
            response, app.state.secret_key, manager.config,
            ticket.session_id, ticket.expires_at, manager.now(),
        )
        auth.set_auth_token_cookie(response, manager.config, result.access_token)
        audit_logger.info("LOGIN email=%s user=%s", result.user.email, result.user.user_id)
        return response

    @app.post("/api/auth/logout")
    async def logout(request: Request):
        """Destroy the current session and clear cookies."""
        session_id = auth.get_session_token(request)
        if session_id:
            manager.destroy_session(session_id)

        access_token = request.cookies.get(auth.AUTH_TOKEN_COOKIE)
        if access_token:
            # Cookie cleanup goes ahead even if the backend is down
            await backend.logout(access_token)

        response = JSONResponse({"success": True, "message": "Logged out successfully"})
        auth.clear_session_cookie(response, manager.config)
        auth.clear_auth_token_cookie(response, manager.config)
        return response

    @app.get("/api/auth/me")
    async def me(session: SessionRecord = Depends(auth.get_current_session)):
        """Identity of the logged-in user."""
        return {"success": True, "user": user_from_session(session)}

    @app.get("/api/auth/sessions")
    async def list_sessions(session: SessionRecord = Depends(auth.get_current_session)):
        """All of the user's sessions, most recently used first."""
        now = manager.now()
        sessions = [
            {
                "session_id": s.session_id,
                "login_time": s.login_time.isoformat(),
                "last_activity": s.last_activity.isoformat(),
                "expires_at": s.expires_at.isoformat(),
                "ip_address": s.ip_address,
                "user_agent": s.user_agent,
                "is_active": s.expires_at > now,
                "is_current": s.session_id == session.session_id,
            }
            for s in sorted(
                manager.get_user_sessions(session.user_id),
                key=lambda s: s.last_activity,
                reverse=True,
            )
        ]
        return {
            "sessions": sessions,
            "total_sessions": len(sessions),
            "active_sessions": sum(1 for s in sessions if s["is_active"]),
        }

    @app.delete("/api/auth/sessions")
    async def cleanup_own_sessions(session: SessionRecord = Depends(auth.get_current_session)):
        """Sweep the current user's expired sessions."""
        cleaned = manager.cleanup_expired_sessions(session.user_id)
        return {
            "success": True,
            "message": f"Cleaned up {cleaned} expired sessions",
            "cleaned_count": cleaned,
        }

    @app.post("/api/auth/logout-session")
    async def logout_session(body: LogoutSessionRequest, session: SessionRecord = Depends(auth.get_current_session)):
        """Terminate one of the user's own sessions."""
        if not body.session_id:
            raise HTTPException(status_code=400, detail="Session ID is required")

        owned = {s.session_id for s in manager.get_user_sessions(session.user_id)}
        if body.session_id not in owned:
            raise HTTPException(status_code=404, detail="Session not found")

        manager.destroy_session(body.session_id)
        audit_logger.info("REMOTE_LOGOUT user=%s session=%s", session.user_id, body.session_id[:8])

        response = JSONResponse({"success": True, "message": "Session terminated successfully"})
        if body.session_id == session.session_id:
            auth.clear_session_cookie(response, manager.config)
        return response

    @app.post("/api/auth/logout-all-other-sessions")
    async def logout_all_other_sessions(session: SessionRecord = Depends(auth.get_current_session)):
        """Log out every other device of the user."""
        count = manager.destroy_all_user_sessions(session.user_id, except_session_id=session.session_id)
        if count == 0:
            message = "No other sessions to logout"
        else:
            message = f"Successfully logged out from {count} other sessions"
        return {"success": True, "message": message, "logged_out_count": count}

    @app.post("/api/auth/extend-session")
    async def extend_session(request: Request):
        """Swap a current or recently expired session for a fresh one."""
        session_id = auth.get_session_token(request)
        if not session_id:
            raise HTTPException(status_code=401, detail="Not authenticated")

        ticket = manager.extend_session(
            session_id,
            ip_address=auth.get_client_ip(request),
            user_agent=auth.get_user_agent(request),
        )
        if not ticket:
            raise HTTPException(status_code=401, detail="Not authenticated")

        response = JSONResponse({
            "success": True,
            "expires_at": ticket.expires_at.isoformat(),
            "message": "Session extended successfully",
        })
        auth.set_session_cookie(
            response, app.state.secret_key, manager.config,
            ticket.session_id, ticket.expires_at, manager.now(),
        )
        return response

    # Admin Routes

    @app.get("/api/admin/sessions/stats")
    async def session_stats(session: SessionRecord = Depends(auth.require_admin)):
        stats = manager.get_session_stats()
        return {
            "total_sessions": stats.total_sessions,
            "active_sessions": stats.active_sessions,
            "unique_users": stats.unique_users,
            "expired_sessions": stats.expired_sessions,
        }

    @app.post("/api/admin/sessions/cleanup")
    async def cleanup_all_sessions(session: SessionRecord = Depends(auth.require_admin)):
        """Process-wide sweep of expired sessions."""
        cleaned = manager.cleanup_expired_sessions()
        audit_logger.info("ADMIN_CLEANUP user=%s cleaned=%d", session.user_id, cleaned)
        return {"success": True, "cleaned_count": cleaned}

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": VERSION}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    config = load_config()
    uvicorn.run(
        "storefront_sessions.main:app",
        host=config["server"]["host"],
        port=config["server"]["port"],
        reload=config["server"].get("debug", False)
    )
