"""Security dependencies, rate limiting and structured security event logging"""
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.db.redis import get_session, check_rate_limit as redis_check_rate_limit
from app.db.session import get_db
from app.core.config import settings
from app.models.user import User

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")


def _session_id_from_request(request: Request) -> Optional[str]:
    """Session id from the cookie (web) or a bearer header (mobile client)"""
    session_id = request.cookies.get("session_id")
    if session_id:
        return session_id
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def require_auth(request: Request) -> int:
    """Dependency: Require authentication, return user_id"""
    session_id = _session_id_from_request(request)

    if not session_id:
        raise HTTPException(401, "Not authenticated. Please log in.")

    user_id = get_session(session_id)
    if not user_id:
        raise HTTPException(401, "Session expired. Please log in again.")

    return user_id


def require_admin(user_id: int = Depends(require_auth), db: Session = Depends(get_db)) -> User:
    """Dependency: Require admin role"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_admin:
        raise HTTPException(403, "Admin access required")
    return user


def get_client_ip(request: Request) -> str:
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return client_ip


def check_webhook_rate_limit(request: Request) -> None:
    """Dependency: fixed-window limit on webhook deliveries per source IP"""
    identifier = f"webhook:{get_client_ip(request)}"
    if not redis_check_rate_limit(
        identifier,
        max_requests=settings.WEBHOOK_RATE_LIMIT_REQUESTS,
        window=settings.WEBHOOK_RATE_LIMIT_WINDOW
    ):
        log_security_event("WEBHOOK_RATE_LIMIT_EXCEEDED", request=request, level=logging.WARNING)
        raise HTTPException(429, "Rate limit exceeded")


def log_security_event(
    event_type: str,
    request: Optional[Request] = None,
    level: int = logging.INFO,
    **details
) -> str:
    """Emit one JSON line describing a security or audit event.

    Never pass raw secrets, signatures or contact details in ``details``.
    Returns the generated event id so callers can correlate follow-up logs.
    """
    event_id = secrets.token_hex(8)
    entry = {
        "eventId": event_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "eventType": event_type,
        "environment": settings.ENVIRONMENT,
        **details,
    }

    if request is not None:
        entry["request"] = {
            "ip": get_client_ip(request),
            "userAgent": request.headers.get("User-Agent", "unknown")[:50],
            "method": request.method,
            "path": request.url.path,
        }

    security_logger.log(level, f"SECURITY_EVENT {json.dumps(entry, default=str)}")
    return event_id


def log_api_access(
    request: Request,
    status_code: int = 200,
    error: Optional[str] = None
):
    """Log detailed API access information"""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "client_ip": get_client_ip(request),
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
