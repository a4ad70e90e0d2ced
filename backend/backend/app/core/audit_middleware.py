from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response

from app.core.tenant import get_tenant_id
from app.core.security import username_from_token
from app.db.session import SessionLocal
from app.core.audit import audit

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str:
    rid = request.headers.get("X-Request-Id") or request.headers.get("X-Request-ID")
    if rid:
        return rid
    return str(uuid.uuid4())


def _client_ip(request: Request) -> str | None:
    # Behind a proxy the first X-Forwarded-For hop is the client
    xff = request.headers.get("X-Forwarded-For")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _actor(request: Request) -> str:
    authz = request.headers.get("Authorization")
    if authz and authz.lower().startswith("bearer "):
        return username_from_token(authz.split(" ", 1)[1].strip()) or "anonymous"
    return "anonymous"


def _write(request: Request, request_id: str, action: str, status_code: int, duration_ms: int) -> None:
    with SessionLocal() as db:
        audit(
            db,
            actor=_actor(request),
            action=action,
            entity_type="http",
            entity_id=request.url.path[:64],
            payload={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": duration_ms,
            },
            request_id=request_id,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            status_code=status_code,
            success=200 <= status_code < 400,
            tenant_id=get_tenant_id(),
        )


async def audit_http_middleware(request: Request, call_next: Callable) -> Response:
    """Correlation id + audit trail for authz failures and crashes.

    - Adds X-Request-Id to every response
    - Audits 401/403 responses and unhandled exceptions
    """
    request_id = _get_request_id(request)
    start = time.perf_counter()

    try:
        response: Response = await call_next(request)
    except Exception:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.exception("unhandled error on %s %s [request_id=%s]", request.method, request.url.path, request_id)
        _write(request, request_id, "http.exception", 500, duration_ms)
        raise

    response.headers["X-Request-Id"] = request_id
    duration_ms = int((time.perf_counter() - start) * 1000)

    if response.status_code in (401, 403):
        logger.info("%s %s -> %s [request_id=%s]", request.method, request.url.path, response.status_code, request_id)
        _write(request, request_id, "http.request", response.status_code, duration_ms)

    return response
