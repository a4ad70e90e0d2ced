from __future__ import annotations
import contextvars

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

DEFAULT_TENANT = "default"

_tenant: contextvars.ContextVar[str] = contextvars.ContextVar("tenant_id", default=DEFAULT_TENANT)

def set_tenant_id(tenant_id: str | None) -> None:
    # audit rows store at most 64 chars
    _tenant.set((tenant_id or "").strip()[:64] or DEFAULT_TENANT)

def get_tenant_id() -> str:
    return _tenant.get()


class TenantMiddleware(BaseHTTPMiddleware):
    """Binds the organisation named in X-Tenant-Id to the request context."""

    async def dispatch(self, request: Request, call_next):
        set_tenant_id(request.headers.get("X-Tenant-Id"))
        return await call_next(request)
