from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models.auth import User, STAFF_ROLES
from app.core.tenant import get_tenant_id

bearer = HTTPBearer(auto_error=False)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
JWT_TTL_MIN = int(os.getenv("JWT_TTL_MIN", "30"))  # 30m default

IAM_ISSUER = os.getenv("IAM_ISSUER", "fencing-iam")
IAM_AUDIENCE = os.getenv("IAM_AUDIENCE", "fencing-backoffice")


@dataclass
class Principal:
    user_id: str | None = None
    username: str = "anonymous"
    tenant_id: str = "default"
    roles: list[str] = field(default_factory=list)


def _anonymous(tenant_id: str | None = None) -> Principal:
    return Principal(user_id=None, username="anonymous", tenant_id=tenant_id or get_tenant_id(), roles=[])


def create_access_token(user: User, tenant_id: str | None = None) -> str:
    """Mint a bearer token for a staff member.

    Tokens are normally issued by the identity service; this is used by
    service clients and tests that share the signing secret.
    """
    tenant_id = tenant_id or get_tenant_id()
    now = datetime.now(timezone.utc)
    payload = {
        "iss": IAM_ISSUER,
        "aud": IAM_AUDIENCE,
        "jti": secrets.token_urlsafe(16),
        "sub": user.id,
        "tid": tenant_id,
        "email": user.email,
        "roles": [user.role],
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=JWT_TTL_MIN)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> Principal:
    if not creds or not creds.credentials:
        return _anonymous()

    try:
        payload = jwt.decode(
            creds.credentials,
            JWT_SECRET,
            algorithms=[JWT_ALG],
            audience=IAM_AUDIENCE,
            issuer=IAM_ISSUER,
        )
    except JWTError:
        return _anonymous()

    user_id = payload.get("sub")
    tenant_id = payload.get("tid") or get_tenant_id()
    # Deactivated staff lose access before their token expires
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        return _anonymous(tenant_id)
    roles = [str(r) for r in (payload.get("roles") or []) if r]
    return Principal(user_id=user_id, username=payload.get("email") or user.email, tenant_id=tenant_id, roles=roles)


def require_roles(required: Iterable[str]) -> Callable:
    """Dependency factory: the caller must hold at least one of ``required``."""
    allowed = set(required)

    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.user_id:
            raise HTTPException(status_code=401, detail="Not authenticated")
        if not allowed.intersection(principal.roles):
            detail = {
                "error": "missing_roles",
                "required_any": sorted(allowed),
            }
            raise HTTPException(status_code=403, detail=detail)
        return principal

    return _dep


require_staff = require_roles(STAFF_ROLES)
require_admin = require_roles(["ADMIN"])


def username_from_token(token: str) -> str | None:
    """Best-effort actor name for audit rows written outside a request scope."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG], audience=IAM_AUDIENCE, issuer=IAM_ISSUER)
    except JWTError:
        return None
    return payload.get("email")
