"""Authentication middleware - bearer token pass-through with role guard.

The CRM backend issues and verifies the JWT. This service forwards it
upstream unchanged and only reads its claims to decide which pages a user
may open.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from crm_pipeline.config import settings

security = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    token: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


def read_principal(token: str) -> Principal:
    """Read identity claims without checking the signature."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    return Principal(
        token=token,
        user_id=claims.get("userId") or claims.get("sub"),
        email=claims.get("email"),
        role=claims.get("role"),
    )


def require_token(credentials: HTTPAuthorizationCredentials = Security(security)) -> Principal:
    if not credentials:
        raise HTTPException(status_code=401, detail="No token provided")
    return read_principal(credentials.credentials)


def require_pipeline_role(principal: Principal = Depends(require_token)) -> Principal:
    """Pipeline pages are for admins and sales managers."""
    if principal.role not in settings.pipeline_roles:
        raise HTTPException(status_code=403, detail="Not allowed to view the pipeline")
    return principal
