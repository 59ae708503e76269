from datetime import datetime, timedelta, timezone
from fastapi import HTTPException, Request
import jwt
from typing import Optional
from uuid import UUID

from agro_orders.application.schemas import Caller
from agro_orders.core import set_request_context
from agro_orders.core_settings import get_settings
from agro_orders.domain.enums import Role

BEARER_PREFIX = "Bearer "

def create_access_token(subject: str, role: str, expires_minutes: int = 60) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(subject),
        "role": getattr(role, "value", role),
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

async def get_caller(request: Request) -> Caller:
    """Resolve the bearer token into the calling user and role."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    token_data = decode_access_token(auth_header[len(BEARER_PREFIX):])
    if not token_data:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        caller = Caller(id=UUID(str(token_data.get("sub"))), role=Role(token_data.get("role")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token claims")
    set_request_context(caller_id=str(caller.id), caller_role=caller.role.value)
    return caller
