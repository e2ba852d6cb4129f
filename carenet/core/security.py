from typing import Literal
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from carenet.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

Role = Literal["ward", "guardian"]

class Principal(BaseModel):
    user_id: str
    role: Role

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

async def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(http_bearer),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Principal:
    # In local, identity headers stand in for a token
    if creds is None and settings.ENV == "local" and x_user_id and x_user_role in ("ward", "guardian"):
        return Principal(user_id=x_user_id, role=x_user_role)
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")

    data = _decode_token(creds.credentials)
    user_id = data.get("sub") or data.get("user_id")
    role = data.get("role")
    if not user_id or role not in ("ward", "guardian"):
        raise HTTPException(status_code=401, detail="Token lacks subject or role")
    return Principal(user_id=str(user_id), role=role)

def require_role(*roles: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return principal
    return dep
