import os
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

# Session tokens are issued by the auth service; we only verify them.
SECRET_KEY = os.getenv("SECRET_KEY", "change_me_now")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
SESSION_TOKEN_URL = os.getenv("SESSION_TOKEN_URL", "/auth/login")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=SESSION_TOKEN_URL, auto_error=False)


class CurrentUser(BaseModel):
    id: str


def decode_session_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning("session_token_decode_failed", error=str(e))
        raise


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> CurrentUser:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not authenticated")
    try:
        payload = decode_session_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")

    if payload.get("type", "access") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token type")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    return CurrentUser(id=str(user_id))
