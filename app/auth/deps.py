import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt import PyJWTError
from app.auth.jwt import decode_token

bearer = HTTPBearer(auto_error=False)
logger = logging.getLogger("app.auth")


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user_id(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> str:
    if not creds:
        raise _unauthorized()
    try:
        data = decode_token(creds.credentials)
    except PyJWTError as exc:
        logger.info("auth:rejected token err=%s", exc.__class__.__name__)
        raise _unauthorized()
    if data.get("typ") != "access" or not data.get("sub"):
        raise _unauthorized()
    return str(data["sub"])
