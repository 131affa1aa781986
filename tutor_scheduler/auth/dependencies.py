import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tutor_scheduler.auth import jwt_handler
from tutor_scheduler.core import config

security = HTTPBearer()


def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = (payload.get("sub") or "").strip().lower()
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    if payload.get("role") != jwt_handler.ADMIN_ROLE and email not in config.ADMIN_EMAILS:
        raise HTTPException(status_code=403, detail="Only admins can change availability.")
    return email
