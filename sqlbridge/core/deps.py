from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlbridge.core.config import settings
from sqlbridge.core.security import decode_jwt

bearer = HTTPBearer(auto_error=False)

def get_current_user(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> dict:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    try:
        return decode_jwt(creds.credentials, settings.JWT_SECRET)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")

def require_api_user(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> dict | None:
    if not settings.API_AUTH_REQUIRED:
        return None
    return get_current_user(creds)
