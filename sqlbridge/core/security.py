import hmac
from datetime import datetime, timedelta, timezone

from jose import jwt
from passlib.context import CryptContext
from passlib.exc import MissingBackendError

# bcrypt hashes written by the old browser client stay verifiable;
# new hashes are always pbkdf2_sha256.
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

def is_password_hash(value: str) -> bool:
    try:
        return pwd_context.identify(value) is not None
    except (TypeError, ValueError):
        return False

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def hash_password_if_plain(value):
    if value is None or not isinstance(value, str) or is_password_hash(value):
        return value
    return hash_password(value)

def verify_password(password: str, stored: str | None) -> bool:
    if not stored:
        return False
    if is_password_hash(stored):
        try:
            return pwd_context.verify(password, stored)
        except (TypeError, ValueError, MissingBackendError):
            return False
    # Legacy rows that still hold a plaintext password.
    return hmac.compare_digest(str(password).encode("utf-8"), str(stored).encode("utf-8"))

def create_jwt(payload: dict, secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    data = payload.copy()
    data.update({"iat": int(now.timestamp()), "exp": int((now + expires_delta).timestamp())})
    return jwt.encode(data, secret, algorithm="HS256")

def decode_jwt(token: str, secret: str) -> dict:
    return jwt.decode(token, secret, algorithms=["HS256"])
