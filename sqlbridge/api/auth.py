from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from sqlbridge.db.session import get_db
from sqlbridge.schemas.bridge import LoginIn, TokenOut
from sqlbridge.services.auth import _client_ip, authenticate_user, issue_token, rate_limit_login_or_429

router = APIRouter()


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    rate_limit_login_or_429(client_ip=_client_ip(request), login=payload.login)
    user = authenticate_user(db, payload.login, payload.password)
    return TokenOut(access_token=issue_token(user), user=user)
