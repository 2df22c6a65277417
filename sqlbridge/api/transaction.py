from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sqlbridge.core.deps import require_api_user
from sqlbridge.db.session import get_db
from sqlbridge.schemas.bridge import TransactionRequest, TransactionResult
from sqlbridge.services.response_cache import ResponseCache, get_response_cache
from sqlbridge.services.transactions import run_transaction_service

router = APIRouter(dependencies=[Depends(require_api_user)])


@router.post("", response_model=TransactionResult)
def run_transaction(
    payload: TransactionRequest,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_response_cache),
):
    return run_transaction_service(payload, db, cache)
