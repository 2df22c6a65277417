from fastapi import APIRouter
from sqlbridge.api import auth, tables, transaction

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(tables.router, prefix="/tables", tags=["Tables"])
router.include_router(transaction.router, prefix="/transaction", tags=["Transaction"])
