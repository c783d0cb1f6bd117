import datetime as dt
from typing import List, Optional

from fastapi import APIRouter, Depends

from .. import schemas
from ..repository import SqliteTransactionStore
from .deps import get_transaction_store

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@router.get("", response_model=List[schemas.Transaction])
def api_get_transactions(
    from_date: Optional[dt.date] = None,
    to_date: Optional[dt.date] = None,
    store: SqliteTransactionStore = Depends(get_transaction_store),
) -> List[schemas.Transaction]:
    """Get transactions with optional date filtering."""
    return [schemas.Transaction(**row) for row in store.list_transactions(from_date, to_date)]
