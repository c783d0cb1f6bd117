import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class Transaction(BaseModel):
    id: int
    type: str
    date: dt.date
    amount: Decimal
    category: str
    note: Optional[str] = None
    currency: str
    recurring_template_id: Optional[int] = None
    is_auto_generated: bool = False
