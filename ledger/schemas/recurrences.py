from datetime import date
from decimal import Decimal
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, conint

from ..frequency import config_to_dict
from ..recurrence import RecurringTemplate

Frequency = Literal["daily", "weekly", "monthly", "yearly"]


class FrequencyConfig(BaseModel):
    days_of_week: Optional[List[conint(ge=0, le=6)]] = None  # 0 = Sunday
    day_of_month: Optional[Union[conint(ge=1, le=31), Literal["last"]]] = None
    month: Optional[conint(ge=1, le=12)] = None
    day: Optional[conint(ge=1, le=31)] = None


class RecurringExpenseBase(BaseModel):
    name: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    category: str
    frequency: Frequency
    frequency_config: FrequencyConfig = Field(default_factory=FrequencyConfig)
    start_date: date
    end_date: Optional[date] = None
    skip_holidays: bool = False
    is_active: bool = True


class RecurringExpenseCreate(RecurringExpenseBase):
    pass


class RecurringExpenseUpdate(BaseModel):
    name: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    category: Optional[str] = None
    frequency: Optional[Frequency] = None
    frequency_config: Optional[FrequencyConfig] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    skip_holidays: Optional[bool] = None
    is_active: Optional[bool] = None


class RecurringExpense(RecurringExpenseBase):
    id: int
    last_generated: Optional[date] = None
    next_generate: date

    @classmethod
    def from_template(cls, template: RecurringTemplate) -> "RecurringExpense":
        return cls(
            id=template.id,
            name=template.name,
            amount=template.amount,
            category=template.category,
            frequency=template.frequency,
            frequency_config=FrequencyConfig(**config_to_dict(template.config)),
            start_date=template.start_date,
            end_date=template.end_date,
            skip_holidays=template.skip_holidays,
            is_active=template.is_active,
            last_generated=template.last_generated,
            next_generate=template.next_generate,
        )
