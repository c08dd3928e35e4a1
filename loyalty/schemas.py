# loyalty/schemas.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .models import OrderStatus


# 👤 Пользователь
class UserCredentials(BaseModel):
    login: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class UserRecord(BaseModel):
    id: int
    login: str
    password_hash: str

    class Config:
        from_attributes = True


# 📦 Заказ
class OrderRecord(BaseModel):
    number: str
    user_id: int
    status: OrderStatus
    accrual: Optional[Decimal] = None
    uploaded_at: datetime

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    number: str
    status: OrderStatus
    accrual: Optional[float] = None
    uploaded_at: datetime

    @classmethod
    def from_record(cls, rec: OrderRecord) -> "OrderOut":
        return cls(
            number=rec.number,
            status=rec.status,
            accrual=float(rec.accrual) if rec.accrual is not None else None,
            uploaded_at=rec.uploaded_at,
        )


# 💰 Баланс и списания
class BalanceOut(BaseModel):
    current: float
    withdrawn: float


class WithdrawRequest(BaseModel):
    order: str
    sum: Decimal


class WithdrawalRecord(BaseModel):
    user_id: int
    order_number: str
    sum: Decimal
    processed_at: datetime

    class Config:
        from_attributes = True


class WithdrawalOut(BaseModel):
    order: str
    sum: float
    processed_at: datetime

    @classmethod
    def from_record(cls, rec: WithdrawalRecord) -> "WithdrawalOut":
        return cls(order=rec.order_number, sum=float(rec.sum), processed_at=rec.processed_at)


# 🔁 Ответ accrual-системы
class AccrualStatus(str, Enum):
    REGISTERED = "REGISTERED"
    INVALID = "INVALID"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"


class AccrualResponse(BaseModel):
    order: str
    status: AccrualStatus
    accrual: Optional[Decimal] = Field(default=None, ge=0)
