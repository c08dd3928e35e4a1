# loyalty/balance.py
"""Balance queries and the withdrawal coordinator.

A withdrawal is validated here and then handed to the storage, which checks
the available balance and records the debit in one step serialized per user.
Every failure goes back to the caller; nothing is retried behind its back.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import List

from fastapi import APIRouter, Depends, Response, status

from . import luhn
from .auth import get_current_user
from .deps import get_storage
from .errors import ValidationError
from .schemas import BalanceOut, WithdrawalOut, WithdrawalRecord, WithdrawRequest
from .storage import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["balance"])


async def get_balance(storage: Storage, user_id: int) -> BalanceOut:
    earned, withdrawn = await storage.get_balance(user_id)
    return BalanceOut(current=float(earned - withdrawn), withdrawn=float(withdrawn))


async def withdraw(storage: Storage, user_id: int, order_number: str, amount) -> WithdrawalRecord:
    if not luhn.is_valid(order_number):
        raise ValidationError(f"invalid order number {order_number!r}")
    try:
        amount = Decimal(str(amount))
    except InvalidOperation:
        raise ValidationError(f"invalid withdrawal sum {amount!r}")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("withdrawal sum must be positive")
    # balances are kept in whole cents
    if amount.normalize().as_tuple().exponent < -2:
        raise ValidationError(f"withdrawal sum {amount} has more than two decimal places")

    record = await storage.record_withdrawal(user_id, order_number, amount)
    logger.info("user %d withdrew %s against %s", user_id, amount, order_number)
    return record


async def list_withdrawals(storage: Storage, user_id: int) -> List[WithdrawalRecord]:
    return await storage.list_withdrawals(user_id)


# 💰 Текущий баланс
@router.get("/balance", response_model=BalanceOut)
async def user_balance(
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_current_user),
):
    return await get_balance(storage, user_id)


# 💸 Списание баллов
@router.post("/balance/withdraw")
async def user_withdraw(
    payload: WithdrawRequest,
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_current_user),
):
    await withdraw(storage, user_id, payload.order, payload.sum)
    return Response(status_code=status.HTTP_200_OK)


# 📜 История списаний
@router.get("/withdrawals", response_model=List[WithdrawalOut])
async def user_withdrawals(
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_current_user),
):
    records = await list_withdrawals(storage, user_id)
    if not records:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return [WithdrawalOut.from_record(r) for r in records]
