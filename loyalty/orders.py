# loyalty/orders.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from . import luhn
from .auth import get_current_user
from .deps import get_storage
from .errors import ValidationError
from .schemas import OrderOut, OrderRecord
from .storage import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user/orders", tags=["orders"])


async def submit_order(storage: Storage, user_id: int, number: str) -> bool:
    """Accept an order number for accrual. True when a new order was created."""
    number = number.strip()
    if not luhn.is_valid(number):
        raise ValidationError(f"invalid order number {number!r}")
    created = await storage.create_order(user_id, number)
    if created:
        logger.info("user %d uploaded order %s", user_id, number)
    return created


async def list_orders(storage: Storage, user_id: int) -> List[OrderRecord]:
    return await storage.list_orders(user_id)


# 📥 Загрузка номера заказа (text/plain)
@router.post("")
async def upload_order(
    request: Request,
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_current_user),
):
    if not request.headers.get("content-type", "").startswith("text/plain"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid content-type")
    body = (await request.body()).decode("utf-8", errors="replace").strip()
    if not body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request body")

    created = await submit_order(storage, user_id, body)
    if created:
        return Response(status_code=status.HTTP_202_ACCEPTED)
    return Response(status_code=status.HTTP_200_OK)


# 🧾 История заказов текущего пользователя
@router.get("", response_model=List[OrderOut], response_model_exclude_none=True)
async def get_user_orders(
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_current_user),
):
    orders = await list_orders(storage, user_id)
    if not orders:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return [OrderOut.from_record(o) for o in orders]
