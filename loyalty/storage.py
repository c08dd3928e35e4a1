# loyalty/storage.py
"""Storage contract shared by the request handlers and the accrual worker.

Two guarantees the rest of the code relies on:

* ``apply_order_outcome`` writes the order status/accrual and the ledger
  increment as one unit, and is a no-op for orders that are already terminal,
  so re-applying the same oracle answer never counts an accrual twice;
* ``record_withdrawal`` checks the available balance and debits it as one
  unit serialized per user, so concurrent withdrawals cannot overdraw.
"""
import abc
import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .errors import ConflictError, InsufficientFunds
from .models import NON_TERMINAL_STATUSES, OrderStatus
from .schemas import OrderRecord, UserRecord, WithdrawalRecord

ZERO = Decimal("0")


class Storage(abc.ABC):

    async def init(self) -> None:
        pass

    async def close(self) -> None:
        pass

    # users
    @abc.abstractmethod
    async def create_user(self, login: str, password_hash: str) -> UserRecord:
        """Raises ConflictError when the login is taken."""

    @abc.abstractmethod
    async def get_user_by_login(self, login: str) -> Optional[UserRecord]:
        ...

    @abc.abstractmethod
    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        ...

    # orders
    @abc.abstractmethod
    async def create_order(self, user_id: int, number: str) -> bool:
        """Insert a NEW order.

        Returns False when ``user_id`` already uploaded ``number``; raises
        ConflictError when another user owns it.
        """

    @abc.abstractmethod
    async def list_orders(self, user_id: int) -> List[OrderRecord]:
        ...

    @abc.abstractmethod
    async def fetch_non_terminal_orders(self) -> List[OrderRecord]:
        ...

    @abc.abstractmethod
    async def apply_order_outcome(
        self, number: str, status: OrderStatus, accrual: Optional[Decimal] = None
    ) -> bool:
        """Returns True when the order changed."""

    # balance
    @abc.abstractmethod
    async def get_balance(self, user_id: int) -> Tuple[Decimal, Decimal]:
        """(earned, withdrawn)"""

    @abc.abstractmethod
    async def record_withdrawal(self, user_id: int, order_number: str, amount: Decimal) -> WithdrawalRecord:
        """Raises InsufficientFunds or ConflictError (receipt id already used)."""

    @abc.abstractmethod
    async def list_withdrawals(self, user_id: int) -> List[WithdrawalRecord]:
        ...


class MemoryStorage(Storage):
    """Process-local storage for development without Postgres and for tests."""

    def __init__(self):
        self.users: Dict[int, UserRecord] = {}
        self.orders: Dict[str, OrderRecord] = {}
        self.balances: Dict[int, Tuple[Decimal, Decimal]] = {}
        self.withdrawals: List[WithdrawalRecord] = []
        self._logins: Dict[str, int] = {}
        self._receipts: set = set()
        self._user_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_user(self, login: str, password_hash: str) -> UserRecord:
        if login in self._logins:
            raise ConflictError(f"login {login!r} is already taken")
        user = UserRecord(id=len(self.users) + 1, login=login, password_hash=password_hash)
        self.users[user.id] = user
        self._logins[login] = user.id
        return user

    async def get_user_by_login(self, login: str) -> Optional[UserRecord]:
        user_id = self._logins.get(login)
        return self.users.get(user_id) if user_id is not None else None

    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        return self.users.get(user_id)

    async def create_order(self, user_id: int, number: str) -> bool:
        existing = self.orders.get(number)
        if existing is not None:
            if existing.user_id != user_id:
                raise ConflictError(f"order {number} was uploaded by another user")
            return False
        self.orders[number] = OrderRecord(
            number=number,
            user_id=user_id,
            status=OrderStatus.NEW,
            uploaded_at=datetime.now(timezone.utc),
        )
        return True

    async def list_orders(self, user_id: int) -> List[OrderRecord]:
        own = [o for o in reversed(list(self.orders.values())) if o.user_id == user_id]
        return sorted(own, key=lambda o: o.uploaded_at, reverse=True)

    async def fetch_non_terminal_orders(self) -> List[OrderRecord]:
        return [o.model_copy() for o in self.orders.values() if o.status in NON_TERMINAL_STATUSES]

    async def apply_order_outcome(
        self, number: str, status: OrderStatus, accrual: Optional[Decimal] = None
    ) -> bool:
        order = self.orders.get(number)
        if order is None or order.status.is_terminal or order.status == status:
            return False

        async with self._user_locks[order.user_id]:
            # re-check under the lock: a concurrent apply may have finished first
            order = self.orders[number]
            if order.status.is_terminal or order.status == status:
                return False
            update = {"status": status}
            if status is OrderStatus.PROCESSED:
                amount = accrual if accrual is not None else ZERO
                update["accrual"] = amount
                earned, withdrawn = await self.get_balance(order.user_id)
                self.balances[order.user_id] = (earned + amount, withdrawn)
            self.orders[number] = order.model_copy(update=update)
        return True

    async def get_balance(self, user_id: int) -> Tuple[Decimal, Decimal]:
        return self.balances.get(user_id, (ZERO, ZERO))

    async def record_withdrawal(self, user_id: int, order_number: str, amount: Decimal) -> WithdrawalRecord:
        async with self._user_locks[user_id]:
            earned, withdrawn = await self.get_balance(user_id)
            if earned - withdrawn < amount:
                raise InsufficientFunds(f"available {earned - withdrawn}, requested {amount}")
            if order_number in self._receipts:
                raise ConflictError(f"withdrawal {order_number} is already recorded")

            record = WithdrawalRecord(
                user_id=user_id,
                order_number=order_number,
                sum=amount,
                processed_at=datetime.now(timezone.utc),
            )
            self.withdrawals.append(record)
            self._receipts.add(order_number)
            self.balances[user_id] = (earned, withdrawn + amount)
            return record

    async def list_withdrawals(self, user_id: int) -> List[WithdrawalRecord]:
        own = [w for w in reversed(self.withdrawals) if w.user_id == user_id]
        return sorted(own, key=lambda w: w.processed_at, reverse=True)
