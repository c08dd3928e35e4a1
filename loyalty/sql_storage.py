# loyalty/sql_storage.py
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from .database import create_engine, create_session_maker, create_tables
from .errors import ConflictError, InsufficientFunds, TransientError
from .models import NON_TERMINAL_STATUSES, Balance, Order, OrderStatus, User, Withdrawal
from .schemas import OrderRecord, UserRecord, WithdrawalRecord
from .storage import ZERO, Storage

_NON_TERMINAL = [s.value for s in NON_TERMINAL_STATUSES]

UNIQUE_VIOLATION = "23505"


def _is_unique_violation(err: IntegrityError) -> bool:
    # asyncpg and psycopg2 both expose the SQLSTATE as pgcode
    return getattr(err.orig, "pgcode", None) == UNIQUE_VIOLATION


class SQLStorage(Storage):
    """PostgreSQL storage (asyncpg driver)."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_maker = create_session_maker(engine)

    @classmethod
    def from_uri(cls, database_uri: str) -> "SQLStorage":
        return cls(create_engine(database_uri))

    async def init(self) -> None:
        async with self._wrap_errors():
            await create_tables(self.engine)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _wrap_errors(self) -> AsyncIterator[None]:
        try:
            yield
        except (SQLAlchemyError, OSError) as e:
            raise TransientError(f"storage unavailable: {e}") from e

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._wrap_errors():
            async with self.session_maker() as session:
                yield session

    # users
    async def create_user(self, login: str, password_hash: str) -> UserRecord:
        async with self._session() as session:
            user = User(login=login, password_hash=password_hash)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if not _is_unique_violation(e):
                    raise
                raise ConflictError(f"login {login!r} is already taken") from e
            return UserRecord.model_validate(user)

    async def get_user_by_login(self, login: str) -> Optional[UserRecord]:
        async with self._session() as session:
            res = await session.execute(select(User).where(User.login == login))
            user = res.scalar_one_or_none()
            return UserRecord.model_validate(user) if user else None

    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        async with self._session() as session:
            user = await session.get(User, user_id)
            return UserRecord.model_validate(user) if user else None

    # orders
    async def create_order(self, user_id: int, number: str) -> bool:
        async with self._session() as session:
            # atomic INSERT ... ON CONFLICT DO NOTHING: two racing uploads of the
            # same number cannot both create a row
            stmt = (
                pg_insert(Order.__table__)
                .values(
                    number=number,
                    user_id=user_id,
                    status=OrderStatus.NEW.value,
                    uploaded_at=datetime.now(timezone.utc),
                )
                .on_conflict_do_nothing(index_elements=["number"])
                .returning(Order.number)
            )
            inserted = (await session.execute(stmt)).first()
            await session.commit()
            if inserted is not None:
                return True

            res = await session.execute(select(Order.user_id).where(Order.number == number))
            owner = res.scalar_one()
            if owner != user_id:
                raise ConflictError(f"order {number} was uploaded by another user")
            return False

    async def list_orders(self, user_id: int) -> List[OrderRecord]:
        async with self._session() as session:
            res = await session.execute(
                select(Order).where(Order.user_id == user_id).order_by(Order.uploaded_at.desc())
            )
            return [OrderRecord.model_validate(o) for o in res.scalars().all()]

    async def fetch_non_terminal_orders(self) -> List[OrderRecord]:
        async with self._session() as session:
            res = await session.execute(
                select(Order).where(Order.status.in_(_NON_TERMINAL)).order_by(Order.uploaded_at)
            )
            return [OrderRecord.model_validate(o) for o in res.scalars().all()]

    async def apply_order_outcome(
        self, number: str, status: OrderStatus, accrual: Optional[Decimal] = None
    ) -> bool:
        amount = None
        if status is OrderStatus.PROCESSED:
            amount = accrual if accrual is not None else ZERO

        async with self._session() as session:
            async with session.begin():
                # the status guard makes a retried PROCESSED update hit zero rows,
                # and the row lock it takes serializes concurrent appliers
                stmt = (
                    update(Order)
                    .where(
                        Order.number == number,
                        Order.status.in_(_NON_TERMINAL),
                        Order.status != status.value,
                    )
                    .values(status=status.value, accrual=amount)
                    .returning(Order.user_id)
                )
                user_id = (await session.execute(stmt)).scalar_one_or_none()
                if user_id is None:
                    return False

                if amount is not None:
                    balances = Balance.__table__
                    ins = pg_insert(balances).values(user_id=user_id, earned=amount, withdrawn=ZERO)
                    ins = ins.on_conflict_do_update(
                        index_elements=["user_id"],
                        set_={"earned": balances.c.earned + ins.excluded.earned},
                    )
                    await session.execute(ins)
        return True

    # balance
    async def get_balance(self, user_id: int) -> Tuple[Decimal, Decimal]:
        async with self._session() as session:
            bal = await session.get(Balance, user_id)
            if bal is None:
                return ZERO, ZERO
            return bal.earned, bal.withdrawn

    async def record_withdrawal(self, user_id: int, order_number: str, amount: Decimal) -> WithdrawalRecord:
        async with self._session() as session:
            async with session.begin():
                # SELECT ... FOR UPDATE: a second debit for the same user waits here
                res = await session.execute(
                    select(Balance).where(Balance.user_id == user_id).with_for_update()
                )
                bal = res.scalar_one_or_none()
                earned = bal.earned if bal else ZERO
                withdrawn = bal.withdrawn if bal else ZERO
                if bal is None or earned - withdrawn < amount:
                    raise InsufficientFunds(f"available {earned - withdrawn}, requested {amount}")

                withdrawal = Withdrawal(
                    user_id=user_id,
                    order_number=order_number,
                    sum=amount,
                    processed_at=datetime.now(timezone.utc),
                )
                session.add(withdrawal)
                bal.withdrawn = withdrawn + amount
                try:
                    await session.flush()
                except IntegrityError as e:
                    # anything but the receipt id clash is a storage failure
                    if not _is_unique_violation(e):
                        raise
                    raise ConflictError(f"withdrawal {order_number} is already recorded") from e
            return WithdrawalRecord.model_validate(withdrawal)

    async def list_withdrawals(self, user_id: int) -> List[WithdrawalRecord]:
        async with self._session() as session:
            res = await session.execute(
                select(Withdrawal)
                .where(Withdrawal.user_id == user_id)
                .order_by(Withdrawal.processed_at.desc())
            )
            return [WithdrawalRecord.model_validate(w) for w in res.scalars().all()]
