from enum import Enum

from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, func,
    Numeric, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from .database import Base


class OrderStatus(str, Enum):
    NEW = "NEW"
    REGISTERED = "REGISTERED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    INVALID = "INVALID"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.PROCESSED, OrderStatus.INVALID)


NON_TERMINAL_STATUSES = (OrderStatus.NEW, OrderStatus.REGISTERED, OrderStatus.PROCESSING)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    login = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)

    orders = relationship("Order", back_populates="user")
    withdrawals = relationship("Withdrawal", back_populates="user")


class Order(Base):
    __tablename__ = "orders"

    # the number itself is the identity: one row per number across all users
    number = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.NEW.value)
    accrual = Column(Numeric(12, 2), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="orders")

    __table_args__ = (
        CheckConstraint("accrual IS NULL OR accrual >= 0", name="ck_orders_accrual_nonneg"),
        Index("ix_orders_user_uploaded", "user_id", "uploaded_at"),
        Index("ix_orders_status", "status"),
    )


class Balance(Base):
    __tablename__ = "balances"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    earned = Column(Numeric(12, 2), nullable=False, default=0)
    withdrawn = Column(Numeric(12, 2), nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("earned >= 0", name="ck_balances_earned_nonneg"),
        CheckConstraint("withdrawn >= 0", name="ck_balances_withdrawn_nonneg"),
        CheckConstraint("withdrawn <= earned", name="ck_balances_not_overdrawn"),
    )


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    order_number = Column(String(64), unique=True, nullable=False)
    sum = Column(Numeric(12, 2), nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="withdrawals")

    __table_args__ = (
        CheckConstraint("sum > 0", name="ck_withdrawals_sum_pos"),
        Index("ix_withdrawals_user_processed", "user_id", "processed_at"),
    )
