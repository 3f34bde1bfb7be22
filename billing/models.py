import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import relationship

from billing.database import Base


def utcnow() -> datetime:
    # Naive UTC; SQLite drops tzinfo on the way back
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PaymentMethod(str, enum.Enum):
    PAYPAL = "PAYPAL"
    CREDIT_CARD = "CREDIT_CARD"
    MOMO = "MOMO"
    ZALO_PAY = "ZALO_PAY"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class Plan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    plan_type = Column(String(50), nullable=False)     # tier granted, e.g. PREMIUM
    price = Column(Integer, nullable=False)            # minor currency units
    duration_days = Column(Integer, nullable=False)
    description = Column(Text)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    plan_id = Column(Integer, nullable=False)
    order_reference = Column(String(64), unique=True, index=True, nullable=False)
    request_id = Column(String(64))
    amount = Column(Integer, nullable=False)           # minor currency units
    method = Column(Enum(PaymentMethod, native_enum=False, length=20), nullable=False)
    status = Column(
        Enum(PaymentStatus, native_enum=False, length=20),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    gateway_transaction_id = Column(String(64))        # set on COMPLETED only
    failure_reason = Column(String(500))               # set on FAILED only
    created_at = Column(DateTime, nullable=False, default=utcnow)
    settled_at = Column(DateTime)

    # plan_id carries no FK constraint
    plan = relationship(
        Plan,
        primaryjoin="foreign(Payment.plan_id) == Plan.id",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return f"<Payment(order_reference={self.order_reference}, amount={self.amount}, status={self.status})>"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, unique=True, index=True, nullable=False)
    plan_type = Column(String(50), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(Enum(SubscriptionStatus, native_enum=False, length=20), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def effective_status(self, now: datetime | None = None) -> SubscriptionStatus:
        """Expiry is detected when read; nothing sweeps ACTIVE rows to EXPIRED."""
        now = now or utcnow()
        if self.status == SubscriptionStatus.ACTIVE and self.end_time <= now:
            return SubscriptionStatus.EXPIRED
        return self.status

    def __repr__(self) -> str:
        return f"<Subscription(user_id={self.user_id}, plan={self.plan_type}, expires={self.end_time})>"
