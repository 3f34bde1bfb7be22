"""Payment and subscription ledgers.

Both ledgers work inside the caller's session and never commit: the
settlement coordinator owns the transaction that spans them.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from billing.exceptions import DuplicateOrderReference, PaymentNotFound
from billing.models import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Settlement:
    """Outcome of a conditional PENDING -> COMPLETED transition."""

    applied: bool
    payment: Payment


class PaymentLedger:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_reference: str) -> Payment | None:
        return (
            self.db.query(Payment)
            .filter_by(order_reference=order_reference)
            .populate_existing()
            .first()
        )

    def exists(self, order_reference: str) -> bool:
        return (
            self.db.query(Payment.id).filter_by(order_reference=order_reference).first()
            is not None
        )

    def create_pending(self, payment: Payment) -> Payment:
        if self.exists(payment.order_reference):
            raise DuplicateOrderReference(payment.order_reference)

        payment.status = PaymentStatus.PENDING
        payment.gateway_transaction_id = None
        payment.settled_at = None
        self.db.add(payment)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost a race on the unique index
            self.db.rollback()
            raise DuplicateOrderReference(payment.order_reference)
        return payment

    def _transition(self, order_reference: str, values: dict) -> int:
        return (
            self.db.query(Payment)
            .filter_by(order_reference=order_reference, status=PaymentStatus.PENDING)
            .update(values, synchronize_session=False)
        )

    def try_complete(
        self,
        order_reference: str,
        gateway_transaction_id: str,
        now: datetime | None = None,
    ) -> Settlement:
        """Mark a PENDING payment COMPLETED.

        A single guarded UPDATE: concurrent callers serialize on the row and
        exactly one of them sees ``applied=True``. A payment that is already
        COMPLETED or FAILED comes back untouched with ``applied=False``.
        """
        rowcount = self._transition(
            order_reference,
            {
                Payment.status: PaymentStatus.COMPLETED,
                Payment.gateway_transaction_id: gateway_transaction_id,
                Payment.settled_at: now or utcnow(),
            },
        )
        payment = self.get(order_reference)
        if payment is None:
            raise PaymentNotFound(order_reference)
        return Settlement(applied=rowcount == 1, payment=payment)

    def mark_failed(
        self,
        order_reference: str,
        reason: str,
        now: datetime | None = None,
    ) -> Payment:
        rowcount = self._transition(
            order_reference,
            {
                Payment.status: PaymentStatus.FAILED,
                Payment.failure_reason: (reason or "Unknown failure")[:500],
                Payment.settled_at: now or utcnow(),
            },
        )
        payment = self.get(order_reference)
        if payment is None:
            raise PaymentNotFound(order_reference)
        if not rowcount:
            logger.info(
                "Failure result for settled payment ignored",
                order_id=order_reference,
                status=payment.status.value,
            )
        return payment

    def history(self, user_id: int) -> list[Payment]:
        return (
            self.db.query(Payment)
            .options(joinedload(Payment.plan))
            .filter_by(user_id=user_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .all()
        )

    def search(
        self,
        user_id: int | None = None,
        plan_id: int | None = None,
        method: PaymentMethod | None = None,
        status: PaymentStatus | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Payment], int]:
        query = self.db.query(Payment)
        if user_id is not None:
            query = query.filter(Payment.user_id == user_id)
        if plan_id is not None:
            query = query.filter(Payment.plan_id == plan_id)
        if method is not None:
            query = query.filter(Payment.method == method)
        if status is not None:
            query = query.filter(Payment.status == status)
        if search:
            query = query.filter(
                or_(
                    Payment.order_reference.icontains(search, autoescape=True),
                    Payment.gateway_transaction_id.icontains(search, autoescape=True),
                )
            )

        total = query.count()
        rows = (
            query.order_by(Payment.created_at.desc(), Payment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total


_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SubscriptionLedger:
    def __init__(self, db: Session):
        self.db = db

    def current(self, user_id: int) -> Subscription | None:
        return self.db.query(Subscription).filter_by(user_id=user_id).first()

    def _insert_if_absent(self, user_id: int, plan_type: str, start: datetime, end: datetime) -> bool:
        insert = _UPSERT_DIALECTS.get(self.db.get_bind().dialect.name)
        if insert is None:
            # No ON CONFLICT support: rely on the unique index and let a
            # concurrent insert fail the whole unit of work.
            if self.current(user_id) is not None:
                return False
            self.db.add(
                Subscription(
                    user_id=user_id,
                    plan_type=plan_type,
                    start_time=start,
                    end_time=end,
                    status=SubscriptionStatus.ACTIVE,
                )
            )
            self.db.flush()
            return True

        stmt = (
            insert(Subscription)
            .values(
                user_id=user_id,
                plan_type=plan_type,
                start_time=start,
                end_time=end,
                status=SubscriptionStatus.ACTIVE,
                created_at=start,
                updated_at=start,
            )
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        return self.db.execute(stmt).rowcount == 1

    def extend(
        self,
        user_id: int,
        plan_type: str,
        duration_days: int,
        now: datetime | None = None,
    ) -> Subscription:
        """Grant ``duration_days`` of ``plan_type`` to the user.

        Time stacks: a renewal while still active extends from the current
        expiry, a renewal after expiry extends from ``now``.
        """
        now = now or utcnow()
        period = timedelta(days=duration_days)

        created = self._insert_if_absent(user_id, plan_type, now, now + period)

        subscription = (
            self.db.query(Subscription)
            .filter_by(user_id=user_id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        if not created:
            subscription.end_time = max(subscription.end_time, now) + period
            subscription.plan_type = plan_type
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.updated_at = now
            self.db.flush()

        logger.info(
            "Subscription extended",
            user_id=user_id,
            plan_type=plan_type,
            created=created,
            end_time=subscription.end_time.isoformat(),
        )
        return subscription
