"""Applies gateway callbacks (IPN) to the ledgers.

One callback is one unit of work: the payment transition and the
subscription extension commit together or not at all. Callbacks may arrive
more than once, out of order and concurrently; the conditional update in
``PaymentLedger.try_complete`` makes every delivery after the first a no-op.
"""

from dataclasses import dataclass
from typing import Callable, Mapping

import structlog
from sqlalchemy.orm import Session

from billing.exceptions import InvalidSignature
from billing.gateway import SUCCESS_RESULT_CODE
from billing.ledger import PaymentLedger, SubscriptionLedger
from billing.models import Payment, Subscription, utcnow
from billing.plans import PlanCatalog
from billing.signature import SignatureCodec

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    applied: bool
    payment: Payment
    subscription: Subscription | None = None


class SettlementCoordinator:
    def __init__(self, db: Session, codec: SignatureCodec, clock: Callable = utcnow):
        self.db = db
        self.codec = codec
        self.clock = clock
        self.payments = PaymentLedger(db)
        self.subscriptions = SubscriptionLedger(db)
        self.plans = PlanCatalog(db)

    def handle_callback(self, fields: Mapping[str, object]) -> SettlementResult:
        """``fields`` are the callback's wire fields, keyed by their camelCase names."""
        order_reference = fields.get("orderId")

        # Authenticate before any lookup so unsigned callers learn nothing
        if not self.codec.verify_callback(fields, fields.get("signature")):
            logger.warning("Rejected callback with invalid signature", order_id=order_reference)
            raise InvalidSignature(order_reference)

        try:
            if fields.get("resultCode") == SUCCESS_RESULT_CODE:
                result = self._complete(order_reference, str(fields.get("transId")))
            else:
                result = self._fail(order_reference, fields.get("message"), fields.get("resultCode"))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return result

    def _complete(self, order_reference: str, transaction_id: str) -> SettlementResult:
        now = self.clock()
        settlement = self.payments.try_complete(order_reference, transaction_id, now=now)
        payment = settlement.payment

        if not settlement.applied:
            logger.info(
                "Duplicate callback acknowledged",
                order_id=order_reference,
                status=payment.status.value,
            )
            return SettlementResult(applied=False, payment=payment)

        plan = self.plans.get(payment.plan_id)
        subscription = self.subscriptions.extend(
            payment.user_id, plan.plan_type, plan.duration_days, now=now
        )
        logger.info(
            "Payment settled",
            order_id=order_reference,
            user_id=payment.user_id,
            transaction_id=transaction_id,
        )
        return SettlementResult(applied=True, payment=payment, subscription=subscription)

    def _fail(self, order_reference: str, message, result_code) -> SettlementResult:
        payment = self.payments.mark_failed(order_reference, message, now=self.clock())
        logger.info(
            "Payment failed at gateway",
            order_id=order_reference,
            result_code=result_code,
            reason=message,
        )
        return SettlementResult(applied=False, payment=payment)
