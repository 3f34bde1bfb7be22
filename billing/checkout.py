import structlog
from sqlalchemy.orm import Session

from billing.exceptions import AmountMismatch
from billing.gateway import MomoGateway
from billing.ledger import PaymentLedger
from billing.models import Payment, PaymentMethod
from billing.plans import PlanCatalog

logger = structlog.get_logger(__name__)


def open_payment_link(
    db: Session,
    gateway: MomoGateway,
    user_id: int,
    plan_id: int,
    amount: int,
    order_info: str,
) -> tuple[Payment, str]:
    """Validate the purchase, obtain a MoMo link and record the PENDING payment.

    Nothing is written unless the gateway handed back a URL, and the row is
    committed before the URL leaves this function so that the callback
    always finds it.
    """
    plan = PlanCatalog(db).get(plan_id)
    if amount != plan.price:
        raise AmountMismatch(amount, plan.price)

    ledger = PaymentLedger(db)
    link = gateway.create_link(user_id, plan_id, amount, order_info, is_taken=ledger.exists)

    payment = ledger.create_pending(
        Payment(
            user_id=user_id,
            plan_id=plan_id,
            order_reference=link.order_reference,
            request_id=link.request_id,
            amount=amount,
            method=PaymentMethod.MOMO,
        )
    )
    db.commit()
    db.refresh(payment)

    logger.info(
        "Pending payment recorded",
        order_id=payment.order_reference,
        user_id=user_id,
        plan_id=plan_id,
        amount=amount,
    )
    return payment, link.redirect_url
