from typing import List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing.auth import current_user, require_admin
from billing.checkout import open_payment_link
from billing.config import Settings, get_settings
from billing.database import get_db
from billing.exceptions import (
    AmountMismatch,
    DuplicateOrderReference,
    GatewayRejected,
    GatewayUnavailable,
    PlanNotFound,
)
from billing.gateway import MomoGateway
from billing.ledger import PaymentLedger, SubscriptionLedger
from billing.models import PaymentMethod, PaymentStatus
from billing.schemas import (
    PaymentLinkRequest,
    PaymentLinkResponse,
    PaymentHistoryOut,
    PaymentOut,
    PaymentPage,
    SubscriptionOut,
)
from billing.signature import SignatureCodec

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_codec(settings: Settings = Depends(get_settings)) -> SignatureCodec:
    return SignatureCodec(settings.momo_access_key, settings.momo_secret_key)


def get_gateway(
    request: Request,
    settings: Settings = Depends(get_settings),
    codec: SignatureCodec = Depends(get_codec),
) -> MomoGateway:
    # Shared connection pool, opened in the app lifespan
    return MomoGateway(settings, codec, http=request.app.state.http)


@router.post("/payments/momo/create", response_model=PaymentLinkResponse)
def create_payment_link(
    request: PaymentLinkRequest,
    claims: dict = Depends(current_user),
    db: Session = Depends(get_db),
    gateway: MomoGateway = Depends(get_gateway),
):
    try:
        payment, pay_url = open_payment_link(
            db,
            gateway,
            user_id=claims["user_id"],
            plan_id=request.plan_id,
            amount=request.amount,
            order_info=request.order_info,
        )
    except PlanNotFound:
        raise HTTPException(status_code=404, detail="Subscription plan not found")
    except AmountMismatch as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayUnavailable as e:
        raise HTTPException(status_code=503, detail=f"{e}, please try again")
    except GatewayRejected as e:
        raise HTTPException(status_code=502, detail=e.message)
    except DuplicateOrderReference:
        raise HTTPException(status_code=409, detail="Could not allocate an order reference, please try again")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record pending payment", user_id=claims["user_id"])
        raise HTTPException(status_code=500, detail="Failed to create payment")

    return PaymentLinkResponse(pay_url=pay_url, order_id=payment.order_reference)


@router.get("/payments/me", response_model=List[PaymentHistoryOut])
def my_payments(
    claims: dict = Depends(current_user),
    db: Session = Depends(get_db),
):
    return PaymentLedger(db).history(claims["user_id"])


@router.get("/payments/admin", response_model=PaymentPage)
def list_payments(
    user_id: int | None = Query(default=None, alias="userId"),
    plan_id: int | None = Query(default=None, alias="planId"),
    method: PaymentMethod | None = Query(default=None, alias="paymentMethod"),
    status: PaymentStatus | None = Query(default=None, alias="paymentStatus"),
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    claims: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = PaymentLedger(db).search(
        user_id=user_id,
        plan_id=plan_id,
        method=method,
        status=status,
        search=search,
        page=page,
        limit=limit,
    )
    return PaymentPage(
        data=[PaymentOut.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/subscriptions/me", response_model=SubscriptionOut)
def my_subscription(
    claims: dict = Depends(current_user),
    db: Session = Depends(get_db),
):
    subscription = SubscriptionLedger(db).current(claims["user_id"])
    if not subscription:
        raise HTTPException(status_code=404, detail="No subscription")

    return SubscriptionOut(
        user_id=subscription.user_id,
        plan_type=subscription.plan_type,
        start_time=subscription.start_time,
        end_time=subscription.end_time,
        status=subscription.effective_status(),
    )
