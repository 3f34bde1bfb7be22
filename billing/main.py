from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import Body, Depends, FastAPI, HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing.config import get_settings
from billing.database import Base, engine, get_db
from billing.exceptions import BillingError, InvalidSignature, PaymentNotFound
from billing.logs import configure_logging
from billing.routes import get_codec, router
from billing.schemas import CallbackAck, GatewayCallback
from billing.settlement import SettlementCoordinator
from billing.signature import SignatureCodec

settings = get_settings()
configure_logging(settings)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.http = httpx.Client(timeout=settings.gateway_timeout)
    yield
    app.state.http.close()


app = FastAPI(title="Media Billing Service", lifespan=lifespan)

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.post("/payments/momo/callback", response_model=CallbackAck)
def momo_callback(
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    codec: SignatureCodec = Depends(get_codec),
):
    try:
        callback = GatewayCallback.model_validate(payload)
    except ValidationError:
        logger.warning("Rejected malformed callback", order_id=payload.get("orderId"))
        raise HTTPException(status_code=400, detail="Invalid payload")

    try:
        SettlementCoordinator(db, codec).handle_callback(callback.model_dump(by_alias=True))
    except InvalidSignature:
        raise HTTPException(status_code=400, detail="Invalid signature")
    except PaymentNotFound:
        logger.warning("Callback for unknown order", order_id=callback.order_id)
        raise HTTPException(status_code=404, detail="Payment not found")
    except (SQLAlchemyError, BillingError):
        logger.exception("Failed to process callback", order_id=callback.order_id)
        raise HTTPException(status_code=500, detail="Failed to process callback")

    # Receipt, not outcome: replays and failure results are acknowledged too
    return CallbackAck(message="Success", order_id=callback.order_id, trans_id=callback.trans_id)


@app.get("/health")
def health():
    return {"ok": True}
