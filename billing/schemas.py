from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from billing.models import PaymentMethod, PaymentStatus, SubscriptionStatus


class PaymentLinkRequest(BaseModel):
    plan_id: int = Field(alias="planId")
    amount: int = Field(gt=0)              # minor currency units
    order_info: str = Field(alias="orderInfo", min_length=1, max_length=255)

    model_config = ConfigDict(populate_by_name=True)


class PaymentLinkResponse(BaseModel):
    pay_url: str = Field(alias="payUrl")
    order_id: str = Field(alias="orderId")

    model_config = ConfigDict(populate_by_name=True)


class GatewayCallback(BaseModel):
    """IPN body as MoMo posts it."""

    partner_code: str = Field(alias="partnerCode")
    order_id: str = Field(alias="orderId")
    request_id: str = Field(alias="requestId")
    amount: int
    order_info: str = Field(alias="orderInfo")
    order_type: str = Field(alias="orderType")
    trans_id: int = Field(alias="transId")
    result_code: int = Field(alias="resultCode")
    message: str
    pay_type: str = Field(default="", alias="payType")
    response_time: int = Field(alias="responseTime")
    extra_data: str = Field(default="", alias="extraData")
    signature: str

    model_config = ConfigDict(populate_by_name=True)


class CallbackAck(BaseModel):
    message: str
    order_id: str = Field(alias="orderId")
    trans_id: int = Field(alias="transId")

    model_config = ConfigDict(populate_by_name=True)


class PlanOut(BaseModel):
    id: int
    name: str
    price: int
    duration_days: int
    description: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PaymentOut(BaseModel):
    id: int
    user_id: int
    plan_id: int
    order_reference: str
    amount: int
    method: PaymentMethod
    status: PaymentStatus
    gateway_transaction_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    settled_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PaymentHistoryOut(PaymentOut):
    plan: PlanOut | None = None


class PaymentPage(BaseModel):
    data: List[PaymentOut]
    total: int
    page: int
    limit: int


class SubscriptionOut(BaseModel):
    user_id: int
    plan_type: str
    start_time: datetime
    end_time: datetime
    status: SubscriptionStatus
