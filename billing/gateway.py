"""MoMo "captureWallet" client.

Builds and signs the create-payment request and turns the gateway's answer
into either a redirect URL or a typed error. It never touches the database:
persisting the PENDING payment is the caller's job.
"""

import base64
import json
import uuid
from dataclasses import dataclass
from typing import Callable

import httpx
import structlog

from billing.config import Settings
from billing.exceptions import DuplicateOrderReference, GatewayRejected, GatewayUnavailable
from billing.signature import SignatureCodec

logger = structlog.get_logger(__name__)

REQUEST_TYPE = "captureWallet"
SUCCESS_RESULT_CODE = 0
MAX_REFERENCE_ATTEMPTS = 5


@dataclass(frozen=True)
class PaymentLink:
    redirect_url: str
    order_reference: str
    request_id: str


def new_order_reference(user_id: int) -> str:
    return f"ORD{user_id}-{uuid.uuid4().hex[:12]}"


def new_request_id() -> str:
    return f"REQ-{uuid.uuid4().hex}"


def encode_extra_data(user_id: int, plan_id: int) -> str:
    raw = json.dumps({"userId": user_id, "planId": plan_id}, separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


class MomoGateway:
    def __init__(
        self,
        settings: Settings,
        codec: SignatureCodec,
        http: httpx.Client | None = None,
    ):
        self.settings = settings
        self.codec = codec
        self.http = http or httpx.Client(timeout=settings.gateway_timeout)

    def close(self) -> None:
        self.http.close()

    def _allocate_reference(self, user_id: int, is_taken: Callable[[str], bool] | None) -> str:
        for _ in range(MAX_REFERENCE_ATTEMPTS):
            candidate = new_order_reference(user_id)
            if is_taken is None or not is_taken(candidate):
                return candidate
            logger.warning("Order reference collision, regenerating", order_id=candidate)
        raise DuplicateOrderReference(candidate)

    def build_request(self, order_reference: str, request_id: str, amount: int,
                      order_info: str, extra_data: str) -> dict:
        body = {
            "partnerCode": self.settings.momo_partner_code,
            "partnerName": self.settings.momo_partner_name,
            "storeId": self.settings.momo_store_id,
            "requestId": request_id,
            "amount": amount,
            "orderId": order_reference,
            "orderInfo": order_info,
            "redirectUrl": self.settings.momo_redirect_url,
            "ipnUrl": self.settings.momo_ipn_url,
            "lang": self.settings.momo_lang,
            "extraData": extra_data,
            "requestType": REQUEST_TYPE,
            "autoCapture": True,
            "orderGroupId": "",
        }
        body["signature"] = self.codec.sign_request(body)
        return body

    def create_link(
        self,
        user_id: int,
        plan_id: int,
        amount: int,
        order_info: str,
        is_taken: Callable[[str], bool] | None = None,
    ) -> PaymentLink:
        order_reference = self._allocate_reference(user_id, is_taken)
        request_id = new_request_id()
        body = self.build_request(
            order_reference,
            request_id,
            amount,
            order_info,
            encode_extra_data(user_id, plan_id),
        )

        try:
            response = self.http.post(self.settings.momo_api_url, json=body)
        except httpx.TimeoutException:
            logger.error("MoMo create payment timed out", order_id=order_reference)
            raise GatewayUnavailable("Payment gateway timeout")
        except httpx.TransportError as e:
            logger.error("MoMo create payment failed", order_id=order_reference, error=repr(e))
            raise GatewayUnavailable("Payment gateway unavailable")

        try:
            data = response.json()
        except ValueError:
            logger.error(
                "Bad response from MoMo",
                order_id=order_reference,
                status_code=response.status_code,
            )
            raise GatewayUnavailable("Bad response from payment gateway")

        result_code = data.get("resultCode")
        if result_code != SUCCESS_RESULT_CODE:
            message = data.get("message") or "Unknown error"
            logger.error(
                "MoMo refused payment creation",
                order_id=order_reference,
                result_code=result_code,
                message=message,
            )
            raise GatewayRejected(f"MoMo API error: {message}", result_code=result_code)

        pay_url = data.get("payUrl")
        if not pay_url:
            raise GatewayRejected("MoMo API error: no payUrl in response", result_code=result_code)

        logger.info("MoMo payment link created", order_id=order_reference, user_id=user_id)
        return PaymentLink(redirect_url=pay_url, order_reference=order_reference, request_id=request_id)
