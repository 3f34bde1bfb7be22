import json

import httpx
import pytest
from fastapi.testclient import TestClient

from billing.config import get_settings
from billing.database import get_db
from billing.gateway import MomoGateway
from billing.main import app as fastapi_app
from billing.models import Payment, PaymentStatus, Subscription, SubscriptionStatus
from billing.signature import SignatureCodec
import billing.auth
import billing.routes

from conftest import PLAN_DAYS, PLAN_PRICE, TestingSessionLocal


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def momo_requests():
    return []


@pytest.fixture
def client(codec, momo_requests):
    def handler(request):
        body = json.loads(request.content)
        momo_requests.append(body)
        return httpx.Response(
            200,
            json={
                "partnerCode": body["partnerCode"],
                "orderId": body["orderId"],
                "requestId": body["requestId"],
                "amount": body["amount"],
                "resultCode": 0,
                "message": "Successful.",
                "payUrl": f"https://test-payment.momo.vn/pay/{body['orderId']}",
            },
        )

    gateway = MomoGateway(
        get_settings(),
        codec,
        http=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[billing.routes.get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[billing.auth.current_user] = lambda: {"sub": "7", "user_id": 7}

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()
    gateway.close()


def _buy(client):
    response = client.post(
        "/payments/momo/create",
        json={"planId": 1, "amount": PLAN_PRICE, "orderInfo": "Premium 30 days"},
    )
    assert response.status_code == 200
    return response.json()


def test_full_payment_lifecycle_integration(client, plan, make_callback, momo_requests):
    """
    1. Create link (API -> signed MoMo request -> PENDING row)
    2. IPN success (MoMo -> API -> COMPLETED + subscription)
    3. IPN replay (no second extension)
    4. Second purchase stacks on the current expiry
    """

    # --- 1. CREATE LINK ---
    created = _buy(client)
    order_id = created["orderId"]
    assert created["payUrl"].endswith(order_id)
    assert momo_requests[0]["orderId"] == order_id

    db = TestingSessionLocal()
    payment = db.query(Payment).filter_by(order_reference=order_id).one()
    assert payment.status == PaymentStatus.PENDING
    assert payment.request_id == momo_requests[0]["requestId"]
    db.close()

    # --- 2. IPN SUCCESS ---
    callback = make_callback(
        order_id,
        requestId=momo_requests[0]["requestId"],
        extraData=momo_requests[0]["extraData"],
    )
    response = client.post("/payments/momo/callback", json=callback)
    assert response.status_code == 200

    db = TestingSessionLocal()
    payment = db.query(Payment).filter_by(order_reference=order_id).one()
    subscription = db.query(Subscription).filter_by(user_id=7).one()
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.gateway_transaction_id == str(callback["transId"])
    assert subscription.status == SubscriptionStatus.ACTIVE
    first_end = subscription.end_time
    db.close()

    # --- 3. IPN REPLAY ---
    response = client.post("/payments/momo/callback", json=callback)
    assert response.status_code == 200

    db = TestingSessionLocal()
    assert db.query(Subscription).filter_by(user_id=7).one().end_time == first_end
    db.close()

    # --- 4. SECOND PURCHASE STACKS ---
    second = _buy(client)
    response = client.post(
        "/payments/momo/callback",
        json=make_callback(second["orderId"], transId=4088878699),
    )
    assert response.status_code == 200

    db = TestingSessionLocal()
    subscription = db.query(Subscription).filter_by(user_id=7).one()
    assert (subscription.end_time - first_end).days == PLAN_DAYS
    assert db.query(Payment).filter_by(status=PaymentStatus.COMPLETED).count() == 2
    db.close()

    # --- HISTORY ---
    history = client.get("/payments/me").json()
    assert {p["order_reference"] for p in history} == {order_id, second["orderId"]}


def test_create_link_when_gateway_is_down_leaves_no_row(plan):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    gateway = MomoGateway(
        get_settings(),
        SignatureCodec("k", "s"),
        http=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[billing.routes.get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[billing.auth.current_user] = lambda: {"sub": "7", "user_id": 7}

    with TestClient(fastapi_app) as c:
        response = c.post(
            "/payments/momo/create",
            json={"planId": 1, "amount": PLAN_PRICE, "orderInfo": "Premium 30 days"},
        )
    fastapi_app.dependency_overrides.clear()

    assert response.status_code == 503
    db = TestingSessionLocal()
    assert db.query(Payment).count() == 0
    db.close()
