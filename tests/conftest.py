import os

# Settings are read once, at import time of the app modules
TEST_DATABASE_URL = "sqlite:///./test_billing.db"
ACCESS_KEY = "F8BBA842ECF85"
SECRET_KEY = "K951B6PE1waDMi640xX08PD3vg6EkVlz"

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["MOMO_ACCESS_KEY"] = ACCESS_KEY
os.environ["MOMO_SECRET_KEY"] = SECRET_KEY
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from billing.database import Base
from billing.models import Payment, PaymentMethod, PaymentStatus, Plan
from billing.signature import SignatureCodec

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PLAN_PRICE = 59000
PLAN_DAYS = 30


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def codec():
    return SignatureCodec(ACCESS_KEY, SECRET_KEY)


@pytest.fixture
def plan(db):
    p = Plan(
        id=1,
        name="Premium 30 days",
        plan_type="PREMIUM",
        price=PLAN_PRICE,
        duration_days=PLAN_DAYS,
    )
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def add_payment(db, plan):
    def _add(order_reference="ORD7-0001", user_id=7, amount=PLAN_PRICE, status=PaymentStatus.PENDING):
        payment = Payment(
            user_id=user_id,
            plan_id=plan.id,
            order_reference=order_reference,
            request_id="REQ-test",
            amount=amount,
            method=PaymentMethod.MOMO,
            status=status,
        )
        db.add(payment)
        db.commit()
        return payment

    return _add


@pytest.fixture
def make_callback(codec):
    """Build a correctly signed IPN body; pass overrides to change fields before signing."""

    def _make(order_id="ORD7-0001", result_code=0, **overrides):
        fields = {
            "partnerCode": "MOMO",
            "orderId": order_id,
            "requestId": "REQ-test",
            "amount": PLAN_PRICE,
            "orderInfo": "Premium 30 days",
            "orderType": "momo_wallet",
            "transId": 4088878653,
            "resultCode": result_code,
            "message": "Successful." if result_code == 0 else "Transaction denied by user.",
            "payType": "qr",
            "responseTime": 1721720663942,
            "extraData": "",
        }
        fields.update(overrides)
        fields["signature"] = codec.sign_callback(fields)
        return fields

    return _make
