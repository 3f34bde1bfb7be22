"""Errors raised by the billing domain.

Routes translate these into HTTP responses; nothing below the route layer
knows about status codes.
"""


class BillingError(Exception):
    pass


class PlanNotFound(BillingError):
    def __init__(self, plan_id):
        super().__init__(f"Subscription plan not found: {plan_id}")
        self.plan_id = plan_id


class AmountMismatch(BillingError):
    def __init__(self, amount: int, price: int):
        super().__init__(f"Amount {amount} does not match plan price {price}")
        self.amount = amount
        self.price = price


class DuplicateOrderReference(BillingError):
    def __init__(self, order_reference: str):
        super().__init__(f"Order reference already exists: {order_reference}")
        self.order_reference = order_reference


class PaymentNotFound(BillingError):
    def __init__(self, order_reference: str):
        super().__init__(f"Payment not found: {order_reference}")
        self.order_reference = order_reference


class InvalidSignature(BillingError):
    def __init__(self, order_reference: str | None = None):
        super().__init__("Invalid signature")
        self.order_reference = order_reference


class GatewayError(BillingError):
    retryable = False


class GatewayUnavailable(GatewayError):
    """The gateway could not be reached or answered garbage. Safe to retry."""

    retryable = True


class GatewayRejected(GatewayError):
    """The gateway answered with a non-zero result code."""

    def __init__(self, message: str, result_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.result_code = result_code
