"""Canonical strings and HMAC-SHA256 signatures for the MoMo v2 API.

The field order of each canonical string is part of the gateway's wire
contract. It is spelled out here and never derived from the order in which
a payload happened to be built or parsed.
"""

import hashlib
import hmac
from typing import Iterable, Mapping

CANONICAL_VERSION = "momo-v2"

REQUEST_FIELDS = (
    "accessKey",
    "amount",
    "extraData",
    "ipnUrl",
    "orderId",
    "orderInfo",
    "partnerCode",
    "redirectUrl",
    "requestId",
    "requestType",
)

CALLBACK_FIELDS = (
    "accessKey",
    "amount",
    "extraData",
    "message",
    "orderId",
    "orderInfo",
    "orderType",
    "partnerCode",
    "payType",
    "requestId",
    "responseTime",
    "resultCode",
    "transId",
)


def _render(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_canonical_string(pairs: Iterable[tuple[str, object]]) -> str:
    return "&".join(f"{key}={_render(value)}" for key, value in pairs)


def sign(canonical: str, secret: bytes) -> str:
    return hmac.new(secret, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def verify(canonical: str, secret: bytes, provided_signature) -> bool:
    if not isinstance(provided_signature, str) or not provided_signature:
        return False
    expected = sign(canonical, secret)
    # compare_digest needs ASCII for str arguments
    return hmac.compare_digest(expected.encode("ascii"), provided_signature.encode("utf-8"))


class SignatureCodec:
    """Binds the partner credentials to the two canonical field orders."""

    def __init__(self, access_key: str, secret_key: str):
        self.access_key = access_key
        self._secret = secret_key.encode("utf-8")

    def _canonical(self, order: tuple[str, ...], fields: Mapping[str, object]) -> str:
        values = dict(fields)
        values["accessKey"] = self.access_key
        return build_canonical_string((key, values.get(key)) for key in order)

    def request_canonical(self, fields: Mapping[str, object]) -> str:
        return self._canonical(REQUEST_FIELDS, fields)

    def callback_canonical(self, fields: Mapping[str, object]) -> str:
        return self._canonical(CALLBACK_FIELDS, fields)

    def sign_request(self, fields: Mapping[str, object]) -> str:
        return sign(self.request_canonical(fields), self._secret)

    def sign_callback(self, fields: Mapping[str, object]) -> str:
        return sign(self.callback_canonical(fields), self._secret)

    def verify_callback(self, fields: Mapping[str, object], signature) -> bool:
        return verify(self.callback_canonical(fields), self._secret, signature)
