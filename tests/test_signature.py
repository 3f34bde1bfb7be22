import hmac

import pytest

from billing.signature import (
    CALLBACK_FIELDS,
    SignatureCodec,
    build_canonical_string,
    sign,
    verify,
)


def test_canonical_string_keeps_given_order():
    pairs = [("orderId", "ORD1"), ("amount", 1000), ("extraData", None)]
    assert build_canonical_string(pairs) == "orderId=ORD1&amount=1000&extraData="


def test_request_canonical_uses_contract_order(codec):
    fields = {
        "requestType": "captureWallet",
        "requestId": "REQ1",
        "redirectUrl": "http://r",
        "partnerCode": "MOMO",
        "orderInfo": "Premium",
        "orderId": "ORD1",
        "ipnUrl": "http://i",
        "extraData": "",
        "amount": 59000,
        "lang": "vi",
    }

    assert codec.request_canonical(fields) == (
        "accessKey=F8BBA842ECF85&amount=59000&extraData=&ipnUrl=http://i"
        "&orderId=ORD1&orderInfo=Premium&partnerCode=MOMO&redirectUrl=http://r"
        "&requestId=REQ1&requestType=captureWallet"
    )


def test_callback_canonical_ignores_arrival_order(codec, make_callback):
    body = make_callback()
    reversed_body = dict(reversed(list(body.items())))

    assert codec.callback_canonical(body) == codec.callback_canonical(reversed_body)
    assert codec.callback_canonical(body).startswith("accessKey=F8BBA842ECF85&amount=59000&")
    assert "signature=" not in codec.callback_canonical(body)
    assert [part.split("=")[0] for part in codec.callback_canonical(body).split("&")] == list(CALLBACK_FIELDS)


def test_sign_is_hex_sha256():
    signature = sign("a=1&b=2", b"secret")
    assert len(signature) == 64
    assert signature == signature.lower()
    assert sign("a=1&b=2", b"secret") == signature
    assert sign("a=1&b=2", b"other") != signature


def test_verify_round_trip():
    signature = sign("a=1&b=2", b"secret")
    assert verify("a=1&b=2", b"secret", signature)
    assert not verify("a=1&b=3", b"secret", signature)
    assert not verify("a=1&b=2", b"wrong", signature)


@pytest.mark.parametrize("provided", [None, "", 123, "zz"])
def test_verify_rejects_junk_signatures(provided):
    assert not verify("a=1", b"secret", provided)


def test_verify_uses_constant_time_comparison(mocker):
    spy = mocker.spy(hmac, "compare_digest")
    verify("a=1", b"secret", sign("a=1", b"secret"))
    assert spy.call_count == 1


def test_verify_callback(codec, make_callback):
    body = make_callback()
    assert codec.verify_callback(body, body["signature"])

    other = SignatureCodec("F8BBA842ECF85", "another-secret")
    assert not other.verify_callback(body, body["signature"])
