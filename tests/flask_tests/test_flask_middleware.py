from unittest.mock import AsyncMock, MagicMock

import pytest
from flask import Flask, g

from x402_core.clients.base import x402Client
from x402_core.encoding import decode_x_payment_response
from x402_core.exceptions import FacilitatorError
from x402_core.flask.middleware import PaymentMiddleware
from x402_core.local_facilitator import ERR_NONCE_ALREADY_USED, LocalFacilitator
from x402_core.types import SettleResponse, VerifyResponse

PAY_TO = "0x1111111111111111111111111111111111111111"
PAYER = "0x1234567890123456789012345678901234567890"
TX_HASH = "0x" + "b" * 64


@pytest.fixture
def facilitator():
    facilitator = MagicMock()
    facilitator.verify = AsyncMock(return_value=VerifyResponse(is_valid=True, payer=PAYER))
    facilitator.settle = AsyncMock(
        return_value=SettleResponse(
            success=True, payer=PAYER, transaction=TX_HASH, network="base-sepolia"
        )
    )
    return facilitator


def create_app_with_middleware(configs):
    app = Flask(__name__)

    @app.route("/protected")
    def protected():
        return {"message": "protected", "paid_to": g.payment_details.pay_to}

    @app.route("/unprotected")
    def unprotected():
        return {"message": "unprotected"}

    @app.route("/broken")
    def broken():
        return {"error": "broken"}, 500

    middleware = PaymentMiddleware(app)
    for cfg in configs:
        middleware.add(**cfg)
    return app


def protected_config(facilitator, **overrides):
    config = {
        "price": "$1.00",
        "pay_to_address": PAY_TO,
        "path": ["/protected", "/broken"],
        "network": "base-sepolia",
        "facilitator": facilitator,
    }
    config.update(overrides)
    return config


def test_payment_required_for_protected_route(facilitator):
    app = create_app_with_middleware([protected_config(facilitator)])
    with app.test_client() as client:
        resp = client.get("/protected")
        assert resp.status_code == 402
        assert resp.json["error"] == "X-PAYMENT header is required"
        accepts = resp.json["accepts"]
        assert accepts[0]["maxAmountRequired"] == "1000000"
        assert accepts[0]["resource"] == "http://localhost/protected"


def test_unprotected_route(facilitator):
    app = create_app_with_middleware([protected_config(facilitator)])
    with app.test_client() as client:
        resp = client.get("/unprotected")
        assert resp.status_code == 200
        assert resp.json == {"message": "unprotected"}


def test_invalid_payment_header(facilitator):
    app = create_app_with_middleware([protected_config(facilitator)])
    with app.test_client() as client:
        resp = client.get("/protected", headers={"X-PAYMENT": "not_base64"})
        assert resp.status_code == 402
        assert "Invalid base64 string" in resp.json["error"]


def test_path_pattern_matching(facilitator):
    app = Flask(__name__)

    @app.route("/foo")
    def foo():
        return {"foo": True}

    @app.route("/bar/123")
    def bar():
        return {"bar": True}

    @app.route("/baz/abc")
    def baz():
        return {"baz": True}

    middleware = PaymentMiddleware(app)
    middleware.add(
        price="$1.00",
        pay_to_address=PAY_TO,
        path=["/foo", "/bar/*", "regex:^/baz/\\d+$"],
        facilitator=facilitator,
    )
    with app.test_client() as client:
        assert client.get("/foo").status_code == 402
        assert client.get("/bar/123").status_code == 402
        assert client.get("/baz/abc").status_code == 200


def test_multiple_registrations(facilitator):
    app = Flask(__name__)

    @app.route("/cheap")
    def cheap():
        return {"cheap": True}

    @app.route("/pricey")
    def pricey():
        return {"pricey": True}

    middleware = PaymentMiddleware(app)
    middleware.add(price="$0.001", pay_to_address=PAY_TO, path="/cheap", facilitator=facilitator)
    middleware.add(price="$10", pay_to_address=PAY_TO, path="/pricey", facilitator=facilitator)

    assert len(middleware.servers) == 2
    with app.test_client() as client:
        assert client.get("/cheap").json["accepts"][0]["maxAmountRequired"] == "1000"
        assert client.get("/pricey").json["accepts"][0]["maxAmountRequired"] == "10000000"


def test_paid_request_delivers_content(facilitator, payment_header):
    app = create_app_with_middleware([protected_config(facilitator)])
    with app.test_client() as client:
        resp = client.get("/protected", headers={"X-PAYMENT": payment_header})
        assert resp.status_code == 200
        assert resp.json == {"message": "protected", "paid_to": PAY_TO}
        settlement = decode_x_payment_response(resp.headers["X-PAYMENT-RESPONSE"])
        assert settlement["transaction"] == TX_HASH
    facilitator.settle.assert_awaited_once()


def test_rejected_payment(facilitator, payment_header):
    facilitator.verify.return_value = VerifyResponse(
        is_valid=False, invalid_reason="invalid_signature", payer=PAYER
    )
    app = create_app_with_middleware([protected_config(facilitator)])
    with app.test_client() as client:
        resp = client.get("/protected", headers={"X-PAYMENT": payment_header})
        assert resp.status_code == 402
        assert resp.json["error"] == "invalid_signature"
        assert resp.json["payer"] == PAYER
    facilitator.settle.assert_not_called()


def test_settlement_failure_does_not_leak_content(facilitator, payment_header):
    facilitator.settle.return_value = SettleResponse(
        success=False, error_reason="Insufficient funds"
    )
    app = create_app_with_middleware([protected_config(facilitator)])
    with app.test_client() as client:
        resp = client.get("/protected", headers={"X-PAYMENT": payment_header})
        assert resp.status_code == 402
        assert b'"message"' not in resp.data
        assert resp.json["error"] == "Settle failed: Insufficient funds"


def test_settlement_transport_error_returns_500(facilitator, payment_header):
    facilitator.settle.side_effect = FacilitatorError("connection reset")
    app = create_app_with_middleware([protected_config(facilitator)])
    with app.test_client() as client:
        resp = client.get("/protected", headers={"X-PAYMENT": payment_header})
        assert resp.status_code == 500
        assert resp.json["error"] == "Settle failed: connection reset"
    assert facilitator.settle.await_count == 1


def test_error_response_is_not_settled(facilitator, payment_header):
    app = create_app_with_middleware([protected_config(facilitator)])
    with app.test_client() as client:
        resp = client.get("/broken", headers={"X-PAYMENT": payment_header})
        assert resp.status_code == 500
        assert resp.json == {"error": "broken"}
        assert "X-PAYMENT-RESPONSE" not in resp.headers
    facilitator.settle.assert_not_called()


def test_weather_purchase_with_local_facilitator(signer):
    app = create_app_with_middleware([protected_config(LocalFacilitator(), price="$0.001")])
    payer = x402Client(signer)
    with app.test_client() as client:
        challenge = client.get("/protected")
        assert challenge.status_code == 402

        header = payer.handle_payment_required(challenge.json)
        paid = client.get("/protected", headers={"X-PAYMENT": header})
        assert paid.status_code == 200
        assert decode_x_payment_response(paid.headers["X-PAYMENT-RESPONSE"])["success"] is True

        replay = client.get("/protected", headers={"X-PAYMENT": header})
        assert replay.status_code == 402
        assert replay.json["error"] == f"Settle failed: {ERR_NONCE_ALREADY_USED}"


def test_rejects_unsupported_network(facilitator):
    app = Flask(__name__)
    with pytest.raises(ValueError, match="Unsupported network"):
        PaymentMiddleware(app).add(price="$1.00", pay_to_address=PAY_TO, network="solana")


def test_mainnet_requires_facilitator_config():
    app = Flask(__name__)
    with pytest.raises(ValueError, match="Facilitator configuration is required"):
        PaymentMiddleware(app).add(price="$1.00", pay_to_address=PAY_TO, network="base")


def test_hooks_survive_later_registrations(facilitator, payment_header):
    app = Flask(__name__)

    @app.route("/first")
    def first():
        return {"first": True}

    @app.route("/second")
    def second():
        return {"second": True}

    middleware = PaymentMiddleware(app)
    first_server = middleware.add(
        price="$0.001", pay_to_address=PAY_TO, path="/first", facilitator=facilitator
    )
    verified, settled = [], []
    first_server.on_after_verify(verified.append)
    first_server.on_after_settle(settled.append)

    middleware.add(price="$0.01", pay_to_address=PAY_TO, path="/second", facilitator=facilitator)

    assert middleware.servers[0] is first_server
    with app.test_client() as client:
        resp = client.get("/first", headers={"X-PAYMENT": payment_header})
        assert resp.status_code == 200
    assert len(verified) == 1
    assert settled[0].settle_response.transaction == TX_HASH


def test_rejected_registration_keeps_existing_ones(facilitator):
    app = Flask(__name__)
    middleware = PaymentMiddleware(app)
    kept = middleware.add(price="$1.00", pay_to_address=PAY_TO, facilitator=facilitator)

    with pytest.raises(ValueError, match="Invalid price"):
        middleware.add(price="$abc", pay_to_address=PAY_TO, facilitator=facilitator)

    assert middleware.servers == [kept]
    assert len(middleware.middleware_configs) == 1
