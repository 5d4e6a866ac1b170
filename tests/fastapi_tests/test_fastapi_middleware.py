from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI, HTTPException, Request
from fastapi.testclient import TestClient

from x402_core.clients.base import x402Client
from x402_core.encoding import decode_x_payment_response
from x402_core.fastapi.middleware import require_payment
from x402_core.local_facilitator import ERR_NONCE_ALREADY_USED, LocalFacilitator
from x402_core.server import SettlementMode
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


def create_app(facilitator, **kwargs) -> FastAPI:
    app = FastAPI()

    @app.get("/weather")
    async def weather(request: Request):
        return {
            "report": {"weather": "sunny", "temperature": 70},
            "paid_to": request.state.payment_details.pay_to,
        }

    @app.get("/free")
    async def free():
        return {"message": "free"}

    @app.get("/missing")
    async def missing():
        raise HTTPException(status_code=404, detail="not here")

    options = {
        "price": "$0.001",
        "pay_to_address": PAY_TO,
        "path": ["/weather", "/missing"],
        "network": "base-sepolia",
        "facilitator": facilitator,
    }
    options.update(kwargs)
    app.middleware("http")(require_payment(**options))
    return app


def test_payment_required_body(facilitator):
    client = TestClient(create_app(facilitator, description="Weather report"))

    response = client.get("/weather")

    assert response.status_code == 402
    body = response.json()
    assert body["x402Version"] == 1
    assert body["error"] == "X-PAYMENT header is required"
    assert body["accepts"] == [
        {
            "scheme": "exact",
            "network": "base-sepolia",
            "maxAmountRequired": "1000",
            "resource": "http://testserver/weather",
            "description": "Weather report",
            "mimeType": "",
            "payTo": PAY_TO,
            "maxTimeoutSeconds": 60,
            "asset": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
            "extra": {"name": "USDC", "version": "2"},
        }
    ]
    facilitator.verify.assert_not_called()


def test_unprotected_route_passes_through(facilitator):
    client = TestClient(create_app(facilitator))

    response = client.get("/free")

    assert response.status_code == 200
    assert response.json() == {"message": "free"}


def test_fixed_resource_url(facilitator):
    client = TestClient(create_app(facilitator, resource="https://api.example.com/weather"))

    response = client.get("/weather")

    assert response.json()["accepts"][0]["resource"] == "https://api.example.com/weather"


def test_paid_request_delivers_content(facilitator, payment_header):
    client = TestClient(create_app(facilitator))

    response = client.get("/weather", headers={"X-PAYMENT": payment_header})

    assert response.status_code == 200
    assert response.json()["report"]["weather"] == "sunny"
    assert response.json()["paid_to"] == PAY_TO
    settlement = decode_x_payment_response(response.headers["X-PAYMENT-RESPONSE"])
    assert settlement == {
        "success": True,
        "payer": PAYER,
        "transaction": TX_HASH,
        "network": "base-sepolia",
    }
    facilitator.settle.assert_awaited_once()


def test_invalid_payment_header(facilitator):
    client = TestClient(create_app(facilitator))

    response = client.get("/weather", headers={"X-PAYMENT": "not_base64"})

    assert response.status_code == 402
    assert "Invalid base64 string" in response.json()["error"]
    facilitator.verify.assert_not_called()


def test_rejected_payment(facilitator, payment_header):
    facilitator.verify.return_value = VerifyResponse(
        is_valid=False, invalid_reason="insufficient_funds", payer=PAYER
    )
    client = TestClient(create_app(facilitator))

    response = client.get("/weather", headers={"X-PAYMENT": payment_header})

    assert response.status_code == 402
    assert response.json()["error"] == "insufficient_funds"
    assert response.json()["payer"] == PAYER
    facilitator.settle.assert_not_called()


def test_settlement_failure_does_not_leak_content(facilitator, payment_header):
    facilitator.settle.return_value = SettleResponse(
        success=False, error_reason="Insufficient funds", network="base-sepolia"
    )
    client = TestClient(create_app(facilitator))

    response = client.get("/weather", headers={"X-PAYMENT": payment_header})

    assert response.status_code == 402
    assert "sunny" not in response.text
    assert response.json()["error"] == "Settle failed: Insufficient funds"
    assert "X-PAYMENT-RESPONSE" not in response.headers


def test_error_response_is_not_settled(facilitator, payment_header):
    client = TestClient(create_app(facilitator))

    response = client.get("/missing", headers={"X-PAYMENT": payment_header})

    assert response.status_code == 404
    assert "X-PAYMENT-RESPONSE" not in response.headers
    facilitator.verify.assert_awaited_once()
    facilitator.settle.assert_not_called()


def test_deferred_settlement_runs_after_response(facilitator, payment_header):
    client = TestClient(create_app(facilitator, settlement_mode=SettlementMode.DEFERRED))

    response = client.get("/weather", headers={"X-PAYMENT": payment_header})

    assert response.status_code == 200
    assert "X-PAYMENT-RESPONSE" not in response.headers
    facilitator.settle.assert_awaited_once()


def test_deferred_settlement_failure_keeps_response(facilitator, payment_header):
    facilitator.settle.return_value = SettleResponse(success=False, error_reason="expired")
    client = TestClient(create_app(facilitator, settlement_mode=SettlementMode.DEFERRED))

    response = client.get("/weather", headers={"X-PAYMENT": payment_header})

    assert response.status_code == 200
    assert response.json()["report"]["weather"] == "sunny"


def test_server_is_exposed_for_hooks(facilitator, payment_header):
    settled = []
    middleware = require_payment(
        price="$0.001", pay_to_address=PAY_TO, path="/weather", facilitator=facilitator
    )
    middleware.server.on_after_settle(settled.append)

    app = FastAPI()
    app.get("/weather")(lambda: {"ok": True})
    app.middleware("http")(middleware)

    TestClient(app).get("/weather", headers={"X-PAYMENT": payment_header})

    assert settled[0].settle_response.transaction == TX_HASH


def test_weather_purchase_with_local_facilitator(signer):
    app = create_app(LocalFacilitator())
    client = TestClient(app)
    payer = x402Client(signer)

    challenge = client.get("/weather")
    assert challenge.status_code == 402

    header = payer.handle_payment_required(challenge.json())
    paid = client.get("/weather", headers={"X-PAYMENT": header})

    assert paid.status_code == 200
    assert paid.json()["report"] == {"weather": "sunny", "temperature": 70}
    settlement = decode_x_payment_response(paid.headers["X-PAYMENT-RESPONSE"])
    assert settlement["success"] is True
    assert settlement["payer"] == signer.address

    replay = client.get("/weather", headers={"X-PAYMENT": header})
    assert replay.status_code == 402
    assert replay.json()["error"] == f"Settle failed: {ERR_NONCE_ALREADY_USED}"


def test_rejects_unsupported_network():
    with pytest.raises(ValueError, match="Unsupported network"):
        require_payment(price="$0.01", pay_to_address=PAY_TO, network="solana")


def test_mainnet_requires_facilitator_config():
    with pytest.raises(ValueError, match="Facilitator configuration is required"):
        require_payment(price="$0.01", pay_to_address=PAY_TO, network="base")


def test_rejects_invalid_price():
    with pytest.raises(ValueError, match="Invalid price"):
        require_payment(price="$abc", pay_to_address=PAY_TO)
