import asyncio
import json

import httpx
import pytest

from x402_core.clients.base import x402Client
from x402_core.clients.httpx import RETRY_KEY, x402HttpxClient
from x402_core.encoding import decode_payment_header
from x402_core.exceptions import InvalidPaymentRequiredResponse, PaymentAmountExceededError


@pytest.fixture
def payment_required(payment_requirements):
    return {
        "x402Version": 1,
        "error": "X-PAYMENT header is required",
        "accepts": [payment_requirements.to_wire()],
    }


class RecordingServer:
    """MockTransport handler that asks for payment until X-PAYMENT is present."""

    def __init__(self, payment_required, reject_payment=False):
        self.payment_required = payment_required
        self.reject_payment = reject_payment
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if "X-PAYMENT" not in request.headers or self.reject_payment:
            return httpx.Response(402, json=self.payment_required)
        return httpx.Response(
            200, json={"paid": True, "body": request.content.decode() or None}
        )


def make_client(signer, handler, **kwargs) -> x402HttpxClient:
    return x402HttpxClient(
        signer,
        transport=httpx.MockTransport(handler),
        base_url="https://api.example.com",
        **kwargs,
    )


async def test_non_402_passes_through(signer):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"free": True})

    async with make_client(signer, handler) as client:
        response = await client.get("/free")

    assert response.json() == {"free": True}
    assert len(calls) == 1


async def test_402_is_paid_and_retried(signer, payment_required):
    server = RecordingServer(payment_required)

    async with make_client(signer, server) as client:
        response = await client.get("/weather")

    assert response.status_code == 200
    assert len(server.requests) == 2

    original, retry = server.requests
    assert "X-PAYMENT" not in original.headers
    assert RETRY_KEY not in original.extensions
    assert retry.extensions[RETRY_KEY] == 1
    assert retry.headers["Access-Control-Expose-Headers"] == "X-PAYMENT-RESPONSE"
    assert decode_payment_header(retry.headers["X-PAYMENT"]).network == "base-sepolia"


async def test_second_402_is_returned(signer, payment_required):
    server = RecordingServer(payment_required, reject_payment=True)

    async with make_client(signer, server) as client:
        response = await client.get("/weather")

    assert response.status_code == 402
    assert response.json()["error"] == "X-PAYMENT header is required"
    assert len(server.requests) == 2


async def test_prepaid_request_is_not_retried(signer, payment_required):
    server = RecordingServer(payment_required, reject_payment=True)

    async with make_client(signer, server) as client:
        response = await client.get("/weather", headers={"X-PAYMENT": "already-paid"})

    assert response.status_code == 402
    assert len(server.requests) == 1


async def test_post_body_is_replayed(signer, payment_required):
    server = RecordingServer(payment_required)

    async with make_client(signer, server) as client:
        response = await client.post("/echo", json={"city": "Paris"})

    assert response.status_code == 200
    assert json.loads(response.json()["body"]) == {"city": "Paris"}
    assert server.requests[0].content == server.requests[1].content


async def test_non_json_402_raises(signer):
    def handler(request):
        return httpx.Response(402, text="pay up")

    async with make_client(signer, handler) as client:
        with pytest.raises(InvalidPaymentRequiredResponse):
            await client.get("/weather")


async def test_max_value_is_enforced(signer, payment_required):
    server = RecordingServer(payment_required)

    async with make_client(signer, server, max_value=1) as client:
        with pytest.raises(PaymentAmountExceededError):
            await client.get("/weather")

    assert len(server.requests) == 1


async def test_accepts_prebuilt_client(signer, payment_required):
    x402_client = x402Client(signer)
    server = RecordingServer(payment_required)

    async with make_client(x402_client, server) as client:
        assert client.x402_client is x402_client
        response = await client.get("/weather")

    assert response.status_code == 200


async def test_concurrent_requests_pay_independently(signer, payment_required):
    server = RecordingServer(payment_required)

    async with make_client(signer, server) as client:
        responses = await asyncio.gather(*(client.get(f"/item/{i}") for i in range(5)))

    assert all(response.status_code == 200 for response in responses)
    assert len(server.requests) == 10
    nonces = {
        decode_payment_header(request.headers["X-PAYMENT"]).payload["authorization"]["nonce"]
        for request in server.requests
        if "X-PAYMENT" in request.headers
    }
    assert len(nonces) == 5
