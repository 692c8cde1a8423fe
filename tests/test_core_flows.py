# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Test core payment flows over the HTTP API: create, lock, confirm and the
read-side verification endpoints, including error mapping.
"""

from decimal import Decimal

import httpx
import pytest

from fakes import MERCHANT, OTHER_WALLET, PAYER, token_transfer_tx
from pbtc_gateway import GatewayRuntimeConfig


@pytest.fixture
def cfg(test_env) -> GatewayRuntimeConfig:
    return GatewayRuntimeConfig(expose_rpc_url=False)


@pytest.fixture
def app(cfg, chain, service):
    """Create FastAPI app instance wired to the fake chain."""
    from run_payment_gateway import build_app

    return build_app(cfg=cfg, chain=chain, service=service)


@pytest.fixture
def client(app) -> httpx.AsyncClient:
    """Create test client."""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://gateway.test")


async def _create(client: httpx.AsyncClient, reference: str = "ORD1", **extra) -> httpx.Response:
    body = {"merchantWallet": MERCHANT, "amount": 25, "reference": reference, "tokenId": "pbtc"}
    body.update(extra)
    return await client.post("/api/payments/create", json=body)


@pytest.mark.asyncio
class TestCompletePaymentFlow:
    """Test the complete payment flow from request creation to confirmation."""

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["network"] == "devnet"

    async def test_create_lock_confirm_verify(self, client, settled_pbtc):
        response = await _create(client, memo="Order #1")
        assert response.status_code == 201
        assert response.headers["X-Request-ID"]
        payment = response.json()["payment"]
        assert payment["status"] == "pending"
        assert payment["amount"] == "25"
        assert payment["memo"] == "Order #1"

        response = await client.post("/api/payments/lock", json={"reference": "ORD1", "payerWallet": PAYER})
        assert response.status_code == 200
        assert response.json()["payment"]["expectedPayer"] == PAYER
        assert response.json()["message"] == "Payment locked to your wallet"

        response = await client.post(
            "/api/payments/confirm",
            json={"reference": "ORD1", "signature": "sig-ord1", "senderWallet": PAYER},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["verified"] is True
        assert data["receivedAmount"] == "25"
        assert data["verifiedSender"] == PAYER
        assert data["payment"]["status"] == "confirmed"
        assert data["payment"]["signature"] == "sig-ord1"

        response = await client.post(
            "/api/verify-payment",
            json={"reference": "ORD1", "merchantWallet": MERCHANT, "expectedAmount": 25},
        )
        assert response.status_code == 200
        assert response.json()["paid"] is True
        assert response.json()["payer"] == PAYER
        await client.aclose()

    async def test_create_twice_returns_existing(self, client):
        first = await _create(client)
        second = await _create(client)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["existing"] is True
        assert second.json()["payment"]["id"] == first.json()["payment"]["id"]
        await client.aclose()

    async def test_confirm_is_idempotent(self, client, settled_pbtc):
        await _create(client)
        body = {"reference": "ORD1", "signature": "sig-ord1", "senderWallet": PAYER}
        first = await client.post("/api/payments/confirm", json=body)
        second = await client.post("/api/payments/confirm", json=body)

        assert first.status_code == second.status_code == 200
        assert second.json()["message"] == "Payment already confirmed"
        assert second.json()["receivedAmount"] == first.json()["receivedAmount"]
        await client.aclose()

    async def test_create_after_confirm(self, client, settled_pbtc):
        await _create(client)
        await client.post(
            "/api/payments/confirm",
            json={"reference": "ORD1", "signature": "sig-ord1", "senderWallet": PAYER},
        )
        response = await _create(client)

        assert response.status_code == 400
        assert response.json()["code"] == "ALREADY_COMPLETED"
        assert response.json()["error"] == "Payment already completed"
        await client.aclose()


@pytest.mark.asyncio
class TestErrorMapping:
    """Test that protocol errors map to status codes and a uniform body."""

    async def test_invalid_wallet_is_400(self, client):
        response = await _create(client, merchantWallet="0xnot-a-solana-address")
        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invalid payment request"
        assert data["code"] == "INVALID_INPUT"
        assert data["details"]
        await client.aclose()

    async def test_non_positive_amount_is_400(self, client):
        response = await _create(client, amount=0)
        assert response.status_code == 400
        await client.aclose()

    async def test_missing_fields_in_verification_is_400(self, client):
        response = await client.post("/api/verify-payment", json={"reference": "ORD1"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid verification request"
        await client.aclose()

    async def test_unsupported_token_is_400(self, client):
        response = await _create(client, tokenId="doge")
        assert response.status_code == 400
        assert response.json()["error"] == "Unsupported token: doge"
        await client.aclose()

    async def test_lock_conflict(self, client):
        await _create(client)
        await client.post("/api/payments/lock", json={"reference": "ORD1", "payerWallet": PAYER})
        response = await client.post("/api/payments/lock", json={"reference": "ORD1", "payerWallet": OTHER_WALLET})

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "CONFLICT"
        assert data["retryable"] is False
        assert data["request_id"] == response.headers["X-Request-ID"]
        await client.aclose()

    async def test_lock_unknown_is_404(self, client):
        response = await client.post("/api/payments/lock", json={"reference": "nope", "payerWallet": PAYER})
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"
        await client.aclose()

    async def test_confirm_from_other_wallet(self, client, chain, settled_pbtc):
        await _create(client, payerWallet=PAYER)
        response = await client.post(
            "/api/payments/confirm",
            json={"reference": "ORD1", "signature": "sig-ord1", "senderWallet": OTHER_WALLET},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "CONFLICT"
        assert chain.calls == []
        await client.aclose()

    async def test_confirm_short_payment(self, client, chain):
        chain.add(token_transfer_tx("sig-short", PAYER, MERCHANT, Decimal("24.9")))
        await _create(client, payerWallet=PAYER)
        response = await client.post(
            "/api/payments/confirm",
            json={"reference": "ORD1", "signature": "sig-short", "senderWallet": PAYER},
        )
        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "UNVERIFIED"
        assert data["error"].startswith("Amount mismatch")
        assert "hint" in data

        payment = (await client.get("/api/payments/ORD1")).json()["payment"]
        assert payment["status"] == "pending"
        await client.aclose()

    async def test_confirm_unknown_reference(self, client):
        response = await client.post(
            "/api/payments/confirm",
            json={"reference": "nope", "signature": "sig", "senderWallet": PAYER},
        )
        assert response.status_code == 404
        assert response.json()["error"] == "Payment request not found"
        await client.aclose()

    async def test_chain_outage_is_503(self, client, chain):
        chain.unavailable = True
        await _create(client)
        response = await client.post(
            "/api/payments/confirm",
            json={"reference": "ORD1", "signature": "sig-ord1", "senderWallet": PAYER},
        )
        assert response.status_code == 503
        assert response.json()["code"] == "CHAIN_UNAVAILABLE"
        assert response.json()["retryable"] is True
        await client.aclose()

    async def test_unexpected_error_is_500(self, client, service, mocker):
        mocker.patch.object(service, "lock", side_effect=RuntimeError("boom"))
        await _create(client)
        response = await client.post("/api/payments/lock", json={"reference": "ORD1", "payerWallet": PAYER})

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to lock payment"
        await client.aclose()


@pytest.mark.asyncio
class TestReadEndpoints:
    async def test_get_payment(self, client):
        await _create(client)
        response = await client.get("/api/payments/ORD1")
        assert response.status_code == 200
        assert response.json()["payment"]["reference"] == "ORD1"

        missing = await client.get("/api/payments/nope")
        assert missing.status_code == 404
        assert missing.json()["error"] == "Payment not found"
        await client.aclose()

    async def test_list_merchant_payments(self, client):
        await _create(client, reference="A1")
        await _create(client, reference="A2")
        await _create(client, reference="B1", merchantWallet=OTHER_WALLET)

        response = await client.get(f"/api/payments/merchant/{MERCHANT}")
        assert [p["reference"] for p in response.json()["payments"]] == ["A1", "A2"]
        await client.aclose()

    async def test_verify_payment_pending(self, client):
        await _create(client)
        response = await client.post("/api/verify-payment", json={"reference": "ORD1", "merchantWallet": MERCHANT})
        assert response.status_code == 200
        assert response.json()["paid"] is False
        assert response.json()["status"] == "pending"
        await client.aclose()

    async def test_verify_onchain(self, client, settled_pbtc):
        response = await client.post(
            "/api/verify-onchain",
            json={"signature": "sig-ord1", "merchantWallet": MERCHANT, "expectedAmount": 25, "senderWallet": PAYER},
        )
        assert response.status_code == 200
        assert response.json() == {"verified": True, "error": None, "amount": "25", "senderAddress": PAYER}

        missing = await client.post(
            "/api/verify-onchain",
            json={"signature": "sig-missing", "merchantWallet": MERCHANT, "expectedAmount": 25},
        )
        assert missing.json()["verified"] is False
        assert missing.json()["error"].startswith("Transaction not found")
        await client.aclose()

    async def test_config(self, client):
        response = await client.get("/api/config")
        data = response.json()

        assert data["defaultToken"] == "pbtc"
        assert data["network"] == "devnet"
        assert data["rpcUrl"] is None
        pbtc = next(t for t in data["tokens"] if t["id"] == "pbtc")
        assert pbtc["mint"] == "HfMbPyDdZH6QMaDDUokjYCkHxzjoGBMpgaUvpLWGbF5p"
        assert pbtc["decimals"] == 9
        await client.aclose()
