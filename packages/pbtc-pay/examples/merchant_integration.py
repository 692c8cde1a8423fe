# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Merchant integration example: issue payment requests and release goods only when paid."""

import os
import uuid
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pbtc_pay_client import MerchantClient, PaymentAPIError

load_dotenv()

GATEWAY = os.getenv("PAYMENT_GATEWAY_URL", "http://localhost:8000")
MERCHANT_WALLET = os.getenv("MERCHANT_WALLET", "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin")
gateway = MerchantClient(GATEWAY)


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await gateway.aclose()


app = FastAPI(title="Merchant Example (PBTC)", lifespan=lifespan)


@app.post("/api/orders")
async def create_order(item: str = "sticker-pack", amount: str = "25"):
    """Open a payment request for an order and hand it to the storefront."""
    reference = f"order-{uuid.uuid4().hex[:12]}"
    try:
        created = await gateway.create_payment(
            merchant_wallet=MERCHANT_WALLET,
            amount=amount,
            reference=reference,
            memo=item,
        )
    except PaymentAPIError as e:
        return JSONResponse({"error": e.error, "code": e.code}, status_code=e.status_code)

    payment = created["payment"]
    print(f"🧾 Payment request {reference}: {payment['amount']} {payment['tokenId']} -> {MERCHANT_WALLET[:8]}...")
    return {"orderId": reference, "payment": payment}


@app.get("/api/orders/{reference}")
async def order_status(reference: str, amount: str = "25"):
    """Fulfil the order only after the gateway re-verifies the settlement on-chain."""
    res = await gateway.verify_payment(reference=reference, merchant_wallet=MERCHANT_WALLET, expected_amount=amount)
    if not res.get("paid"):
        return JSONResponse(
            {"orderId": reference, "paid": False, "reason": res.get("verificationError") or res.get("error")},
            status_code=402,
        )
    print(f"✅ Order {reference} paid by {res.get('payer')} tx={res.get('signature')}")
    return {"orderId": reference, "paid": True, "download": f"/downloads/{reference}.zip"}

