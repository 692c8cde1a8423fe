# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import logging
import re
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .config import GatewayRuntimeConfig
from .errors import PaymentError
from .reconcile import PaymentService

logger = logging.getLogger(__name__)

_BASE58 = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


def _wallet(v: Optional[str], name: str) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not (32 <= len(v) <= 44) or not _BASE58.match(v):
        raise ValueError(f"{name} must be a valid Solana wallet address")
    return v


# -------------------------------
# Models
# -------------------------------


class CreatePaymentRequest(BaseModel):
    merchantWallet: str
    amount: Decimal = Field(..., gt=0, description="Amount in display units of tokenId")
    reference: str = Field(..., min_length=1, max_length=255)
    memo: Optional[str] = Field(None, max_length=1024)
    payerWallet: Optional[str] = None
    tokenId: Optional[str] = Field(None, description="Registered token id; defaults to the gateway token")

    @field_validator("merchantWallet")
    @classmethod
    def validate_merchant(cls, v: str) -> str:
        return _wallet(v, "merchantWallet")

    @field_validator("payerWallet")
    @classmethod
    def validate_payer(cls, v: Optional[str]) -> Optional[str]:
        return _wallet(v, "payerWallet")


class LockPaymentRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=255)
    payerWallet: str

    @field_validator("payerWallet")
    @classmethod
    def validate_payer(cls, v: str) -> str:
        return _wallet(v, "payerWallet")


class ConfirmPaymentRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=255)
    signature: str = Field(..., min_length=1, max_length=128)
    senderWallet: str
    tokenId: Optional[str] = None

    @field_validator("senderWallet")
    @classmethod
    def validate_sender(cls, v: str) -> str:
        return _wallet(v, "senderWallet")


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=255)
    merchantWallet: str
    expectedAmount: Optional[Decimal] = None

    @field_validator("merchantWallet")
    @classmethod
    def validate_merchant(cls, v: str) -> str:
        return _wallet(v, "merchantWallet")


class VerifyOnchainRequest(BaseModel):
    signature: str = Field(..., min_length=1, max_length=128)
    merchantWallet: str
    expectedAmount: Decimal = Decimal(0)
    senderWallet: Optional[str] = None
    tokenId: Optional[str] = None

    @field_validator("merchantWallet")
    @classmethod
    def validate_merchant(cls, v: str) -> str:
        return _wallet(v, "merchantWallet")


# -------------------------------
# Dependencies
# -------------------------------


def get_gateway_cfg() -> GatewayRuntimeConfig:
    return GatewayRuntimeConfig()


def get_payment_service() -> PaymentService:
    # Wired by the process entry point via app.dependency_overrides
    raise RuntimeError("PaymentService not configured")


router = APIRouter(prefix="/api", tags=["payments"])


def _request_id(response: Optional[Response]) -> str:
    req_id = uuid.uuid4().hex
    if response is not None:
        response.headers["X-Request-ID"] = req_id
    return req_id


def _error_response(e: PaymentError, req_id: str) -> JSONResponse:
    content = e.to_dict()
    content["request_id"] = req_id
    return JSONResponse(status_code=e.status_code, content=content, headers={"X-Request-ID": req_id})


def _internal_error(req_id: str, msg: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": msg, "code": "INTERNAL", "retryable": True, "request_id": req_id},
        headers={"X-Request-ID": req_id},
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    req_id = _request_id(None)
    label = "verification request" if "verify" in request.url.path else "payment request"
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": f"Invalid {label}",
            "code": "INVALID_INPUT",
            "retryable": False,
            # ctx may carry exception objects that are not JSON serialisable
            "details": [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()],
            "request_id": req_id,
        },
        headers={"X-Request-ID": req_id},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _validation_error_handler)


# -------------------------------
# Routes
# -------------------------------


@router.post("/payments/create")
async def create_payment(
    body: CreatePaymentRequest,
    response: Response,
    svc: PaymentService = Depends(get_payment_service),
):
    req_id = _request_id(response)
    try:
        outcome = await svc.create(
            body.reference,
            body.merchantWallet,
            body.amount,
            memo=body.memo,
            payer_wallet=body.payerWallet,
            token_id=body.tokenId,
        )
    except PaymentError as e:
        logger.info(f"[{req_id}] create {body.reference} rejected: {e.code} {e.message}")
        return _error_response(e, req_id)
    except Exception:
        logger.exception(f"[{req_id}] Error creating payment")
        return _internal_error(req_id, "Failed to create payment")

    if outcome.created:
        return JSONResponse(
            status_code=201,
            content={"success": True, "payment": outcome.payment.to_dict()},
            headers={"X-Request-ID": req_id},
        )
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "payment": outcome.payment.to_dict(),
            "existing": True,
            "message": "Existing pending payment returned",
        },
        headers={"X-Request-ID": req_id},
    )


@router.post("/payments/lock")
async def lock_payment(
    body: LockPaymentRequest,
    response: Response,
    svc: PaymentService = Depends(get_payment_service),
) -> Any:
    req_id = _request_id(response)
    try:
        payment = await svc.lock(body.reference, body.payerWallet)
    except PaymentError as e:
        logger.info(f"[{req_id}] lock {body.reference} rejected: {e.code} {e.message}")
        return _error_response(e, req_id)
    except Exception:
        logger.exception(f"[{req_id}] Error locking payment")
        return _internal_error(req_id, "Failed to lock payment")
    return {"success": True, "payment": payment.to_dict(), "message": "Payment locked to your wallet"}


@router.post("/payments/confirm")
async def confirm_payment(
    body: ConfirmPaymentRequest,
    response: Response,
    svc: PaymentService = Depends(get_payment_service),
) -> Any:
    req_id = _request_id(response)
    logger.info(f"[{req_id}] confirm {body.reference} sig={body.signature[:8]}...")
    try:
        outcome = await svc.confirm(body.reference, body.signature, body.senderWallet, token_id=body.tokenId)
    except PaymentError as e:
        logger.info(f"[{req_id}] confirm {body.reference} rejected: {e.code} {e.message}")
        return _error_response(e, req_id)
    except Exception:
        logger.exception(f"[{req_id}] Error confirming payment")
        return _internal_error(req_id, "Failed to confirm payment")
    return outcome.to_dict()


@router.post("/verify-payment")
async def verify_payment(
    body: VerifyPaymentRequest,
    response: Response,
    svc: PaymentService = Depends(get_payment_service),
) -> Any:
    req_id = _request_id(response)
    try:
        return await svc.query(body.reference, body.merchantWallet, body.expectedAmount)
    except PaymentError as e:
        return _error_response(e, req_id)
    except Exception:
        logger.exception(f"[{req_id}] Error verifying payment")
        return JSONResponse(
            status_code=500,
            content={"paid": False, "error": "Verification failed", "request_id": req_id},
            headers={"X-Request-ID": req_id},
        )


@router.post("/verify-onchain")
async def verify_onchain(
    body: VerifyOnchainRequest,
    response: Response,
    svc: PaymentService = Depends(get_payment_service),
) -> Any:
    req_id = _request_id(response)
    try:
        result = await svc.verify_onchain(
            body.signature,
            body.merchantWallet,
            body.expectedAmount,
            sender_wallet=body.senderWallet,
            token_id=body.tokenId,
        )
    except PaymentError as e:
        return _error_response(e, req_id)
    except Exception:
        logger.exception(f"[{req_id}] Error verifying on-chain")
        return JSONResponse(
            status_code=500,
            content={"verified": False, "error": "Verification failed", "request_id": req_id},
            headers={"X-Request-ID": req_id},
        )
    return result.to_dict()


@router.get("/payments/merchant/{wallet}")
async def list_merchant_payments(
    wallet: str,
    response: Response,
    svc: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    _request_id(response)
    payments = await svc.list_by_merchant(wallet)
    return {"payments": [p.to_dict() for p in payments]}


@router.get("/payments/{reference}")
async def get_payment(
    reference: str,
    response: Response,
    svc: PaymentService = Depends(get_payment_service),
) -> Any:
    req_id = _request_id(response)
    try:
        payment = await svc.get(reference)
    except PaymentError as e:
        return _error_response(e, req_id)
    return {"payment": payment.to_dict()}


@router.get("/config")
async def gateway_config(
    response: Response,
    cfg: GatewayRuntimeConfig = Depends(get_gateway_cfg),
    svc: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    _request_id(response)
    return {
        "tokens": [t.public_dict() for t in svc.tokens.all()],
        "defaultToken": svc.tokens.default_token,
        "network": cfg.network,
        "rpcUrl": cfg.rpc_url if cfg.expose_rpc_url else None,
    }
