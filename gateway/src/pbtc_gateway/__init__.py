# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""PBTC Payment Gateway

Non-custodial payment reconciliation for Solana token payments: payment
requests are created, optionally locked to a payer wallet, and confirmed only
after the settlement transaction is verified on-chain.

Usage:
    from pbtc_gateway import router, build_service, get_payment_service

    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_payment_service] = lambda: service
"""

from .chain import ChainAccess, SolanaRpcClient, TokenBalance, TransactionRecord, parse_transaction
from .config import GatewayRuntimeConfig, build_chain, build_ledger, build_service
from .errors import (
    AdapterUnavailable,
    AlreadyExists,
    Conflict,
    InvalidInput,
    NotFound,
    PaymentError,
    Terminal,
    Unverified,
)
from .ledger import InMemoryLedger, PaymentLedger, PaymentRequest, PaymentStatus
from .otel import setup_otel_from_env
from .reconcile import ConfirmOutcome, CreateOutcome, PaymentService
from .routes import get_gateway_cfg, get_payment_service, install_error_handlers, router
from .tokens import Asset, FungibleToken, NativeAsset, TokenConfig, TokenKind, TokenRegistry
from .verifier import AMOUNT_TOLERANCE, OnChainVerifier, VerificationResult

__version__ = "0.1.0"

__all__ = [
    "router",
    "install_error_handlers",
    "get_payment_service",
    "get_gateway_cfg",
    "GatewayRuntimeConfig",
    "build_chain",
    "build_ledger",
    "build_service",
    "setup_otel_from_env",
    "ChainAccess",
    "SolanaRpcClient",
    "TransactionRecord",
    "TokenBalance",
    "parse_transaction",
    "PaymentLedger",
    "InMemoryLedger",
    "PaymentRequest",
    "PaymentStatus",
    "OnChainVerifier",
    "VerificationResult",
    "AMOUNT_TOLERANCE",
    "PaymentService",
    "CreateOutcome",
    "ConfirmOutcome",
    "Asset",
    "NativeAsset",
    "FungibleToken",
    "TokenConfig",
    "TokenKind",
    "TokenRegistry",
    "PaymentError",
    "InvalidInput",
    "NotFound",
    "Conflict",
    "Terminal",
    "AlreadyExists",
    "Unverified",
    "AdapterUnavailable",
]
