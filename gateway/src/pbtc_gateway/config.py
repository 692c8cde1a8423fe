# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field

from .chain import ChainAccess, SolanaRpcClient
from .ledger import InMemoryLedger, PaymentLedger
from .reconcile import PaymentService
from .tokens import TokenRegistry, tokens_from_env
from .verifier import OnChainVerifier


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class GatewayRuntimeConfig(BaseModel):
    rpc_url: str = Field(default_factory=lambda: os.getenv("GATEWAY_RPC_URL", "https://solana-rpc.publicnode.com"))
    rpc_timeout_s: float = Field(default_factory=lambda: float(os.getenv("GATEWAY_RPC_TIMEOUT_S", "15")))
    # Upper bound for a whole verification (may span several RPC calls)
    chain_timeout_s: float = Field(default_factory=lambda: float(os.getenv("GATEWAY_CHAIN_TIMEOUT_S", "20")))
    commitment: str = Field(default_factory=lambda: os.getenv("GATEWAY_COMMITMENT", "confirmed"))
    network: str = Field(default_factory=lambda: os.getenv("GATEWAY_NETWORK", "mainnet-beta"))
    # "memory" or any SQLAlchemy URL, e.g. sqlite:///payments.db
    ledger_url: str = Field(default_factory=lambda: os.getenv("GATEWAY_LEDGER_URL", "memory"))
    default_token: str = Field(default_factory=lambda: os.getenv("GATEWAY_DEFAULT_TOKEN", "pbtc"))
    expose_rpc_url: bool = Field(default_factory=lambda: _env_flag("GATEWAY_EXPOSE_RPC_URL", "1"))
    debug_enabled: bool = Field(default_factory=lambda: _env_flag("GATEWAY_DEBUG_ENABLED", "0"))


def build_ledger(cfg: GatewayRuntimeConfig) -> PaymentLedger:
    if cfg.ledger_url in ("", "memory"):
        return InMemoryLedger()
    from .sql_ledger import SqlLedger

    return SqlLedger(cfg.ledger_url, echo=cfg.debug_enabled)


def build_chain(cfg: GatewayRuntimeConfig) -> SolanaRpcClient:
    return SolanaRpcClient(cfg.rpc_url, timeout_s=cfg.rpc_timeout_s, commitment=cfg.commitment)


def build_service(
    cfg: GatewayRuntimeConfig,
    chain: ChainAccess,
    ledger: Optional[PaymentLedger] = None,
    tokens: Optional[TokenRegistry] = None,
) -> PaymentService:
    return PaymentService(
        ledger if ledger is not None else build_ledger(cfg),
        OnChainVerifier(chain),
        tokens if tokens is not None else TokenRegistry(tokens_from_env(), default_token=cfg.default_token),
        chain_timeout_s=cfg.chain_timeout_s,
    )
