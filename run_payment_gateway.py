#!/usr/bin/env python3
# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""
Standalone runner for the PBTC Payment Gateway.

Env:
  - GATEWAY_PORT (default: 8000)
  - GATEWAY_HOST (default: 0.0.0.0)
  - GATEWAY_RPC_URL (default: https://solana-rpc.publicnode.com)
  - GATEWAY_RPC_TIMEOUT_S (default: 15)
  - GATEWAY_CHAIN_TIMEOUT_S (default: 20)
  - GATEWAY_LEDGER_URL (default: memory; any SQLAlchemy URL for a durable ledger)
  - GATEWAY_DEFAULT_TOKEN (default: pbtc)
  - GATEWAY_TOKENS (optional JSON list of extra tokens)
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

# Add package sources to Python path
repo_root = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.join(repo_root, 'gateway', 'src'))

# Load .env BEFORE importing pbtc_gateway so env vars are available during module init
from dotenv import load_dotenv  # type: ignore
load_dotenv()

from fastapi import Depends, FastAPI

from pbtc_gateway import (
    ChainAccess,
    GatewayRuntimeConfig,
    PaymentService,
    SolanaRpcClient,
    build_chain,
    build_service,
    get_gateway_cfg,
    get_payment_service,
    install_error_handlers,
    router,
    setup_otel_from_env,
)


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("payment_gateway")


def build_app(
    cfg: Optional[GatewayRuntimeConfig] = None,
    chain: Optional[ChainAccess] = None,
    service: Optional[PaymentService] = None,
) -> FastAPI:
    cfg = cfg or GatewayRuntimeConfig()
    chain = chain if chain is not None else build_chain(cfg)
    service = service or build_service(cfg, chain)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        if isinstance(chain, SolanaRpcClient):
            await chain.aclose()
        await service.ledger.close()
        logger.info("Payment Gateway shut down")

    app = FastAPI(
        title="PBTC Payment Gateway",
        description="Non-custodial Solana payment requests with on-chain confirmation",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Wire runtime config and the service via dependencies
    app.dependency_overrides[get_gateway_cfg] = lambda: cfg
    app.dependency_overrides[get_payment_service] = lambda: service
    install_error_handlers(app)

    # Health
    @app.get("/health")
    async def health(cfg: GatewayRuntimeConfig = Depends(get_gateway_cfg)) -> dict:
        return {
            "status": "ok",
            "time": datetime.now(timezone.utc).isoformat(),
            "network": cfg.network,
        }

    # Mount payment API (/api/*)
    app.include_router(router)

    if setup_otel_from_env():
        logger.info("OpenTelemetry tracing enabled")
    logger.info(f"Payment Gateway app initialized (ledger={cfg.ledger_url}, rpc={cfg.rpc_url})")
    return app


app = build_app()


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("GATEWAY_HOST", "0.0.0.0")
    port = int(os.getenv("GATEWAY_PORT", "8000"))
    uvicorn.run("run_payment_gateway:app", host=host, port=port, reload=True, log_level="info")
