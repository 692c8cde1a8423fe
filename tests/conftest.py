# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
import os
import sys
from decimal import Decimal

import pytest


def _add_sources_to_syspath() -> None:
    root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    for path in (
        root,
        os.path.dirname(os.path.abspath(__file__)),
        os.path.join(root, "gateway", "src"),
        os.path.join(root, "packages", "pbtc-pay", "src"),
    ):
        if path not in sys.path:
            sys.path.insert(0, path)


_add_sources_to_syspath()


# Import after adding to syspath
from fakes import MERCHANT, OTHER_WALLET, PAYER, FakeChain, token_transfer_tx  # noqa: E402
from pbtc_gateway import InMemoryLedger, OnChainVerifier, PaymentService, TokenRegistry  # noqa: E402
from pbtc_gateway.tokens import DEFAULT_TOKENS  # noqa: E402


@pytest.fixture
def test_env(monkeypatch) -> None:
    """Set up test environment variables."""
    monkeypatch.setenv("GATEWAY_RPC_URL", "http://rpc.test")
    monkeypatch.setenv("GATEWAY_RPC_TIMEOUT_S", "2")
    monkeypatch.setenv("GATEWAY_CHAIN_TIMEOUT_S", "2")
    monkeypatch.setenv("GATEWAY_LEDGER_URL", "memory")
    monkeypatch.setenv("GATEWAY_NETWORK", "devnet")
    monkeypatch.delenv("GATEWAY_TOKENS", raising=False)
    monkeypatch.delenv("GATEWAY_DEFAULT_TOKEN", raising=False)
    # Never export spans from tests
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_CONSOLE_EXPORTER", raising=False)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def tokens() -> TokenRegistry:
    return TokenRegistry(DEFAULT_TOKENS)


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def service(chain: FakeChain, ledger: InMemoryLedger, tokens: TokenRegistry) -> PaymentService:
    return PaymentService(ledger, OnChainVerifier(chain), tokens, chain_timeout_s=1.0)


@pytest.fixture
def wallets() -> dict:
    """Sample Solana addresses used across tests."""
    return {"merchant": MERCHANT, "payer": PAYER, "other": OTHER_WALLET}


@pytest.fixture
def settled_pbtc(chain: FakeChain):
    """Register a 25 PBTC transfer PAYER -> MERCHANT under signature ``sig-ord1``."""
    tx = token_transfer_tx("sig-ord1", PAYER, MERCHANT, Decimal("25"))
    chain.add(tx)
    return tx
