# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Chain access.

``ChainAccess`` is the capability the verifier depends on. ``SolanaRpcClient``
implements it over Solana JSON-RPC; it is constructed by the process entry
point and passed in, and owns its HTTP connection pool until ``aclose()``.
"""

from __future__ import annotations

import base64
import itertools
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Protocol, Union

import httpx
from opentelemetry import trace

from .errors import AdapterUnavailable, InvalidInput

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# JSON-RPC "invalid params", e.g. a malformed signature
RPC_INVALID_PARAMS = -32602


@dataclass
class TokenBalance:
    account_index: int
    mint: str
    owner: Optional[str]
    ui_amount: Decimal


@dataclass
class TransactionRecord:
    signature: str
    account_keys: List[str]
    pre_balances: List[int] = field(default_factory=list)
    post_balances: List[int] = field(default_factory=list)
    pre_token_balances: List[TokenBalance] = field(default_factory=list)
    post_token_balances: List[TokenBalance] = field(default_factory=list)
    err: Any = None
    slot: Optional[int] = None
    block_time: Optional[int] = None

    @property
    def fee_payer(self) -> Optional[str]:
        return self.account_keys[0] if self.account_keys else None


class ChainAccess(Protocol):
    async def get_transaction(self, signature: str) -> Optional[TransactionRecord]: ...

    async def get_account_balance(self, address: str) -> int: ...

    async def get_latest_blockhash(self) -> Dict[str, Any]: ...

    async def send_transaction(self, signed_tx: Union[bytes, str]) -> str: ...


def _ui_amount(entry: Dict[str, Any]) -> Decimal:
    ui = entry.get("uiTokenAmount") or {}
    text = ui.get("uiAmountString")
    try:
        if text is not None:
            return Decimal(text)
        if ui.get("amount") is not None:
            return Decimal(ui["amount"]) / (Decimal(10) ** int(ui.get("decimals", 0)))
    except (InvalidOperation, ValueError):
        logger.warning(f"Unparseable token amount in balance entry: {ui}")
    return Decimal(0)


def _token_balances(entries: Optional[List[Dict[str, Any]]]) -> List[TokenBalance]:
    out: List[TokenBalance] = []
    for e in entries or []:
        out.append(
            TokenBalance(
                account_index=int(e.get("accountIndex", -1)),
                mint=str(e.get("mint", "")),
                owner=e.get("owner"),
                ui_amount=_ui_amount(e),
            )
        )
    return out


def parse_transaction(signature: str, result: Dict[str, Any]) -> TransactionRecord:
    """Build a :class:`TransactionRecord` from a ``getTransaction`` result.

    Balance arrays index into the static account keys followed by any
    addresses loaded from lookup tables (writable first, then readonly).
    """
    meta = result.get("meta") or {}
    message = (result.get("transaction") or {}).get("message") or {}
    keys: List[str] = []
    for k in message.get("accountKeys") or []:
        # jsonParsed encoding wraps keys as {"pubkey": ...}
        keys.append(k["pubkey"] if isinstance(k, dict) else str(k))
    loaded = meta.get("loadedAddresses") or {}
    keys.extend(loaded.get("writable") or [])
    keys.extend(loaded.get("readonly") or [])
    return TransactionRecord(
        signature=signature,
        account_keys=keys,
        pre_balances=[int(b) for b in meta.get("preBalances") or []],
        post_balances=[int(b) for b in meta.get("postBalances") or []],
        pre_token_balances=_token_balances(meta.get("preTokenBalances")),
        post_token_balances=_token_balances(meta.get("postTokenBalances")),
        err=meta.get("err"),
        slot=result.get("slot"),
        block_time=result.get("blockTime"),
    )


class SolanaRpcClient:
    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_s: float = 15.0,
        commitment: str = "confirmed",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not rpc_url:
            raise ValueError("rpc_url required")
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.http = httpx.AsyncClient(timeout=timeout_s, transport=transport)
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        with tracer.start_as_current_span(f"solana.{method}"):
            try:
                r = await self.http.post(self.rpc_url, json=payload)
                r.raise_for_status()
                body = r.json()
            except httpx.TimeoutException as e:
                logger.warning(f"RPC {method} timed out: {e}")
                raise AdapterUnavailable(f"Solana RPC timed out during {method}") from e
            except httpx.HTTPError as e:
                logger.error(f"RPC {method} transport error: {e}")
                raise AdapterUnavailable(f"Solana RPC unavailable: {e}") from e
            except ValueError as e:
                raise AdapterUnavailable(f"Solana RPC returned invalid JSON for {method}") from e

        err = body.get("error")
        if err:
            msg = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            if isinstance(err, dict) and err.get("code") == RPC_INVALID_PARAMS:
                raise InvalidInput(f"Rejected by RPC: {msg}")
            raise AdapterUnavailable(f"Solana RPC error: {msg}")
        return body.get("result")

    async def get_transaction(self, signature: str) -> Optional[TransactionRecord]:
        result = await self._rpc_call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not result:
            return None
        return parse_transaction(signature, result)

    async def get_account_balance(self, address: str) -> int:
        result = await self._rpc_call("getBalance", [address, {"commitment": self.commitment}])
        if isinstance(result, dict):
            return int(result.get("value", 0))
        return int(result or 0)

    async def get_latest_blockhash(self) -> Dict[str, Any]:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": self.commitment}])
        return (result or {}).get("value") or {}

    async def send_transaction(self, signed_tx: Union[bytes, str]) -> str:
        if isinstance(signed_tx, (bytes, bytearray)):
            signed_tx = base64.b64encode(signed_tx).decode()
        return await self._rpc_call(
            "sendTransaction",
            [signed_tx, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
