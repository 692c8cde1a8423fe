# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx

Amount = Union[Decimal, int, float, str]


class PaymentAPIError(Exception):
    """Error body returned by the gateway (4xx/5xx)."""

    def __init__(
        self,
        status_code: int,
        error: str,
        *,
        code: Optional[str] = None,
        retryable: bool = False,
        hint: Optional[str] = None,
    ):
        super().__init__(f"{status_code} {code or 'ERROR'}: {error}")
        self.status_code = status_code
        self.error = error
        self.code = code
        self.retryable = retryable
        self.hint = hint


def _amount(v: Amount) -> str:
    # decimal string; a JSON float would round past ~15 significant digits
    return str(Decimal(str(v)))


class MerchantClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise ValueError("base_url required for MerchantClient")
        self.base_url = base_url.rstrip("/")
        self.http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "MerchantClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    def _json(self, r: httpx.Response, path: str) -> Dict[str, Any]:
        if (r.headers.get("content-type") or "").split(";", 1)[0].strip().lower() != "application/json":
            raise httpx.HTTPError(f"invalid content-type from {path}")
        body = r.json()
        if r.status_code >= 400:
            raise PaymentAPIError(
                r.status_code,
                str(body.get("error") or r.text),
                code=body.get("code"),
                retryable=bool(body.get("retryable")),
                hint=body.get("hint"),
            )
        return body

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = {k: v for k, v in payload.items() if v is not None}
        r = await self.http.post(path, json=body)
        return self._json(r, path)

    async def _get(self, path: str) -> Dict[str, Any]:
        r = await self.http.get(path)
        return self._json(r, path)

    async def create_payment(
        self,
        *,
        merchant_wallet: str,
        amount: Amount,
        reference: str,
        memo: Optional[str] = None,
        payer_wallet: Optional[str] = None,
        token_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._post(
            "/api/payments/create",
            {
                "merchantWallet": merchant_wallet,
                "amount": _amount(amount),
                "reference": reference,
                "memo": memo,
                "payerWallet": payer_wallet,
                "tokenId": token_id,
            },
        )

    async def lock_payment(self, *, reference: str, payer_wallet: str) -> Dict[str, Any]:
        return await self._post("/api/payments/lock", {"reference": reference, "payerWallet": payer_wallet})

    async def confirm_payment(
        self,
        *,
        reference: str,
        signature: str,
        sender_wallet: str,
        token_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._post(
            "/api/payments/confirm",
            {
                "reference": reference,
                "signature": signature,
                "senderWallet": sender_wallet,
                "tokenId": token_id,
            },
        )

    async def verify_payment(
        self,
        *,
        reference: str,
        merchant_wallet: str,
        expected_amount: Optional[Amount] = None,
    ) -> Dict[str, Any]:
        """Ask the gateway whether ``reference`` is paid.

        The gateway re-checks the stored settlement on-chain before answering
        ``paid: true``.
        """
        return await self._post(
            "/api/verify-payment",
            {
                "reference": reference,
                "merchantWallet": merchant_wallet,
                "expectedAmount": _amount(expected_amount) if expected_amount is not None else None,
            },
        )

    async def verify_onchain(
        self,
        *,
        signature: str,
        merchant_wallet: str,
        expected_amount: Amount,
        sender_wallet: Optional[str] = None,
        token_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._post(
            "/api/verify-onchain",
            {
                "signature": signature,
                "merchantWallet": merchant_wallet,
                "expectedAmount": _amount(expected_amount),
                "senderWallet": sender_wallet,
                "tokenId": token_id,
            },
        )

    async def get_payment(self, reference: str) -> Dict[str, Any]:
        return (await self._get(f"/api/payments/{quote(reference, safe='')}"))["payment"]

    async def list_merchant_payments(self, merchant_wallet: str) -> List[Dict[str, Any]]:
        return (await self._get(f"/api/payments/merchant/{quote(merchant_wallet, safe='')}"))["payments"]

    async def get_config(self) -> Dict[str, Any]:
        return await self._get("/api/config")
