# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Client-side checkout flow.

A :class:`CheckoutSession` walks one payment through::

    pending ──pay()──► processing ──confirm ok──► confirmed
                           └──────────error─────► failed

The gateway never persists ``processing`` or ``failed``; they describe what
this session has observed. Signing and broadcasting the transfer is delegated
to a :class:`TransferSigner` so no key material passes through here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from .merchant import Amount, MerchantClient, PaymentAPIError

logger = logging.getLogger(__name__)


class CheckoutStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    confirmed = "confirmed"
    failed = "failed"


class TransferSigner(Protocol):
    """Wallet-side capability: build, sign and broadcast a transfer.

    Returns the transaction signature once the transfer has been submitted.
    """

    @property
    def address(self) -> str: ...

    async def sign_and_send(
        self,
        recipient: str,
        amount: Decimal,
        token_id: str,
        memo: Optional[str],
    ) -> str: ...


@dataclass
class CheckoutConfig:
    merchant_wallet: str
    amount: Amount
    reference: str
    token_id: Optional[str] = None
    memo: Optional[str] = None
    # Confirm attempts while the gateway answers with a retryable error
    confirm_attempts: int = 5
    retry_delay_s: float = 2.0


class CheckoutSession:
    def __init__(self, client: MerchantClient, signer: TransferSigner, cfg: CheckoutConfig):
        if cfg.confirm_attempts < 1:
            raise ValueError("confirm_attempts must be >= 1")
        self.client = client
        self.signer = signer
        self.cfg = cfg
        self.status: Optional[CheckoutStatus] = None
        self.payment: Optional[Dict[str, Any]] = None
        self.signature: Optional[str] = None
        self.error: Optional[str] = None
        self.confirmation: Optional[Dict[str, Any]] = None

    def _fail(self, message: str) -> None:
        self.status = CheckoutStatus.failed
        self.error = message
        logger.info(f"Checkout {self.cfg.reference} failed: {message}")

    async def start(self) -> Dict[str, Any]:
        """Create (or resume) the payment request and lock it to the signer's wallet."""
        try:
            await self.client.create_payment(
                merchant_wallet=self.cfg.merchant_wallet,
                amount=self.cfg.amount,
                reference=self.cfg.reference,
                memo=self.cfg.memo,
                token_id=self.cfg.token_id,
            )
        except PaymentAPIError as e:
            if e.code != "ALREADY_COMPLETED":
                raise
            self.payment = await self.client.get_payment(self.cfg.reference)
            self.status = CheckoutStatus.confirmed
            return self.payment
        locked = await self.client.lock_payment(reference=self.cfg.reference, payer_wallet=self.signer.address)
        self.payment = locked["payment"]
        self.status = CheckoutStatus.pending
        return self.payment

    async def pay(self) -> CheckoutStatus:
        if self.status is None:
            await self.start()
        if self.status == CheckoutStatus.confirmed:
            return self.status
        if self.payment is None:
            raise RuntimeError("Checkout has no payment request; start() did not complete")

        self.status = CheckoutStatus.processing
        self.error = None
        if self.signature is None:
            try:
                self.signature = await self.signer.sign_and_send(
                    self.payment["merchantWallet"],
                    Decimal(str(self.payment["amount"])),
                    self.payment["tokenId"],
                    self.payment.get("memo"),
                )
            except Exception as e:
                logger.exception(f"Checkout {self.cfg.reference}: signer failed")
                self._fail(f"Transfer was not sent: {e}")
                return self.status
            logger.info(f"Checkout {self.cfg.reference}: transfer sent {self.signature[:8]}...")

        return await self._confirm()

    async def _confirm(self) -> CheckoutStatus:
        if self.signature is None:
            raise RuntimeError("No transfer signature to confirm")
        for attempt in range(1, self.cfg.confirm_attempts + 1):
            try:
                self.confirmation = await self.client.confirm_payment(
                    reference=self.cfg.reference,
                    signature=self.signature,
                    sender_wallet=self.signer.address,
                    token_id=self.cfg.token_id,
                )
            except PaymentAPIError as e:
                if e.retryable and attempt < self.cfg.confirm_attempts:
                    logger.info(
                        f"Checkout {self.cfg.reference}: confirm attempt {attempt} not final ({e.error}); retrying"
                    )
                    await asyncio.sleep(self.cfg.retry_delay_s)
                    continue
                self._fail(e.error)
                return self.status
            self.payment = self.confirmation["payment"]
            self.status = CheckoutStatus.confirmed
            return self.status
        self._fail("Confirmation attempts exhausted")
        return self.status
