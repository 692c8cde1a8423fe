# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Payment reconciliation protocol.

State machine per reference::

    create ──► pending ──confirm (verified)──► confirmed
                  │ ▲
                  └─┘ lock / failed verification (stays pending)

``failed`` is a client-side outcome only; a rejected confirmation leaves the
record pending so it can be retried with a corrected signature.

Confirm never holds a ledger lock across chain I/O. Concurrent confirms for
one reference race at ``PaymentLedger.mark_confirmed``, a compare-and-set;
the loser sees the confirmed record and takes the idempotent or conflicting
branch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .errors import (
    AdapterUnavailable,
    Conflict,
    InvalidInput,
    NotFound,
    PaymentError,
    Unverified,
    short_address,
)
from .ledger import PaymentLedger, PaymentRequest, completed_with_other_signature, signature_reused
from .tokens import TokenRegistry
from .verifier import OnChainVerifier, VerificationResult

logger = logging.getLogger(__name__)

UNVERIFIED_HINT = (
    "The transaction could not be verified. This may be because the transaction is still "
    "processing, or there was a mismatch with the expected sender/amount."
)


@dataclass
class CreateOutcome:
    payment: PaymentRequest
    created: bool


@dataclass
class ConfirmOutcome:
    payment: PaymentRequest
    received_amount: Optional[Decimal]
    verified_sender: Optional[str]
    already_confirmed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": True,
            "payment": self.payment.to_dict(),
            "verified": True,
            "receivedAmount": str(self.received_amount) if self.received_amount is not None else None,
            "verifiedSender": self.verified_sender,
        }
        if self.already_confirmed:
            body["message"] = "Payment already confirmed"
        return body


class PaymentService:
    def __init__(
        self,
        ledger: PaymentLedger,
        verifier: OnChainVerifier,
        tokens: TokenRegistry,
        *,
        chain_timeout_s: float = 20.0,
    ):
        self.ledger = ledger
        self.verifier = verifier
        self.tokens = tokens
        self.chain_timeout_s = chain_timeout_s

    async def _verify_bounded(
        self,
        signature: str,
        merchant_wallet: str,
        amount: Decimal,
        token_id: str,
        expected_sender: Optional[str],
    ) -> VerificationResult:
        asset = self.tokens.resolve(token_id)
        try:
            return await asyncio.wait_for(
                self.verifier.verify(signature, merchant_wallet, amount, asset, expected_sender),
                timeout=self.chain_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise AdapterUnavailable(
                f"Timed out after {self.chain_timeout_s:g}s waiting for the chain",
                hint="The payment is still pending; retry the confirmation shortly.",
            ) from e

    async def create(
        self,
        reference: str,
        merchant_wallet: str,
        amount: Decimal,
        memo: Optional[str] = None,
        payer_wallet: Optional[str] = None,
        token_id: Optional[str] = None,
    ) -> CreateOutcome:
        if Decimal(amount) <= 0:
            raise InvalidInput("Amount must be positive")
        token = self.tokens.normalize(token_id)
        payment, created = await self.ledger.create(
            reference, merchant_wallet, Decimal(amount), token, memo, payer_wallet
        )
        if payer_wallet and payment.expected_payer != payer_wallet:
            raise Conflict(
                f"This payment is locked to a different wallet ({short_address(payment.expected_payer)})",
                hint="Reconnect with the wallet that started this payment.",
            )
        if created:
            logger.info(f"Payment created: reference={reference} amount={payment.amount} token={token}")
        return CreateOutcome(payment=payment, created=created)

    async def lock(self, reference: str, payer_wallet: str) -> PaymentRequest:
        payment = await self.ledger.lock_payer(reference, payer_wallet)
        logger.info(f"Payment {reference} locked to {short_address(payer_wallet)}")
        return payment

    async def confirm(
        self,
        reference: str,
        signature: str,
        sender_wallet: str,
        token_id: Optional[str] = None,
    ) -> ConfirmOutcome:
        payment = await self.ledger.get_by_reference(reference)
        if payment is None:
            raise NotFound("Payment request not found")

        if payment.is_confirmed:
            if payment.signature == signature:
                return ConfirmOutcome(
                    payment=payment,
                    received_amount=payment.received_amount,
                    verified_sender=payment.verified_sender,
                    already_confirmed=True,
                )
            raise completed_with_other_signature(reference)

        if token_id is not None and self.tokens.normalize(token_id) != payment.token_id:
            raise InvalidInput(f"Payment {reference} expects token {payment.token_id}, not {token_id}")

        if payment.expected_payer and payment.expected_payer != sender_wallet:
            raise Conflict(
                f"This payment is locked to wallet {short_address(payment.expected_payer)} "
                f"but you're trying to confirm from {short_address(sender_wallet)}"
            )

        bound = await self.ledger.get_by_signature(signature)
        if bound is not None and bound.reference != reference and bound.is_confirmed:
            raise signature_reused(signature)

        verification = await self._verify_bounded(
            signature,
            payment.merchant_wallet,
            payment.amount,
            payment.token_id,
            payment.expected_payer or sender_wallet,
        )
        if not verification.valid:
            raise Unverified(
                verification.error or "Transaction verification failed",
                hint=UNVERIFIED_HINT,
                retryable=verification.retryable,
            )

        confirmed = await self.ledger.mark_confirmed(
            reference,
            signature,
            received_amount=verification.received_amount,
            verified_sender=verification.sender_address,
        )
        # a concurrent winner with the same signature stored its own verdict
        received, sender = confirmed.received_amount, confirmed.verified_sender
        logger.info(
            f"Payment {reference} confirmed by {short_address(signature)} "
            f"received={received} sender={short_address(sender)}"
        )
        return ConfirmOutcome(payment=confirmed, received_amount=received, verified_sender=sender)

    async def query(
        self,
        reference: str,
        merchant_wallet: str,
        expected_amount: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        payment = await self.ledger.get_by_reference(reference)
        if payment is None:
            return {"paid": False, "error": "Payment not found"}
        if payment.merchant_wallet != merchant_wallet:
            return {"paid": False, "error": "Merchant wallet mismatch"}
        if expected_amount is not None and Decimal(expected_amount) != payment.amount:
            return {
                "paid": False,
                "error": "Amount mismatch",
                "expected": str(expected_amount),
                "actual": str(payment.amount),
            }

        base: Dict[str, Any] = {
            "signature": payment.signature,
            "amount": str(payment.amount),
            "tokenId": payment.token_id,
            "timestamp": payment.created_at.isoformat() if payment.created_at else None,
            "status": payment.status.value,
        }
        if not (payment.is_confirmed and payment.signature):
            return {"paid": False, **base, "expectedPayer": payment.expected_payer}

        try:
            verification = await self._verify_bounded(
                payment.signature,
                payment.merchant_wallet,
                payment.amount,
                payment.token_id,
                payment.expected_payer,
            )
            error = verification.error
        except PaymentError as e:
            # read path reports unpaid rather than failing the caller
            logger.warning(f"Re-verification of {reference} failed ({e.code}): {e.message}")
            verification, error = None, e.message
        valid = bool(verification and verification.valid)
        return {
            "paid": valid,
            **base,
            "verified": valid,
            "verificationError": None if valid else error,
            "payer": payment.expected_payer,
        }

    async def verify_onchain(
        self,
        signature: str,
        merchant_wallet: str,
        expected_amount: Decimal,
        sender_wallet: Optional[str] = None,
        token_id: Optional[str] = None,
    ) -> VerificationResult:
        token = self.tokens.normalize(token_id)
        return await self._verify_bounded(signature, merchant_wallet, Decimal(expected_amount), token, sender_wallet)

    async def get(self, reference: str) -> PaymentRequest:
        payment = await self.ledger.get_by_reference(reference)
        if payment is None:
            raise NotFound("Payment not found")
        return payment

    async def list_by_merchant(self, merchant_wallet: str) -> List[PaymentRequest]:
        return await self.ledger.list_by_merchant(merchant_wallet)
