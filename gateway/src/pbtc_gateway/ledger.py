# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Payment ledger.

Stores payment requests keyed by reference, with a secondary index from
settlement signature to reference. Records are append-only: they move from
``pending`` to ``confirmed`` once and are never deleted.

``PaymentLedger`` is the contract; ``InMemoryLedger`` keeps plain dicts behind
one ``asyncio.Lock`` and ``SqlLedger`` (see ``sql_ledger``) relies on the
database for atomicity.
"""

from __future__ import annotations

import abc
import asyncio
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import AlreadyExists, Conflict, NotFound, Terminal, short_address


class PaymentStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"


@dataclass
class PaymentRequest:
    reference: str
    merchant_wallet: str
    amount: Decimal
    token_id: str
    memo: Optional[str] = None
    status: PaymentStatus = PaymentStatus.pending
    signature: Optional[str] = None
    expected_payer: Optional[str] = None
    id: str = ""
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    received_amount: Optional[Decimal] = None
    verified_sender: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == PaymentStatus.confirmed

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase shape used by the HTTP API."""
        return {
            "id": self.id,
            "reference": self.reference,
            "merchantWallet": self.merchant_wallet,
            "amount": str(self.amount),
            "tokenId": self.token_id,
            "memo": self.memo,
            "status": self.status.value,
            "signature": self.signature,
            "expectedPayer": self.expected_payer,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "confirmedAt": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "receivedAmount": str(self.received_amount) if self.received_amount is not None else None,
            "verifiedSender": self.verified_sender,
        }


def new_payment(
    reference: str,
    merchant_wallet: str,
    amount: Decimal,
    token_id: str,
    memo: Optional[str],
    expected_payer: Optional[str],
) -> PaymentRequest:
    return PaymentRequest(
        id=str(uuid.uuid4()),
        reference=reference,
        merchant_wallet=merchant_wallet,
        amount=Decimal(amount),
        token_id=token_id,
        memo=memo or None,
        expected_payer=expected_payer or None,
        created_at=datetime.now(timezone.utc),
    )


def locked_elsewhere(payment: PaymentRequest) -> Conflict:
    return Conflict(
        f"Payment already locked to a different wallet ({short_address(payment.expected_payer)})",
        hint="Connect the wallet this payment was locked to, or start a new payment.",
    )


def signature_reused(signature: str) -> Conflict:
    return Conflict(
        "This transaction has already been used for another payment",
        hint=f"Signature {short_address(signature)} settles a different reference.",
    )


def completed_with_other_signature(reference: str) -> Terminal:
    return Terminal(f"Payment {reference} was already completed with a different transaction")


class PaymentLedger(abc.ABC):
    @abc.abstractmethod
    async def create(
        self,
        reference: str,
        merchant_wallet: str,
        amount: Decimal,
        token_id: str,
        memo: Optional[str] = None,
        expected_payer: Optional[str] = None,
    ) -> Tuple[PaymentRequest, bool]:
        """Create a pending request, or return the existing pending one.

        Returns ``(payment, created)``. Raises :class:`AlreadyExists` if the
        reference is already confirmed. An existing record without a payer
        lock adopts ``expected_payer``; other fields are left untouched.
        """

    @abc.abstractmethod
    async def get_by_reference(self, reference: str) -> Optional[PaymentRequest]: ...

    @abc.abstractmethod
    async def get_by_signature(self, signature: str) -> Optional[PaymentRequest]: ...

    @abc.abstractmethod
    async def lock_payer(self, reference: str, payer_wallet: str) -> PaymentRequest:
        """Bind the request to ``payer_wallet``; idempotent for the same wallet."""

    @abc.abstractmethod
    async def mark_confirmed(
        self,
        reference: str,
        signature: str,
        received_amount: Optional[Decimal] = None,
        verified_sender: Optional[str] = None,
    ) -> PaymentRequest:
        """Compare-and-set ``pending -> confirmed`` together with the signature index.

        Re-confirming with the same signature returns the stored record.
        """

    @abc.abstractmethod
    async def list_by_merchant(self, merchant_wallet: Optional[str]) -> List[PaymentRequest]: ...

    async def list_all(self) -> List[PaymentRequest]:
        return await self.list_by_merchant(None)

    async def close(self) -> None:
        return None


class InMemoryLedger(PaymentLedger):
    def __init__(self) -> None:
        self._payments: Dict[str, PaymentRequest] = {}
        self._signature_index: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        reference: str,
        merchant_wallet: str,
        amount: Decimal,
        token_id: str,
        memo: Optional[str] = None,
        expected_payer: Optional[str] = None,
    ) -> Tuple[PaymentRequest, bool]:
        async with self._lock:
            existing = self._payments.get(reference)
            if existing is not None:
                if existing.is_confirmed:
                    raise AlreadyExists("Payment already completed")
                if expected_payer and not existing.expected_payer:
                    existing.expected_payer = expected_payer
                return replace(existing), False
            payment = new_payment(reference, merchant_wallet, amount, token_id, memo, expected_payer)
            self._payments[reference] = payment
            return replace(payment), True

    async def get_by_reference(self, reference: str) -> Optional[PaymentRequest]:
        async with self._lock:
            payment = self._payments.get(reference)
            return replace(payment) if payment else None

    async def get_by_signature(self, signature: str) -> Optional[PaymentRequest]:
        async with self._lock:
            reference = self._signature_index.get(signature)
            if reference is None:
                return None
            return replace(self._payments[reference])

    async def lock_payer(self, reference: str, payer_wallet: str) -> PaymentRequest:
        async with self._lock:
            payment = self._payments.get(reference)
            if payment is None:
                raise NotFound("Payment not found")
            if payment.is_confirmed:
                raise Terminal("Payment already completed")
            if payment.expected_payer and payment.expected_payer != payer_wallet:
                raise locked_elsewhere(payment)
            payment.expected_payer = payer_wallet
            return replace(payment)

    async def mark_confirmed(
        self,
        reference: str,
        signature: str,
        received_amount: Optional[Decimal] = None,
        verified_sender: Optional[str] = None,
    ) -> PaymentRequest:
        async with self._lock:
            payment = self._payments.get(reference)
            if payment is None:
                raise NotFound("Payment request not found")
            if payment.is_confirmed:
                if payment.signature == signature:
                    return replace(payment)
                raise completed_with_other_signature(reference)
            bound = self._signature_index.get(signature)
            if bound is not None and bound != reference:
                raise signature_reused(signature)
            payment.status = PaymentStatus.confirmed
            payment.signature = signature
            payment.confirmed_at = datetime.now(timezone.utc)
            payment.received_amount = received_amount
            payment.verified_sender = verified_sender
            self._signature_index[signature] = reference
            return replace(payment)

    async def list_by_merchant(self, merchant_wallet: Optional[str]) -> List[PaymentRequest]:
        async with self._lock:
            return [
                replace(p)
                for p in self._payments.values()
                if not merchant_wallet or p.merchant_wallet == merchant_wallet
            ]
