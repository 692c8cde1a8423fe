# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""On-chain settlement verification.

Decides whether a transaction signature is a genuine, sufficient transfer to
a merchant, using only what the chain reports:

1. Fetch the transaction; absent means not found (retryable).
2. Reject transactions that failed on-chain.
3. Find the merchant's balance before and after, in the native balance table
   or in the token balance table filtered by owner and mint.
4. ``received = post - pre``; the merchant must appear in the transaction.
5. Reject non-positive deltas (merchant merely referenced, e.g. as payer).
6. Compare against the expected amount within ``AMOUNT_TOLERANCE``.
7. Determine the sender: fee payer for native transfers; for tokens the
   first other owner whose balance of the mint decreased, else the fee payer.
8. Reject a sender that differs from the expected one.

Nothing here is cached; the chain is the source of truth on every call.
Chain adapter failures (:class:`AdapterUnavailable`) propagate to the caller
rather than becoming a verdict.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from opentelemetry import trace

from .chain import ChainAccess, TokenBalance, TransactionRecord
from .errors import short_address
from .tokens import Asset, FungibleToken, NativeAsset

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Absolute, in display units; absorbs rounding in reported balances
AMOUNT_TOLERANCE = Decimal("0.0001")

NOT_FOUND_MESSAGE = "Transaction not found on-chain. It may still be processing."


@dataclass
class VerificationResult:
    valid: bool
    received_amount: Optional[Decimal] = None
    sender_address: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.valid,
            "error": self.error,
            "amount": str(self.received_amount) if self.received_amount is not None else None,
            "senderAddress": self.sender_address,
        }


def within_tolerance(received: Decimal, expected: Decimal, tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    return abs(Decimal(received) - Decimal(expected)) <= tolerance


def _find_token_entry(entries: List[TokenBalance], owner: str, mint: str) -> Optional[TokenBalance]:
    for e in entries:
        if e.owner == owner and e.mint == mint:
            return e
    return None


def _native_delta(tx: TransactionRecord, merchant_wallet: str, asset: NativeAsset) -> Optional[Decimal]:
    try:
        index = tx.account_keys.index(merchant_wallet)
    except ValueError:
        return None
    pre = tx.pre_balances[index] if index < len(tx.pre_balances) else 0
    post = tx.post_balances[index] if index < len(tx.post_balances) else 0
    return asset.to_display(post - pre)


def _token_delta(tx: TransactionRecord, merchant_wallet: str, asset: FungibleToken) -> Optional[Decimal]:
    post = _find_token_entry(tx.post_token_balances, merchant_wallet, asset.mint)
    if post is None:
        return None
    pre = _find_token_entry(tx.pre_token_balances, merchant_wallet, asset.mint)
    return post.ui_amount - (pre.ui_amount if pre else Decimal(0))


def _token_sender(tx: TransactionRecord, merchant_wallet: str, asset: FungibleToken) -> Optional[str]:
    # Heuristic: first non-merchant holder of the mint whose balance dropped.
    # A multi-party transaction can make this pick the wrong account.
    for pre in tx.pre_token_balances:
        if pre.mint != asset.mint or not pre.owner or pre.owner == merchant_wallet:
            continue
        post = _find_token_entry(tx.post_token_balances, pre.owner, asset.mint)
        post_amount = post.ui_amount if post else Decimal(0)
        if pre.ui_amount - post_amount > 0:
            return pre.owner
    return None


def _delta_and_sender(
    tx: TransactionRecord, merchant_wallet: str, asset: Asset
) -> Tuple[Optional[Decimal], Optional[str], str]:
    if isinstance(asset, NativeAsset):
        return (
            _native_delta(tx, merchant_wallet, asset),
            tx.fee_payer,
            "Merchant wallet not found in transaction",
        )
    return (
        _token_delta(tx, merchant_wallet, asset),
        _token_sender(tx, merchant_wallet, asset) or tx.fee_payer,
        "Merchant wallet not found in transaction token balances",
    )


class OnChainVerifier:
    def __init__(self, chain: ChainAccess, *, tolerance: Decimal = AMOUNT_TOLERANCE):
        self.chain = chain
        self.tolerance = tolerance

    async def verify(
        self,
        signature: str,
        merchant_wallet: str,
        expected_amount: Decimal,
        asset: Asset,
        expected_sender: Optional[str] = None,
    ) -> VerificationResult:
        with tracer.start_as_current_span("verify_settlement") as span:
            span.set_attribute("payment.signature", signature)
            span.set_attribute("payment.asset", asset.symbol or type(asset).__name__)
            result = await self._verify(signature, merchant_wallet, Decimal(expected_amount), asset, expected_sender)
            span.set_attribute("payment.verified", result.valid)
            if not result.valid:
                logger.info(f"Signature {short_address(signature)} not verified: {result.error}")
            return result

    async def _verify(
        self,
        signature: str,
        merchant_wallet: str,
        expected_amount: Decimal,
        asset: Asset,
        expected_sender: Optional[str],
    ) -> VerificationResult:
        tx = await self.chain.get_transaction(signature)
        if tx is None:
            return VerificationResult(valid=False, error=NOT_FOUND_MESSAGE, retryable=True)

        if tx.err:
            return VerificationResult(valid=False, error="Transaction failed on-chain")

        received, sender, missing_msg = _delta_and_sender(tx, merchant_wallet, asset)
        if received is None:
            return VerificationResult(valid=False, error=missing_msg)

        unit = asset.symbol or "tokens"
        if received <= 0:
            return VerificationResult(
                valid=False,
                error=f"No positive {unit} transfer to merchant detected",
                received_amount=received,
            )

        if not within_tolerance(received, expected_amount, self.tolerance):
            return VerificationResult(
                valid=False,
                error=f"Amount mismatch: expected {expected_amount} {unit}, received {received} {unit}",
                received_amount=received,
            )

        if expected_sender and sender and sender != expected_sender:
            return VerificationResult(
                valid=False,
                error=(
                    f"Sender mismatch: payment was locked to wallet {short_address(expected_sender)} "
                    f"but transaction was sent by {short_address(sender)}"
                ),
                received_amount=received,
                sender_address=sender,
            )

        return VerificationResult(valid=True, received_amount=received, sender_address=sender)
