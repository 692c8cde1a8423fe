# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from .checkout import CheckoutConfig, CheckoutSession, CheckoutStatus, TransferSigner
from .merchant import MerchantClient, PaymentAPIError

__all__ = [
    "MerchantClient",
    "PaymentAPIError",
    "CheckoutConfig",
    "CheckoutSession",
    "CheckoutStatus",
    "TransferSigner",
]
