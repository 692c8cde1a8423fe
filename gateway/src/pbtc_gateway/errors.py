# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base for every typed failure of the payment protocol.

    Subclasses fix the machine-readable ``code`` and the HTTP status the
    router answers with. ``retryable`` tells clients whether the same call
    may succeed later without changing its arguments.
    """

    code = "PAYMENT_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, *, hint: Optional[str] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }
        if self.hint:
            body["hint"] = self.hint
        return body


class InvalidInput(PaymentError):
    code = "INVALID_INPUT"


class NotFound(PaymentError):
    code = "NOT_FOUND"
    status_code = 404


class Conflict(PaymentError):
    code = "CONFLICT"


class Terminal(PaymentError):
    code = "TERMINAL"


class AlreadyExists(Terminal):
    code = "ALREADY_COMPLETED"


class Unverified(PaymentError):
    code = "UNVERIFIED"


class AdapterUnavailable(PaymentError):
    code = "CHAIN_UNAVAILABLE"
    status_code = 503
    retryable = True


def short_address(address: Optional[str]) -> str:
    if not address:
        return ""
    return f"{address[:8]}..."
