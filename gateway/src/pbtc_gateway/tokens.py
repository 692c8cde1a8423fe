# Copyright 2025 t54 labs
# SPDX-License-Identifier: Apache-2.0
"""Token registry.

Payment requests name their asset with a free-form token id (``"pbtc"``,
``"sol"``). The registry resolves that id once into a closed variant,
:class:`NativeAsset` or :class:`FungibleToken`, and the verifier only ever sees
the variant.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, model_validator

from .errors import InvalidInput

PBTC_MINT = "HfMbPyDdZH6QMaDDUokjYCkHxzjoGBMpgaUvpLWGbF5p"
LAMPORTS_DECIMALS = 9


@dataclass(frozen=True)
class NativeAsset:
    symbol: str = "SOL"
    decimals: int = LAMPORTS_DECIMALS

    def to_display(self, raw: int) -> Decimal:
        return Decimal(raw) / (Decimal(10) ** self.decimals)


@dataclass(frozen=True)
class FungibleToken:
    mint: str
    symbol: str = ""
    decimals: int = LAMPORTS_DECIMALS


Asset = Union[NativeAsset, FungibleToken]


class TokenKind(str, Enum):
    native = "native"
    spl = "spl"


class TokenConfig(BaseModel):
    id: str
    symbol: str
    name: str = ""
    kind: TokenKind = TokenKind.spl
    mint: Optional[str] = None
    decimals: int = Field(LAMPORTS_DECIMALS, ge=0, le=18)
    token_program: str = Field("token", description="'token' or 'token-2022'")

    @model_validator(mode="after")
    def _mint_for_spl(self) -> "TokenConfig":
        if self.kind == TokenKind.spl and not self.mint:
            raise ValueError(f"token {self.id!r}: spl tokens require a mint address")
        return self

    def asset(self) -> Asset:
        if self.kind == TokenKind.native:
            return NativeAsset(symbol=self.symbol, decimals=self.decimals)
        return FungibleToken(mint=self.mint or "", symbol=self.symbol, decimals=self.decimals)

    def public_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "type": self.kind.value,
            "mint": self.mint,
            "decimals": self.decimals,
            "tokenProgram": self.token_program,
        }


DEFAULT_TOKENS: List[TokenConfig] = [
    TokenConfig(
        id="pbtc",
        symbol="PBTC",
        name="Purple Bitcoin",
        kind=TokenKind.spl,
        mint=PBTC_MINT,
        decimals=9,
    ),
    TokenConfig(id="sol", symbol="SOL", name="Solana", kind=TokenKind.native, decimals=LAMPORTS_DECIMALS),
]


class TokenRegistry:
    def __init__(self, tokens: Iterable[TokenConfig], default_token: str = "pbtc"):
        self._tokens: Dict[str, TokenConfig] = {}
        for token in tokens:
            self._tokens[token.id.lower()] = token
        if default_token.lower() not in self._tokens:
            raise ValueError(f"default token {default_token!r} is not registered")
        self.default_token = default_token.lower()

    def get(self, token_id: Optional[str]) -> TokenConfig:
        key = (token_id or self.default_token).strip().lower()
        token = self._tokens.get(key)
        if token is None:
            raise InvalidInput(f"Unsupported token: {token_id}")
        return token

    def normalize(self, token_id: Optional[str]) -> str:
        return self.get(token_id).id

    def resolve(self, token_id: Optional[str]) -> Asset:
        return self.get(token_id).asset()

    def all(self) -> List[TokenConfig]:
        return list(self._tokens.values())


def tokens_from_env() -> List[TokenConfig]:
    """Default tokens extended (or overridden by id) with ``GATEWAY_TOKENS``.

    ``GATEWAY_TOKENS`` holds a JSON list of token objects, e.g.
    ``[{"id": "usdc", "symbol": "USDC", "mint": "EPjF...", "decimals": 6}]``.
    """
    tokens = {t.id: t for t in DEFAULT_TOKENS}
    raw = os.getenv("GATEWAY_TOKENS")
    if raw:
        parsed = json.loads(raw)
        if not isinstance(parsed, list):
            raise ValueError("GATEWAY_TOKENS must be a JSON list")
        for item in parsed:
            token = TokenConfig(**item)
            tokens[token.id] = token
    return list(tokens.values())
