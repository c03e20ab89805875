"""Seed sources for board generation.

Boards are only as unpredictable as their seed. ``LedgerEntropySeedProvider``
mixes block entropy with the player address and a per-player nonce; whoever
produces the block can grind that entropy, so it is not a fair source in an
adversarial setting. ``HmacSeedProvider`` keys the same material with an
operator secret, which moves the trust to the operator instead.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
import hashlib
import hmac


@dataclass(frozen=True)
class SeedContext:
    contract_address: str
    player: str
    nonce: int
    block_number: int
    timestamp: int
    prevrandao: bytes

    def message(self) -> bytes:
        return b"|".join(
            [
                self.contract_address.encode("utf-8"),
                self.player.encode("utf-8"),
                self.nonce.to_bytes(32, "big"),
                self.block_number.to_bytes(32, "big"),
                self.timestamp.to_bytes(32, "big"),
                self.prevrandao,
            ]
        )


class SeedProvider(Protocol):
    def next_seed(self, context: SeedContext) -> bytes:
        ...


class LedgerEntropySeedProvider:
    def next_seed(self, context: SeedContext) -> bytes:
        return hashlib.sha256(context.message()).digest()


class HmacSeedProvider:
    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("empty seed secret")
        self._key = secret.encode("utf-8")

    def next_seed(self, context: SeedContext) -> bytes:
        return hmac.new(self._key, context.message(), hashlib.sha256).digest()


def seed_commitment(seed: bytes) -> str:
    return hashlib.sha256(seed).hexdigest()
