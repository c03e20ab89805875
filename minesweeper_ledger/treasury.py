from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict

from .errors import ArithmeticOverflow, InsufficientTreasury

if TYPE_CHECKING:  # pragma: no cover
    from .state import PlayerRecord

UINT256_MAX = 2 ** 256 - 1


def checked_add(a: int, b: int) -> int:
    total = a + b
    if a < 0 or b < 0 or total > UINT256_MAX:
        raise ArithmeticOverflow()
    return total


def checked_sub(a: int, b: int) -> int:
    if b < 0 or b > a:
        raise ArithmeticOverflow()
    return a - b


@dataclass
class Treasury:
    """Escrowed entry fees backing rewards.

    ``reserved`` is the sum of rewards promised to active sessions; the owner
    can only withdraw what lies above it.
    """

    balance: int = 0
    reserved: int = 0

    @property
    def withdrawable(self) -> int:
        return self.balance - self.reserved

    def deposit(self, amount: int) -> None:
        self.balance = checked_add(self.balance, amount)

    def reserve(self, amount: int) -> None:
        if amount > self.withdrawable:
            raise InsufficientTreasury()
        self.reserved = checked_add(self.reserved, amount)

    def release(self, amount: int) -> None:
        self.reserved = checked_sub(self.reserved, amount)

    def payout(self, to: "PlayerRecord", amount: int) -> None:
        if amount < 0:
            raise ArithmeticOverflow()
        if amount > self.balance:
            raise InsufficientTreasury()
        to.credit(amount)
        self.balance -= amount

    def withdraw(self, to: "PlayerRecord", amount: int) -> None:
        if amount < 0:
            raise ArithmeticOverflow()
        if amount > self.withdrawable:
            raise InsufficientTreasury()
        self.payout(to, amount)

    def to_dict(self) -> Dict[str, int]:
        return {
            "balance": self.balance,
            "reserved": self.reserved,
            "withdrawable": self.withdrawable,
        }
