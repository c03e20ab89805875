from __future__ import annotations

from typing import Optional


class ContractError(ValueError):
    """Rejected call. ``str(exc)`` is the snake-case reason code unless a detail is given."""

    code = "contract_error"

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class InvalidDifficulty(ContractError):
    code = "invalid_difficulty"


class SessionAlreadyActive(ContractError):
    code = "active_game_exists"


class NoActiveSession(ContractError):
    code = "no_active_game"


class InsufficientPayment(ContractError):
    code = "insufficient_payment"


class ExcessPayment(ContractError):
    code = "excess_payment"


class CellOutOfBounds(ContractError):
    code = "out_of_bounds"


class AlreadyRevealed(ContractError):
    code = "already_revealed"


class InsufficientTreasury(ContractError):
    code = "insufficient_treasury"


class Unauthorized(ContractError):
    code = "unauthorized"


class ArithmeticOverflow(ContractError):
    code = "arithmetic_overflow"


class SessionNotExpired(ContractError):
    code = "session_not_expired"


class InsufficientFunds(ContractError):
    code = "insufficient_funds"
