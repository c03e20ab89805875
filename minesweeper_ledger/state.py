from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .difficulty import Difficulty, DifficultyConfig, DifficultyRegistry
from .errors import ArithmeticOverflow, InsufficientFunds
from .game_engine import Board
from .stats import PlayerStats, StatsLedger
from .treasury import Treasury, checked_add


class SessionStatus(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"
    ABANDONED = "abandoned"

    @property
    def terminal(self) -> bool:
        return self in (SessionStatus.WON, SessionStatus.LOST, SessionStatus.ABANDONED)


@dataclass(frozen=True)
class CallContext:
    """What the execution environment hands to every call.

    ``block_number`` is a lower bound; the ledger assigns the actual height.
    """

    sender: str
    value: int = 0
    block_number: int = 0
    timestamp: int = 0
    prevrandao: bytes = b""


@dataclass
class Session:
    player: str
    difficulty: Difficulty
    config: DifficultyConfig
    board: Board
    status: SessionStatus
    entry_fee_paid: int
    started_at: int
    nonce: int
    seed: bytes
    moves_count: int = 0
    finished_at: Optional[int] = None
    payout: int = 0
    exploded_cell: Optional[Tuple[int, int]] = None


@dataclass
class PlayerRecord:
    """One account: spendable balance, seed nonce, latest session and stats."""

    address: str
    balance: int = 0
    nonce: int = 0
    session: Optional[Session] = None
    stats: PlayerStats = field(default_factory=PlayerStats)

    def credit(self, amount: int) -> None:
        self.balance = checked_add(self.balance, amount)

    def debit(self, amount: int) -> None:
        if amount < 0:
            raise ArithmeticOverflow()
        if amount > self.balance:
            raise InsufficientFunds()
        self.balance -= amount


@dataclass
class Event:
    seq: int
    name: str
    block_number: int
    timestamp: int
    data: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "name": self.name,
            "block_number": self.block_number,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }


@dataclass
class ContractState:
    """Shared ledger fields plus what one transaction touches.

    ``players`` holds only the records the store loaded for the running call
    and ``events`` only the events that call emitted; the store persists both
    next to the shared fields on commit.
    """

    owner: str
    address: str
    registry: DifficultyRegistry = field(default_factory=DifficultyRegistry)
    treasury: Treasury = field(default_factory=Treasury)
    stats: StatsLedger = field(default_factory=StatsLedger)
    event_seq: int = 0
    block_number: int = 0
    players: Dict[str, PlayerRecord] = field(default_factory=dict)
    events: List[Event] = field(default_factory=list)

    def player(self, address: str) -> PlayerRecord:
        try:
            return self.players[address]
        except KeyError:
            raise RuntimeError(f"player_not_loaded: {address}") from None

    def advance(self, ctx: CallContext) -> CallContext:
        self.block_number = max(ctx.block_number, self.block_number + 1)
        return replace(ctx, block_number=self.block_number)

    def emit(self, ctx: CallContext, name: str, **data: Any) -> Event:
        self.event_seq += 1
        event = Event(self.event_seq, name, ctx.block_number, ctx.timestamp, data)
        self.events.append(event)
        return event
