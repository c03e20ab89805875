from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from .difficulty import Difficulty
from .treasury import checked_add


@dataclass
class StatsEntry:
    games_played: int = 0
    games_won: int = 0
    games_lost: int = 0
    games_abandoned: int = 0
    total_wagered: int = 0
    total_paid_out: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class StatsLedger:
    entries: Dict[Difficulty, StatsEntry] = field(
        default_factory=lambda: {d: StatsEntry() for d in Difficulty}
    )

    def get(self, level: Difficulty) -> StatsEntry:
        return self.entries.setdefault(level, StatsEntry())

    def record_start(self, level: Difficulty, wagered: int) -> None:
        entry = self.get(level)
        entry.games_played = checked_add(entry.games_played, 1)
        entry.total_wagered = checked_add(entry.total_wagered, wagered)

    def record(self, level: Difficulty, won: bool, paid: int) -> None:
        entry = self.get(level)
        if won:
            entry.games_won = checked_add(entry.games_won, 1)
        else:
            entry.games_lost = checked_add(entry.games_lost, 1)
        entry.total_paid_out = checked_add(entry.total_paid_out, paid)

    def record_abandoned(self, level: Difficulty, refunded: int) -> None:
        entry = self.get(level)
        entry.games_abandoned = checked_add(entry.games_abandoned, 1)
        entry.total_paid_out = checked_add(entry.total_paid_out, refunded)


@dataclass
class PlayerStats:
    games_played: int = 0
    games_won: int = 0
    games_lost: int = 0
    games_abandoned: int = 0
    total_winnings: int = 0
    best_time: Optional[int] = None

    @property
    def win_pct(self) -> float:
        denom = self.games_won + self.games_lost + self.games_abandoned
        return float(self.games_won) / denom if denom > 0 else 0.0

    def record_finish(self, outcome: str, winnings: int = 0, duration: Optional[int] = None) -> None:
        if outcome == "won":
            self.games_won = checked_add(self.games_won, 1)
            self.total_winnings = checked_add(self.total_winnings, winnings)
            if duration is not None and (self.best_time is None or duration < self.best_time):
                self.best_time = duration
        elif outcome == "lost":
            self.games_lost = checked_add(self.games_lost, 1)
        elif outcome == "abandoned":
            self.games_abandoned = checked_add(self.games_abandoned, 1)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["winPct"] = self.win_pct
        return data
