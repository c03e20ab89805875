from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import Dict, Tuple, Union

from .errors import InvalidDifficulty

WEI_PER_ETHER = 10 ** 18


def to_wei(ether: Union[str, int, Decimal]) -> int:
    wei = Decimal(str(ether)) * WEI_PER_ETHER
    if wei != wei.to_integral_value():
        raise ValueError(f"sub-wei amount: {ether}")
    return int(wei)


def format_ether(wei: int) -> str:
    value = (Decimal(wei) / WEI_PER_ETHER).normalize()
    text = format(value, "f")
    return text if "." in text else f"{text}.0"


class Difficulty(IntEnum):
    EASY = 0
    MEDIUM = 1
    HARD = 2

    @classmethod
    def parse(cls, value: Union["Difficulty", int, str]) -> "Difficulty":
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise InvalidDifficulty(f"invalid_difficulty: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise InvalidDifficulty(f"invalid_difficulty: {value}") from None
        if isinstance(value, str):
            name = value.strip().upper()
            if name in cls.__members__:
                return cls[name]
            # isdigit() also admits superscripts, which int() rejects
            if name.isdecimal():
                try:
                    return cls.parse(int(name))
                except ValueError:
                    raise InvalidDifficulty(f"invalid_difficulty: {value!r}") from None
        raise InvalidDifficulty(f"invalid_difficulty: {value!r}")


@dataclass(frozen=True)
class DifficultyConfig:
    rows: int
    cols: int
    mines: int
    entry_fee: int
    winning_reward: int

    @property
    def cell_count(self) -> int:
        return self.rows * self.cols

    def validate(self) -> "DifficultyConfig":
        if self.rows <= 0 or self.cols <= 0:
            raise InvalidDifficulty("invalid_board_size")
        if not 0 < self.mines < self.cell_count:
            raise InvalidDifficulty("too_many_mines_for_board")
        if self.entry_fee < 0 or self.winning_reward < 0:
            raise InvalidDifficulty("negative_amount")
        return self

    def as_tuple(self) -> Tuple[int, int, int, int, int]:
        return (self.rows, self.cols, self.mines, self.entry_fee, self.winning_reward)

    def to_dict(self) -> Dict[str, int]:
        return {
            "rows": self.rows,
            "cols": self.cols,
            "mines": self.mines,
            "entry_fee": self.entry_fee,
            "winning_reward": self.winning_reward,
        }


DEFAULT_CONFIGS: Dict[Difficulty, DifficultyConfig] = {
    Difficulty.EASY: DifficultyConfig(9, 9, 10, to_wei("0.0005"), to_wei("0.001")),
    Difficulty.MEDIUM: DifficultyConfig(16, 16, 40, to_wei("0.001"), to_wei("0.003")),
    Difficulty.HARD: DifficultyConfig(16, 30, 99, to_wei("0.002"), to_wei("0.008")),
}


@dataclass(frozen=True)
class DifficultyRegistry:
    configs: Dict[Difficulty, DifficultyConfig] = field(default_factory=lambda: dict(DEFAULT_CONFIGS))

    def __post_init__(self) -> None:
        missing = [d.name for d in Difficulty if d not in self.configs]
        if missing:
            raise InvalidDifficulty(f"missing_difficulty: {','.join(missing)}")
        for config in self.configs.values():
            config.validate()

    def get_difficulty_config(self, level: Union[Difficulty, int, str]) -> DifficultyConfig:
        return self.configs[Difficulty.parse(level)]

    def with_config(self, level: Union[Difficulty, int, str], config: DifficultyConfig) -> "DifficultyRegistry":
        configs = dict(self.configs)
        configs[Difficulty.parse(level)] = config.validate()
        return DifficultyRegistry(configs)
