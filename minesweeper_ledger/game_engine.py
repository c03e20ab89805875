from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Tuple
import hashlib

from .errors import AlreadyRevealed, CellOutOfBounds, InvalidDifficulty

MINE = "M"
HIDDEN = "H"


class Outcome(str, Enum):
    CONTINUE = "continue"
    HIT_MINE = "hit_mine"
    CLEARED = "cleared"


@dataclass(frozen=True)
class Board:
    rows: int
    cols: int
    num_mines: int
    mine_layout: str
    revealed_mask: str

    @property
    def safe_cells(self) -> int:
        return self.rows * self.cols - self.num_mines

    @property
    def revealed_total(self) -> int:
        return self.revealed_mask.count("1")

    def is_mine(self, row: int, col: int) -> bool:
        return self.mine_layout[index(row, col, self.cols)] == MINE

    def adjacency(self, row: int, col: int) -> int:
        ch = self.mine_layout[index(row, col, self.cols)]
        if ch == MINE:
            raise ValueError("mine cell has no adjacency count")
        return int(ch)

    def is_revealed(self, row: int, col: int) -> bool:
        return self.revealed_mask[index(row, col, self.cols)] == "1"


@dataclass(frozen=True)
class RevealResult:
    newly_revealed: Tuple[Tuple[int, int], ...]
    outcome: Outcome

    @property
    def cleared_cells(self) -> int:
        return len(self.newly_revealed)


def index(row: int, col: int, cols: int) -> int:
    return row * cols + col


def coords(idx: int, cols: int) -> Tuple[int, int]:
    return divmod(idx, cols)


def _neighbors(r: int, c: int, rows: int, cols: int):
    for nr in range(max(0, r - 1), min(rows, r + 2)):
        for nc in range(max(0, c - 1), min(cols, c + 2)):
            if nr == r and nc == c:
                continue
            yield nr, nc


def _check_dimensions(rows: int, cols: int, num_mines: int) -> None:
    if rows <= 0 or cols <= 0:
        raise InvalidDifficulty("invalid_board_size")
    if not 0 < num_mines < rows * cols:
        raise InvalidDifficulty("too_many_mines_for_board")


def draw_mines(seed: bytes, cell_count: int, num_mines: int) -> List[int]:
    # Partial Fisher-Yates; draw i is keyed by sha256(seed || i).
    cells = list(range(cell_count))
    for i in range(num_mines):
        digest = hashlib.sha256(seed + i.to_bytes(32, "big")).digest()
        j = i + int.from_bytes(digest, "big") % (cell_count - i)
        cells[i], cells[j] = cells[j], cells[i]
    return sorted(cells[:num_mines])


def build_board(rows: int, cols: int, mine_indices: Iterable[int]) -> Board:
    mines = set(mine_indices)
    n = rows * cols
    if any(i < 0 or i >= n for i in mines):
        raise InvalidDifficulty("mine_outside_board")
    _check_dimensions(rows, cols, len(mines))
    layout = []
    for i in range(n):
        if i in mines:
            layout.append(MINE)
            continue
        r, c = coords(i, cols)
        cnt = sum(1 for nr, nc in _neighbors(r, c, rows, cols) if index(nr, nc, cols) in mines)
        layout.append(str(cnt))
    return Board(rows, cols, len(mines), "".join(layout), "0" * n)


def generate_board(seed: bytes, rows: int, cols: int, num_mines: int) -> Board:
    _check_dimensions(rows, cols, num_mines)
    return build_board(rows, cols, draw_mines(seed, rows * cols, num_mines))


def verify_board(seed: bytes, board: Board) -> bool:
    expected = generate_board(seed, board.rows, board.cols, board.num_mines)
    return expected.mine_layout == board.mine_layout


def check_bounds(board: Board, row: int, col: int) -> None:
    if not (0 <= row < board.rows and 0 <= col < board.cols):
        raise CellOutOfBounds()


def apply_reveal(board: Board, row: int, col: int) -> Tuple[Board, RevealResult]:
    check_bounds(board, row, col)
    i = index(row, col, board.cols)
    if board.revealed_mask[i] == "1":
        raise AlreadyRevealed()
    ml = board.mine_layout
    if ml[i] == MINE:
        return board, RevealResult((), Outcome.HIT_MINE)

    rev = list(board.revealed_mask)
    newly: List[Tuple[int, int]] = []
    q = deque()
    q.append((row, col))
    while q:
        r, c = q.popleft()
        ii = index(r, c, board.cols)
        if rev[ii] == "1":
            continue
        rev[ii] = "1"
        newly.append((r, c))
        if ml[ii] == "0":
            for nr, nc in _neighbors(r, c, board.rows, board.cols):
                jj = index(nr, nc, board.cols)
                # a zero cell never borders a mine, so the queue stays mine-free
                if rev[jj] != "1":
                    q.append((nr, nc))
    nb = replace(board, revealed_mask="".join(rev))
    outcome = Outcome.CLEARED if nb.revealed_total == nb.safe_cells else Outcome.CONTINUE
    return nb, RevealResult(tuple(sorted(newly)), outcome)


def to_client_view(board: Board, reveal_mines: bool = False) -> List[List[str]]:
    grid: List[List[str]] = []
    for r in range(board.rows):
        row: List[str] = []
        for c in range(board.cols):
            i = index(r, c, board.cols)
            ch = board.mine_layout[i]
            if reveal_mines and ch == MINE:
                cell = MINE
            elif board.revealed_mask[i] == "1":
                cell = ch
            else:
                cell = HIDDEN
            row.append(cell)
        grid.append(row)
    return grid
