from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar, Union
import hashlib
import logging

from .difficulty import Difficulty, DifficultyConfig, DifficultyRegistry, format_ether
from .errors import (
    ExcessPayment,
    InsufficientPayment,
    InsufficientTreasury,
    NoActiveSession,
    SessionAlreadyActive,
    SessionNotExpired,
    Unauthorized,
)
from .game_engine import Outcome, RevealResult, apply_reveal, generate_board, to_client_view
from .persistence import InMemoryLedgerStore
from .seed import LedgerEntropySeedProvider, SeedContext, SeedProvider, seed_commitment
from .state import CallContext, ContractState, Event, PlayerRecord, Session, SessionStatus
from .stats import PlayerStats, StatsEntry
from .treasury import checked_add

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT = 24 * 60 * 60

Level = Union[Difficulty, int, str]
T = TypeVar("T")


def contract_address(deployer: str, block_number: int) -> str:
    digest = hashlib.sha256(f"{deployer.lower()}:{block_number}".encode("utf-8")).hexdigest()
    return "0x" + digest[-40:]


class MinesweeperContract:
    """Wagered minesweeper. One active session per player, rewards paid from the treasury.

    Every write runs inside ``store.run_transaction`` against a working copy of
    the shared ledger and of the player records the call names; a raised
    ``ContractError`` discards the copy, so a rejected call leaves no trace.
    Attached value moves from the sender's balance into the treasury before
    the call body runs.
    """

    def __init__(
        self,
        store: Any,
        seed_provider: Optional[SeedProvider] = None,
        session_timeout: int = DEFAULT_SESSION_TIMEOUT,
    ) -> None:
        if store.load() is None:
            raise RuntimeError("ledger_not_deployed")
        self.store = store
        self.seed_provider = seed_provider or LedgerEntropySeedProvider()
        self.session_timeout = session_timeout

    @classmethod
    def deploy(
        cls,
        ctx: CallContext,
        store: Any = None,
        registry: Optional[DifficultyRegistry] = None,
        seed_provider: Optional[SeedProvider] = None,
        session_timeout: int = DEFAULT_SESSION_TIMEOUT,
        genesis: Optional[Dict[str, int]] = None,
    ) -> "MinesweeperContract":
        """Create the ledger. ``genesis`` seeds account balances; ``ctx.value`` funds the treasury."""
        store = store if store is not None else InMemoryLedgerStore()
        state = ContractState(
            owner=ctx.sender,
            address=contract_address(ctx.sender, ctx.block_number),
            registry=registry or DifficultyRegistry(),
            block_number=ctx.block_number,
        )
        for address, amount in (genesis or {}).items():
            state.players[address] = PlayerRecord(address)
            state.players[address].credit(amount)
        if ctx.value:
            deployer = state.players.setdefault(ctx.sender, PlayerRecord(ctx.sender))
            deployer.debit(ctx.value)
            state.treasury.deposit(ctx.value)
        state.emit(ctx, "Deployed", owner=ctx.sender, address=state.address, value=str(ctx.value))
        store.initialize(state)
        logger.info(f"[minesweeper] deployed address={state.address} owner={state.owner} accounts={len(state.players)}")
        return cls(store, seed_provider=seed_provider, session_timeout=session_timeout)

    # -- reads --

    def _state(self) -> ContractState:
        state = self.store.load()
        if state is None:
            raise RuntimeError("ledger_not_deployed")
        return state

    def _session(self, player: str) -> Optional[Session]:
        record = self.store.load_player(player)
        return record.session if record else None

    @property
    def address(self) -> str:
        return self._state().address

    @property
    def block_number(self) -> int:
        return self._state().block_number

    def owner(self) -> str:
        return self._state().owner

    def get_difficulty_config(self, level: Level) -> DifficultyConfig:
        return self._state().registry.get_difficulty_config(level)

    def get_session_status(self, player: str) -> SessionStatus:
        session = self._session(player)
        return session.status if session else SessionStatus.NONE

    def get_session(self, player: str) -> Optional[Dict[str, Any]]:
        session = self._session(player)
        if session is None:
            return None
        return session_to_client(session)

    def get_stats(self, level: Level) -> StatsEntry:
        entry = self._state().stats.entries.get(Difficulty.parse(level))
        return replace(entry) if entry else StatsEntry()

    def get_player_stats(self, player: str) -> PlayerStats:
        record = self.store.load_player(player)
        return replace(record.stats) if record else PlayerStats()

    def balance_of(self, address: str) -> int:
        record = self.store.load_player(address)
        return record.balance if record else 0

    def get_treasury(self) -> Dict[str, int]:
        return self._state().treasury.to_dict()

    def events(self, since: int = 0) -> List[Event]:
        return self.store.list_events(since)

    # -- writes --

    def _transact(
        self,
        ctx: CallContext,
        fn: Callable[[ContractState, CallContext], T],
        players: Iterable[str] = (),
        payable: bool = False,
    ) -> T:
        addresses = list(dict.fromkeys([ctx.sender, *players]))

        def _tx(state: ContractState) -> T:
            call_ctx = state.advance(ctx)
            if call_ctx.value:
                if not payable:
                    raise ExcessPayment()
                state.player(call_ctx.sender).debit(call_ctx.value)
                state.treasury.deposit(call_ctx.value)
            return fn(state, call_ctx)

        return self.store.run_transaction(_tx, addresses)

    def start(self, ctx: CallContext, level: Level) -> Dict[str, Any]:
        difficulty = Difficulty.parse(level)

        def _tx(state: ContractState, ctx: CallContext) -> Dict[str, Any]:
            record = state.player(ctx.sender)
            existing = record.session
            if existing and existing.status == SessionStatus.ACTIVE:
                raise SessionAlreadyActive()
            config = state.registry.get_difficulty_config(difficulty)
            if ctx.value < config.entry_fee:
                raise InsufficientPayment()
            if ctx.value > config.entry_fee:
                raise ExcessPayment()

            state.treasury.reserve(config.winning_reward)

            nonce = record.nonce
            record.nonce = checked_add(nonce, 1)
            seed = self.seed_provider.next_seed(
                SeedContext(
                    contract_address=state.address,
                    player=record.address,
                    nonce=nonce,
                    block_number=ctx.block_number,
                    timestamp=ctx.timestamp,
                    prevrandao=ctx.prevrandao,
                )
            )
            board = generate_board(seed, config.rows, config.cols, config.mines)
            session = Session(
                player=record.address,
                difficulty=difficulty,
                config=config,
                board=board,
                status=SessionStatus.ACTIVE,
                entry_fee_paid=ctx.value,
                started_at=ctx.timestamp,
                nonce=nonce,
                seed=seed,
            )
            record.session = session
            state.stats.record_start(difficulty, ctx.value)
            record.stats.games_played = checked_add(record.stats.games_played, 1)
            state.emit(
                ctx,
                "GameStarted",
                player=record.address,
                difficulty=difficulty.name,
                entry_fee=str(ctx.value),
                nonce=nonce,
                seed_commitment=seed_commitment(seed),
            )
            return session_to_client(session)

        view = self._transact(ctx, _tx, payable=True)
        logger.info(
            f"[minesweeper] start player={ctx.sender} difficulty={difficulty.name} fee={format_ether(ctx.value)}"
        )
        return view

    def reveal(self, ctx: CallContext, row: int, col: int) -> Dict[str, Any]:
        def _tx(state: ContractState, ctx: CallContext) -> Dict[str, Any]:
            record = state.player(ctx.sender)
            session = record.session
            if session is None or session.status != SessionStatus.ACTIVE:
                raise NoActiveSession()
            board, result = apply_reveal(session.board, row, col)
            session.board = board
            session.moves_count += 1
            state.emit(
                ctx,
                "CellRevealed",
                player=record.address,
                row=row,
                col=col,
                cleared_cells=result.cleared_cells,
                outcome=result.outcome.value,
            )
            if result.outcome == Outcome.HIT_MINE:
                self._finish_lost(state, ctx, record, (row, col))
            elif result.outcome == Outcome.CLEARED:
                self._finish_won(state, ctx, record)
            return session_to_client(session) | {"last_move": _move_view(row, col, result)}

        view = self._transact(ctx, _tx)
        logger.info(
            f"[minesweeper] reveal player={ctx.sender} row={row} col={col} "
            f"status={view['status']} revealed_total={view['revealed_total']}"
        )
        return view

    def _finish_lost(self, state: ContractState, ctx: CallContext, record: PlayerRecord, cell) -> None:
        session = record.session
        # Entry fee stays in the treasury; only the reservation goes.
        state.treasury.release(session.config.winning_reward)
        session.status = SessionStatus.LOST
        session.finished_at = ctx.timestamp
        session.exploded_cell = cell
        state.stats.record(session.difficulty, won=False, paid=0)
        record.stats.record_finish("lost")
        state.emit(ctx, "GameLost", player=record.address, seed=session.seed.hex(), row=cell[0], col=cell[1])

    def _finish_won(self, state: ContractState, ctx: CallContext, record: PlayerRecord) -> None:
        session = record.session
        reward = session.config.winning_reward
        if reward > state.treasury.balance:
            raise InsufficientTreasury()
        state.treasury.release(reward)
        state.treasury.payout(record, reward)
        session.status = SessionStatus.WON
        session.finished_at = ctx.timestamp
        session.payout = reward
        state.stats.record(session.difficulty, won=True, paid=reward)
        record.stats.record_finish("won", winnings=reward, duration=ctx.timestamp - session.started_at)
        state.emit(ctx, "RewardPaid", to=record.address, amount=str(reward))
        state.emit(ctx, "GameWon", player=record.address, seed=session.seed.hex(), reward=str(reward))

    def fund(self, ctx: CallContext) -> Dict[str, int]:
        """Move ``ctx.value`` from the sender's balance into the treasury."""

        def _tx(state: ContractState, ctx: CallContext) -> Dict[str, int]:
            state.emit(ctx, "Funded", sender=ctx.sender, amount=str(ctx.value))
            return state.treasury.to_dict()

        view = self._transact(ctx, _tx, payable=True)
        logger.info(f"[minesweeper] fund sender={ctx.sender} amount={format_ether(ctx.value)}")
        return view

    def owner_withdraw(self, ctx: CallContext, amount: int) -> Dict[str, int]:
        def _tx(state: ContractState, ctx: CallContext) -> Dict[str, int]:
            _only_owner(state, ctx)
            state.treasury.withdraw(state.player(ctx.sender), amount)
            state.emit(ctx, "Withdrawal", to=ctx.sender, amount=str(amount))
            return state.treasury.to_dict()

        view = self._transact(ctx, _tx)
        logger.info(f"[minesweeper] withdraw owner={ctx.sender} amount={format_ether(amount)}")
        return view

    def set_difficulty_config(self, ctx: CallContext, level: Level, config: DifficultyConfig) -> DifficultyConfig:
        difficulty = Difficulty.parse(level)

        def _tx(state: ContractState, ctx: CallContext) -> DifficultyConfig:
            _only_owner(state, ctx)
            state.registry = state.registry.with_config(difficulty, config)
            state.emit(ctx, "DifficultyUpdated", difficulty=difficulty.name, **_config_event(config))
            return state.registry.get_difficulty_config(difficulty)

        updated = self._transact(ctx, _tx)
        logger.info(f"[minesweeper] difficulty_updated difficulty={difficulty.name} config={updated.as_tuple()}")
        return updated

    def reap_session(self, ctx: CallContext, player: str) -> Dict[str, Any]:
        def _tx(state: ContractState, ctx: CallContext) -> Dict[str, Any]:
            _only_owner(state, ctx)
            record = state.player(player)
            session = record.session
            if session is None or session.status != SessionStatus.ACTIVE:
                raise NoActiveSession()
            if ctx.timestamp - session.started_at < self.session_timeout:
                raise SessionNotExpired()
            refund = session.entry_fee_paid
            state.treasury.release(session.config.winning_reward)
            state.treasury.payout(record, refund)
            session.status = SessionStatus.ABANDONED
            session.finished_at = ctx.timestamp
            session.payout = refund
            state.stats.record_abandoned(session.difficulty, refund)
            record.stats.record_finish("abandoned")
            state.emit(ctx, "SessionReaped", player=player, refund=str(refund), seed=session.seed.hex())
            return session_to_client(session)

        view = self._transact(ctx, _tx, players=[player])
        logger.info(f"[minesweeper] reap player={player} owner={ctx.sender}")
        return view


def _only_owner(state: ContractState, ctx: CallContext) -> None:
    if ctx.sender != state.owner:
        raise Unauthorized()


def _config_event(config: DifficultyConfig) -> Dict[str, Any]:
    data: Dict[str, Any] = config.to_dict()
    data["entry_fee"] = str(config.entry_fee)
    data["winning_reward"] = str(config.winning_reward)
    return data


def _move_view(row: int, col: int, result: RevealResult) -> Dict[str, Any]:
    return {
        "row": row,
        "col": col,
        "hit_mine": result.outcome == Outcome.HIT_MINE,
        "cleared_cells": result.cleared_cells,
        "outcome": result.outcome.value,
    }


def session_to_client(session: Session) -> Dict[str, Any]:
    terminal = session.status.terminal
    return {
        "status": session.status.value,
        "difficulty": session.difficulty.name,
        "board": to_client_view(session.board, reveal_mines=terminal),
        "board_rows": session.board.rows,
        "board_cols": session.board.cols,
        "num_mines": session.board.num_mines,
        "moves_count": session.moves_count,
        "revealed_total": session.board.revealed_total,
        "entry_fee_paid": session.entry_fee_paid,
        "winning_reward": session.config.winning_reward,
        "started_at": session.started_at,
        "finished_at": session.finished_at,
        "payout": session.payout,
        "exploded_cell": list(session.exploded_cell) if session.exploded_cell else None,
        "seed": session.seed.hex() if terminal else None,
    }
