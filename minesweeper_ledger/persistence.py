from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar
import copy
import os

try:
    from google.cloud import firestore  # type: ignore
except Exception:  # pragma: no cover
    firestore = None  # type: ignore

from .difficulty import Difficulty, DifficultyConfig, DifficultyRegistry
from .game_engine import Board
from .state import ContractState, Event, PlayerRecord, Session, SessionStatus
from .stats import PlayerStats, StatsEntry, StatsLedger
from .treasury import Treasury

T = TypeVar("T")

# Firestore integers are 64-bit; wei amounts are stored as decimal strings.
_AMOUNT_FIELDS = ("entry_fee", "winning_reward")
_STATS_AMOUNTS = ("total_wagered", "total_paid_out")


def _seq_id(n: int) -> str:
    return f"{n:06d}"


def _config_to_doc(cfg: DifficultyConfig) -> Dict[str, Any]:
    doc: Dict[str, Any] = cfg.to_dict()
    for key in _AMOUNT_FIELDS:
        doc[key] = str(doc[key])
    return doc


def _config_from_doc(doc: Dict[str, Any]) -> DifficultyConfig:
    return DifficultyConfig(
        rows=int(doc["rows"]),
        cols=int(doc["cols"]),
        mines=int(doc["mines"]),
        entry_fee=int(doc["entry_fee"]),
        winning_reward=int(doc["winning_reward"]),
    )


def _session_to_doc(s: Session) -> Dict[str, Any]:
    return {
        "player": s.player,
        "difficulty": s.difficulty.name,
        "config": _config_to_doc(s.config),
        "board_rows": s.board.rows,
        "board_cols": s.board.cols,
        "num_mines": s.board.num_mines,
        "mine_layout": s.board.mine_layout,
        "revealed_mask": s.board.revealed_mask,
        "status": s.status.value,
        "entry_fee_paid": str(s.entry_fee_paid),
        "started_at": s.started_at,
        "nonce": s.nonce,
        "seed": s.seed.hex(),
        "moves_count": s.moves_count,
        "finished_at": s.finished_at,
        "payout": str(s.payout),
        "exploded_cell": list(s.exploded_cell) if s.exploded_cell else None,
    }


def _session_from_doc(doc: Dict[str, Any]) -> Session:
    board = Board(
        rows=int(doc["board_rows"]),
        cols=int(doc["board_cols"]),
        num_mines=int(doc["num_mines"]),
        mine_layout=doc["mine_layout"],
        revealed_mask=doc["revealed_mask"],
    )
    exploded = doc.get("exploded_cell")
    return Session(
        player=doc["player"],
        difficulty=Difficulty[doc["difficulty"]],
        config=_config_from_doc(doc["config"]),
        board=board,
        status=SessionStatus(doc["status"]),
        entry_fee_paid=int(doc["entry_fee_paid"]),
        started_at=int(doc["started_at"]),
        nonce=int(doc["nonce"]),
        seed=bytes.fromhex(doc["seed"]),
        moves_count=int(doc.get("moves_count", 0) or 0),
        finished_at=doc.get("finished_at"),
        payout=int(doc.get("payout", 0) or 0),
        exploded_cell=(int(exploded[0]), int(exploded[1])) if exploded else None,
    )


def _stats_to_doc(stats: StatsLedger) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for level, entry in stats.entries.items():
        doc: Dict[str, Any] = entry.to_dict()
        for key in _STATS_AMOUNTS:
            doc[key] = str(doc[key])
        out[level.name] = doc
    return out


def _stats_from_doc(doc: Dict[str, Any]) -> StatsLedger:
    ledger = StatsLedger()
    for name, data in (doc or {}).items():
        ledger.entries[Difficulty[name]] = StatsEntry(**{k: int(v or 0) for k, v in data.items()})
    return ledger


def _player_stats_to_doc(ps: PlayerStats) -> Dict[str, Any]:
    return {
        "games_played": ps.games_played,
        "games_won": ps.games_won,
        "games_lost": ps.games_lost,
        "games_abandoned": ps.games_abandoned,
        "total_winnings": str(ps.total_winnings),
        "best_time": ps.best_time,
    }


def _player_stats_from_doc(doc: Dict[str, Any]) -> PlayerStats:
    return PlayerStats(
        games_played=int(doc.get("games_played", 0) or 0),
        games_won=int(doc.get("games_won", 0) or 0),
        games_lost=int(doc.get("games_lost", 0) or 0),
        games_abandoned=int(doc.get("games_abandoned", 0) or 0),
        total_winnings=int(doc.get("total_winnings", 0) or 0),
        best_time=doc.get("best_time"),
    )


def ledger_to_doc(state: ContractState) -> Dict[str, Any]:
    return {
        "owner": state.owner,
        "address": state.address,
        "registry": {level.name: _config_to_doc(cfg) for level, cfg in state.registry.configs.items()},
        "treasury": {
            "balance": str(state.treasury.balance),
            "reserved": str(state.treasury.reserved),
        },
        "stats": _stats_to_doc(state.stats),
        "event_seq": state.event_seq,
        "block_number": state.block_number,
    }


def ledger_from_doc(doc: Dict[str, Any]) -> ContractState:
    treasury_doc = doc.get("treasury") or {}
    return ContractState(
        owner=doc["owner"],
        address=doc["address"],
        registry=DifficultyRegistry(
            {Difficulty[name]: _config_from_doc(cfg) for name, cfg in doc["registry"].items()}
        ),
        treasury=Treasury(
            balance=int(treasury_doc.get("balance", 0) or 0),
            reserved=int(treasury_doc.get("reserved", 0) or 0),
        ),
        stats=_stats_from_doc(doc.get("stats") or {}),
        event_seq=int(doc.get("event_seq", 0) or 0),
        block_number=int(doc.get("block_number", 0) or 0),
    )


def player_to_doc(record: PlayerRecord) -> Dict[str, Any]:
    return {
        "address": record.address,
        "balance": str(record.balance),
        "nonce": record.nonce,
        "session": _session_to_doc(record.session) if record.session else None,
        "stats": _player_stats_to_doc(record.stats),
    }


def player_from_doc(doc: Dict[str, Any]) -> PlayerRecord:
    session = doc.get("session")
    return PlayerRecord(
        address=doc["address"],
        balance=int(doc.get("balance", 0) or 0),
        nonce=int(doc.get("nonce", 0) or 0),
        session=_session_from_doc(session) if session else None,
        stats=_player_stats_from_doc(doc.get("stats") or {}),
    )


def _event_from_doc(doc: Dict[str, Any]) -> Event:
    return Event(
        seq=int(doc["seq"]),
        name=doc["name"],
        block_number=int(doc.get("block_number", 0) or 0),
        timestamp=int(doc.get("timestamp", 0) or 0),
        data=dict(doc.get("data") or {}),
    )


def _shared_copy(state: ContractState) -> ContractState:
    # registry is immutable; treasury and stats are the only mutable shared parts
    return replace(
        state,
        treasury=copy.copy(state.treasury),
        stats=copy.deepcopy(state.stats),
        players={},
        events=[],
    )


class InMemoryLedgerStore:
    """Simple in-memory ledger for tests and local dev.

    Mirrors the Firestore layout: shared ledger fields, one record per player
    and an append-only event list kept outside the transaction copy.
    """

    def __init__(self) -> None:
        self.ledger: Optional[ContractState] = None
        self.players: Dict[str, PlayerRecord] = {}
        self.events: List[Event] = []

    def load(self) -> Optional[ContractState]:
        return self.ledger

    def load_player(self, address: str) -> Optional[PlayerRecord]:
        return self.players.get(address)

    def initialize(self, state: ContractState) -> None:
        if self.ledger is not None:
            raise RuntimeError("ledger_already_deployed")
        self.players = copy.deepcopy(state.players)
        self.events = list(state.events)
        self.ledger = _shared_copy(state)

    def run_transaction(self, fn: Callable[[ContractState], T], players: Iterable[str] = ()) -> T:
        if self.ledger is None:
            raise RuntimeError("ledger_not_deployed")
        working = _shared_copy(self.ledger)
        for address in players:
            record = self.players.get(address)
            working.players[address] = copy.deepcopy(record) if record else PlayerRecord(address)
        result = fn(working)
        self.players.update(working.players)
        self.events.extend(working.events)
        self.ledger = _shared_copy(working)
        return result

    def list_events(self, since: int = 0) -> List[Event]:
        return [e for e in self.events if e.seq > since]


class FirestoreLedgerStore:
    """Firestore-backed ledger using Native mode.

    Layout under ``minesweeperLedger/{ledger_id}``: the document holds the
    shared fields, ``players/{address}`` one document per account and
    ``events/{seq}`` the event log. Uses FIRESTORE_EMULATOR_HOST if present.
    """

    def __init__(self, client: Optional[Any] = None, ledger_id: Optional[str] = None) -> None:
        if client is not None:
            self.client = client
        else:
            if firestore is None:
                raise RuntimeError("google-cloud-firestore not available")
            self.client = firestore.Client(project=os.environ.get("GOOGLE_CLOUD_PROJECT"))
        self.ledger_id = ledger_id or os.environ.get("LEDGER_ID", "default")

    def _ledger_ref(self):
        return self.client.collection("minesweeperLedger").document(self.ledger_id)

    def _player_ref(self, address: str):
        return self._ledger_ref().collection("players").document(address)

    def _events_ref(self):
        return self._ledger_ref().collection("events")

    def _write_players(self, tx, players: Dict[str, PlayerRecord]) -> None:
        for address, record in players.items():
            tx.set(self._player_ref(address), player_to_doc(record))

    def _write_events(self, tx, events: List[Event]) -> None:
        for e in events:
            tx.set(self._events_ref().document(_seq_id(e.seq)), e.to_dict())

    def load(self) -> Optional[ContractState]:
        snap = self._ledger_ref().get()
        if not snap.exists:
            return None
        return ledger_from_doc(snap.to_dict() or {})

    def load_player(self, address: str) -> Optional[PlayerRecord]:
        snap = self._player_ref(address).get()
        if not snap.exists:
            return None
        return player_from_doc(snap.to_dict() or {})

    def initialize(self, state: ContractState) -> None:
        if firestore is None:
            raise RuntimeError("google-cloud-firestore not available")

        @firestore.transactional  # type: ignore
        def _tx(tx):
            ref = self._ledger_ref()
            snap = ref.get(transaction=tx)
            if snap.exists:
                raise RuntimeError("ledger_already_deployed")
            tx.set(ref, ledger_to_doc(state))
            self._write_players(tx, state.players)
            self._write_events(tx, state.events)

        _tx(self.client.transaction())

    def run_transaction(self, fn: Callable[[ContractState], T], players: Iterable[str] = ()) -> T:
        if firestore is None:
            raise RuntimeError("google-cloud-firestore not available")
        addresses = list(players)

        @firestore.transactional  # type: ignore
        def _tx(tx):
            # Firestore transactions need every read before the first write.
            ref = self._ledger_ref()
            snap = ref.get(transaction=tx)
            if not snap.exists:
                raise RuntimeError("ledger_not_deployed")
            state = ledger_from_doc(snap.to_dict() or {})
            for address in addresses:
                psnap = self._player_ref(address).get(transaction=tx)
                state.players[address] = (
                    player_from_doc(psnap.to_dict() or {}) if psnap.exists else PlayerRecord(address)
                )
            result = fn(state)
            tx.set(ref, ledger_to_doc(state))
            self._write_players(tx, state.players)
            self._write_events(tx, state.events)
            return result

        return _tx(self.client.transaction())

    def list_events(self, since: int = 0) -> List[Event]:
        query = self._events_ref().where("seq", ">", since).order_by("seq")
        return [_event_from_doc(snap.to_dict() or {}) for snap in query.stream()]
