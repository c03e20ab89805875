import pytest

from minesweeper_ledger.contract import MinesweeperContract
from minesweeper_ledger.difficulty import Difficulty, to_wei
from minesweeper_ledger.game_engine import coords
from minesweeper_ledger.persistence import (
    InMemoryLedgerStore,
    ledger_from_doc,
    ledger_to_doc,
    player_from_doc,
    player_to_doc,
)
from minesweeper_ledger.state import CallContext

GENESIS = {"owner": to_wei("2"), "p1": to_wei("0.01"), "p2": to_wei("0.01")}


def ctx(sender, value=0):
    return CallContext(sender=sender, value=value, block_number=7, timestamp=500, prevrandao=b"\x02" * 32)


def played_store():
    store = InMemoryLedgerStore()
    c = MinesweeperContract.deploy(ctx("owner"), store=store, genesis=GENESIS)
    c.fund(ctx("owner", to_wei("1")))
    c.start(ctx("p1", to_wei("0.0005")), Difficulty.EASY)
    c.start(ctx("p2", to_wei("0.002")), Difficulty.HARD)
    b = store.load_player("p1").session.board
    r, col = coords(b.mine_layout.index("M"), b.cols)
    c.reveal(ctx("p1"), r, col)
    return store


def test_ledger_doc_roundtrip_keeps_shared_fields():
    state = played_store().load()
    doc = ledger_to_doc(state)
    # wei amounts never leave as raw ints
    assert doc["treasury"]["balance"] == str(state.treasury.balance)
    assert "players" not in doc and "events" not in doc
    assert doc["block_number"] == state.block_number == 11
    restored = ledger_from_doc(doc)
    assert restored == state


def test_player_doc_roundtrip():
    store = played_store()
    record = store.load_player("p2")
    doc = player_to_doc(record)
    assert doc["balance"] == str(to_wei("0.008"))
    assert doc["session"]["config"]["winning_reward"] == str(to_wei("0.008"))
    assert player_from_doc(doc) == record
    lost = store.load_player("p1")
    assert player_from_doc(player_to_doc(lost)) == lost
    assert lost.stats.games_lost == 1 and lost.nonce == 1


def test_transaction_copies_only_declared_players():
    store = played_store()
    events_before = list(store.events)
    seen = {}

    def _touch(state):
        seen["players"] = sorted(state.players)
        seen["events"] = list(state.events)
        state.player("p1").balance += 1
        with pytest.raises(RuntimeError):
            state.player("p2")
        return "ok"

    assert store.run_transaction(_touch, ["p1"]) == "ok"
    assert seen == {"players": ["p1"], "events": []}
    assert store.load_player("p1").balance == to_wei("0.01") - to_wei("0.0005") + 1
    assert store.events == events_before


def test_failed_transaction_leaves_state_untouched():
    store = played_store()
    before = ledger_to_doc(store.load())
    p1_before = player_to_doc(store.load_player("p1"))

    def _boom(state):
        state.treasury.deposit(123)
        state.player("p1").session = None
        state.emit(ctx("p1"), "Nothing")
        raise ValueError("boom")

    with pytest.raises(ValueError):
        store.run_transaction(_boom, ["p1"])
    assert ledger_to_doc(store.load()) == before
    assert player_to_doc(store.load_player("p1")) == p1_before
    assert [e.name for e in store.list_events()][-1] == "GameLost"


def test_store_lifecycle_errors():
    store = InMemoryLedgerStore()
    with pytest.raises(RuntimeError):
        store.run_transaction(lambda state: None)
    with pytest.raises(RuntimeError):
        MinesweeperContract(store)
    assert store.list_events() == []
    assert store.load_player("anyone") is None
    MinesweeperContract.deploy(ctx("owner"), store=store)
    with pytest.raises(RuntimeError):
        MinesweeperContract.deploy(ctx("owner"), store=store)
