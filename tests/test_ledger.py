import hashlib

import pytest

from minesweeper_ledger.difficulty import (
    DEFAULT_CONFIGS,
    Difficulty,
    DifficultyConfig,
    DifficultyRegistry,
    format_ether,
    to_wei,
)
from minesweeper_ledger.errors import ArithmeticOverflow, InsufficientFunds, InsufficientTreasury, InvalidDifficulty
from minesweeper_ledger.seed import HmacSeedProvider, LedgerEntropySeedProvider, SeedContext, seed_commitment
from minesweeper_ledger.state import CallContext, ContractState, PlayerRecord
from minesweeper_ledger.stats import PlayerStats, StatsLedger
from minesweeper_ledger.treasury import UINT256_MAX, Treasury, checked_add, checked_sub


def test_reference_difficulty_table():
    reg = DifficultyRegistry()
    assert reg.get_difficulty_config(0).as_tuple() == (9, 9, 10, 500_000_000_000_000, 1_000_000_000_000_000)
    assert reg.get_difficulty_config(1).as_tuple() == (16, 16, 40, 1_000_000_000_000_000, 3_000_000_000_000_000)
    assert reg.get_difficulty_config(2).as_tuple() == (16, 30, 99, 2_000_000_000_000_000, 8_000_000_000_000_000)
    for cfg in DEFAULT_CONFIGS.values():
        assert 0 < cfg.mines < cfg.rows * cfg.cols


def test_difficulty_parse():
    assert Difficulty.parse("easy") is Difficulty.EASY
    assert Difficulty.parse("2") is Difficulty.HARD
    assert Difficulty.parse(Difficulty.MEDIUM) is Difficulty.MEDIUM
    for bad in (3, -1, "EXPERT", True, None, "²", "1²", "", " "):
        with pytest.raises(InvalidDifficulty):
            Difficulty.parse(bad)


def test_registry_with_config_returns_new_registry():
    reg = DifficultyRegistry()
    cfg = DifficultyConfig(5, 5, 3, 1, 2)
    updated = reg.with_config("EASY", cfg)
    assert updated.get_difficulty_config(Difficulty.EASY) == cfg
    assert reg.get_difficulty_config(Difficulty.EASY) == DEFAULT_CONFIGS[Difficulty.EASY]
    with pytest.raises(InvalidDifficulty):
        reg.with_config("EASY", DifficultyConfig(3, 3, 9, 1, 2))


def test_ether_units():
    assert to_wei("0.0005") == 500_000_000_000_000
    assert format_ether(to_wei("0.0005")) == "0.0005"
    assert format_ether(to_wei("0.008")) == "0.008"
    assert format_ether(to_wei("1")) == "1.0"
    assert format_ether(0) == "0.0"


def test_checked_arithmetic():
    assert checked_add(1, 2) == 3
    with pytest.raises(ArithmeticOverflow):
        checked_add(UINT256_MAX, 1)
    with pytest.raises(ArithmeticOverflow):
        checked_sub(1, 2)


def test_treasury_payout_never_exceeds_balance():
    t = Treasury()
    p = PlayerRecord("p")
    t.deposit(100)
    with pytest.raises(InsufficientTreasury):
        t.payout(p, 101)
    t.payout(p, 60)
    assert t.balance == 40
    assert p.balance == 60


def test_treasury_withdraw_respects_reservations():
    t = Treasury()
    owner = PlayerRecord("owner")
    t.deposit(100)
    t.reserve(70)
    assert t.withdrawable == 30
    with pytest.raises(InsufficientTreasury):
        t.withdraw(owner, 31)
    with pytest.raises(InsufficientTreasury):
        t.reserve(31)
    t.withdraw(owner, 30)
    assert t.balance == 70 and t.reserved == 70
    assert owner.balance == 30
    t.release(70)
    assert t.withdrawable == 70


def test_stats_ledger_accumulates():
    s = StatsLedger()
    s.record_start(Difficulty.EASY, 5)
    s.record(Difficulty.EASY, won=True, paid=10)
    s.record_start(Difficulty.EASY, 5)
    s.record(Difficulty.EASY, won=False, paid=0)
    e = s.get(Difficulty.EASY)
    assert (e.games_played, e.games_won, e.games_lost) == (2, 1, 1)
    assert (e.total_wagered, e.total_paid_out) == (10, 10)
    assert s.get(Difficulty.HARD).games_played == 0


def test_stats_ledger_overflow_fails():
    s = StatsLedger()
    s.get(Difficulty.HARD).total_wagered = UINT256_MAX
    with pytest.raises(ArithmeticOverflow):
        s.record_start(Difficulty.HARD, 1)


def test_player_stats_best_time_and_win_pct():
    ps = PlayerStats()
    ps.record_finish("won", winnings=10, duration=50)
    ps.record_finish("won", winnings=10, duration=70)
    ps.record_finish("lost")
    ps.record_finish("abandoned")
    assert ps.best_time == 50
    assert ps.total_winnings == 20
    assert ps.win_pct == 0.5


def _context(**kw):
    base = dict(contract_address="0xc", player="0xp", nonce=0, block_number=1, timestamp=10, prevrandao=b"r")
    base.update(kw)
    return SeedContext(**base)


def test_seed_providers_are_deterministic_and_nonce_sensitive():
    ledger = LedgerEntropySeedProvider()
    assert ledger.next_seed(_context()) == ledger.next_seed(_context())
    assert ledger.next_seed(_context()) != ledger.next_seed(_context(nonce=1))
    assert ledger.next_seed(_context()) != ledger.next_seed(_context(player="0xq"))
    keyed = HmacSeedProvider("secret")
    assert keyed.next_seed(_context()) != ledger.next_seed(_context())
    assert keyed.next_seed(_context()) != HmacSeedProvider("other").next_seed(_context())
    assert len(keyed.next_seed(_context())) == 32
    with pytest.raises(ValueError):
        HmacSeedProvider("")


def test_seed_commitment():
    assert seed_commitment(b"abc") == hashlib.sha256(b"abc").hexdigest()


def test_player_record_debit_and_credit():
    p = PlayerRecord("p", balance=10)
    with pytest.raises(InsufficientFunds):
        p.debit(11)
    p.debit(4)
    p.credit(1)
    assert p.balance == 7
    with pytest.raises(ArithmeticOverflow):
        p.credit(UINT256_MAX)


def test_block_height_only_moves_forward():
    state = ContractState(owner="o", address="0xa", block_number=5)
    assert state.advance(CallContext("o")).block_number == 6
    assert state.advance(CallContext("o", block_number=3)).block_number == 7
    assert state.advance(CallContext("o", block_number=20)).block_number == 20
    assert state.block_number == 20
