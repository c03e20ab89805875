import os
import logging
import secrets
import threading
import time
from pathlib import Path
from typing import Dict, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from minesweeper_ledger.contract import DEFAULT_SESSION_TIMEOUT, MinesweeperContract
from minesweeper_ledger.difficulty import DifficultyConfig, format_ether
from minesweeper_ledger.errors import (
    ContractError,
    ExcessPayment,
    InsufficientFunds,
    InsufficientPayment,
    NoActiveSession,
    SessionAlreadyActive,
    Unauthorized,
)
from minesweeper_ledger.persistence import FirestoreLedgerStore, InMemoryLedgerStore
from minesweeper_ledger.seed import HmacSeedProvider, LedgerEntropySeedProvider
from minesweeper_ledger.state import CallContext

load_dotenv(dotenv_path=Path('.env.local'))

API_BASE = "/api/minesweeper"

ERROR_STATUS = {
    SessionAlreadyActive: 409,
    NoActiveSession: 404,
    Unauthorized: 403,
    InsufficientPayment: 402,
    ExcessPayment: 402,
    InsufficientFunds: 402,
}


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def choose_store():
    if _flag("USE_INMEMORY", "0"):
        return InMemoryLedgerStore()
    try:
        return FirestoreLedgerStore()
    except Exception:
        # Fallback to in-memory if firestore client not available
        return InMemoryLedgerStore()


def choose_seed_provider():
    secret = os.getenv("SEED_SECRET")
    if secret:
        return HmacSeedProvider(secret)
    return LedgerEntropySeedProvider()


def parse_genesis(text: str) -> Dict[str, int]:
    """Parse GENESIS_ACCOUNTS, e.g. `owner=1000000000000000000,alice@example.com=5000`."""
    accounts: Dict[str, int] = {}
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        address, _, amount = item.rpartition("=")
        if not address or not amount.strip().isdecimal():
            raise ValueError(f"invalid GENESIS_ACCOUNTS entry: {item!r}")
        accounts[address.strip()] = int(amount)
    return accounts


class StartBody(BaseModel):
    difficulty: Union[int, str] = Field(..., description="EASY, MEDIUM, HARD or 0-2")
    value: int = Field(..., ge=0)


class MoveBody(BaseModel):
    row: int
    col: int


class ValueBody(BaseModel):
    value: int = Field(..., gt=0)


class WithdrawBody(BaseModel):
    amount: int = Field(..., ge=0)


class ReapBody(BaseModel):
    player: str


class ConfigBody(BaseModel):
    rows: int = Field(..., gt=0)
    cols: int = Field(..., gt=0)
    mines: int = Field(..., gt=0)
    entry_fee: int = Field(..., ge=0)
    winning_reward: int = Field(..., ge=0)


def _config_view(config: DifficultyConfig) -> dict:
    return config.to_dict() | {
        "entry_fee_ether": format_ether(config.entry_fee),
        "winning_reward_ether": format_ether(config.winning_reward),
    }


def create_app(
    store=None,
    seed_provider=None,
    owner: Optional[str] = None,
    session_timeout: Optional[int] = None,
    genesis: Optional[Dict[str, int]] = None,
) -> FastAPI:
    app = FastAPI(title="Minesweeper Ledger", version="0.2.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    store = store if store is not None else choose_store()
    timeout = session_timeout if session_timeout is not None else int(
        os.getenv("SESSION_TIMEOUT_SECONDS", str(DEFAULT_SESSION_TIMEOUT))
    )
    seeds = seed_provider or choose_seed_provider()
    # One call runs at a time, like transactions in a block.
    call_lock = threading.Lock()

    def next_context(sender: str, value: int = 0) -> CallContext:
        # The ledger assigns the block height; it survives restarts with the store.
        return CallContext(
            sender=sender,
            value=value,
            timestamp=int(time.time()),
            prevrandao=secrets.token_bytes(32),
        )

    if store.load() is None:
        deployer = owner or os.getenv("CONTRACT_OWNER", "owner")
        accounts = genesis if genesis is not None else parse_genesis(os.getenv("GENESIS_ACCOUNTS", ""))
        contract = MinesweeperContract.deploy(
            next_context(deployer), store=store, seed_provider=seeds, session_timeout=timeout, genesis=accounts
        )
    else:
        contract = MinesweeperContract(store, seed_provider=seeds, session_timeout=timeout)
    app.state.contract = contract
    app.state.store = store

    @app.on_event("startup")
    async def _log_store():
        klass = app.state.store.__class__.__name__
        emulator = os.getenv("FIRESTORE_EMULATOR_HOST")
        project = os.getenv("GOOGLE_CLOUD_PROJECT")
        logging.getLogger("uvicorn.error").info(
            f"[minesweeper] Store={klass} address={contract.address} owner={contract.owner()} "
            f"FIRESTORE_EMULATOR_HOST={emulator or '-'} GOOGLE_CLOUD_PROJECT={project or '-'}"
        )

    def call(fn, *args):
        try:
            return fn(*args)
        except ContractError as e:
            status = ERROR_STATUS.get(type(e), 400)
            raise HTTPException(status_code=status, detail=str(e))

    def transact(fn, sender: str, *args, value: int = 0):
        with call_lock:
            return call(fn, next_context(sender, value), *args)

    def get_user_id(req: Request) -> str:
        is_cloud_run = bool(os.getenv("K_SERVICE") or os.getenv("K_REVISION"))
        trust_x_user_id = _flag("TRUST_X_USER_ID", "0" if is_cloud_run else "1")
        allow_anon = _flag("ALLOW_ANON", "0" if is_cloud_run else "1")
        logger = logging.getLogger("uvicorn.error")

        iap_email = (
            req.headers.get("X-Goog-Authenticated-User-Email")
            or req.headers.get("X-Authenticated-User-Email")
        )
        if iap_email:
            # Format often: "accounts.google.com:email@example.com"
            if ":" in iap_email:
                iap_email = iap_email.split(":", 1)[1]
            return iap_email
        forwarded_user = req.headers.get("X-Forwarded-User")
        if forwarded_user:
            return forwarded_user

        uid = req.headers.get("X-User-Id")
        if uid and trust_x_user_id:
            return uid

        if allow_anon:
            return os.getenv("DEFAULT_USER_ID", "local-user")

        logger.warning(
            f"[minesweeper] get_user_id missing user id is_cloud_run={int(is_cloud_run)} "
            f"trust_x_user_id={int(trust_x_user_id)} allow_anon={int(allow_anon)}"
        )
        raise HTTPException(status_code=401, detail="missing user id")

    @app.post(f"{API_BASE}/start")
    def start_game(body: StartBody, user_id: str = Depends(get_user_id)):
        return transact(contract.start, user_id, body.difficulty, value=body.value) | {"game_id": user_id}

    @app.post(f"{API_BASE}/reveal")
    def reveal(body: MoveBody, user_id: str = Depends(get_user_id)):
        return transact(contract.reveal, user_id, body.row, body.col) | {"game_id": user_id}

    @app.get(f"{API_BASE}/state")
    def get_state(user_id: str = Depends(get_user_id)):
        game = contract.get_session(user_id)
        if not game:
            raise HTTPException(status_code=404, detail="no game")
        return game | {"game_id": user_id}

    @app.get(f"{API_BASE}/sessions/{{player}}/status")
    def get_session_status(player: str):
        return {"player": player, "status": contract.get_session_status(player).value}

    @app.get(f"{API_BASE}/difficulty/{{level}}")
    def get_difficulty(level: str):
        config = call(contract.get_difficulty_config, level)
        return _config_view(config)

    @app.put(f"{API_BASE}/difficulty/{{level}}")
    def set_difficulty(level: str, body: ConfigBody, user_id: str = Depends(get_user_id)):
        config = DifficultyConfig(body.rows, body.cols, body.mines, body.entry_fee, body.winning_reward)
        updated = transact(contract.set_difficulty_config, user_id, level, config)
        return _config_view(updated)

    @app.get(f"{API_BASE}/stats/{{level}}")
    def get_level_stats(level: str):
        return call(contract.get_stats, level).to_dict()

    @app.get(f"{API_BASE}/stats")
    def get_stats(user_id: str = Depends(get_user_id)):
        return contract.get_player_stats(user_id).to_dict()

    @app.get(f"{API_BASE}/owner")
    def get_owner():
        return {"owner": contract.owner(), "address": contract.address}

    @app.get(f"{API_BASE}/treasury")
    def get_treasury():
        return contract.get_treasury()

    @app.get(f"{API_BASE}/accounts/{{address}}")
    def get_account(address: str):
        balance = contract.balance_of(address)
        return {"address": address, "balance": balance, "balance_ether": format_ether(balance)}

    @app.post(f"{API_BASE}/fund")
    def fund(body: ValueBody, user_id: str = Depends(get_user_id)):
        return transact(contract.fund, user_id, value=body.value)

    @app.post(f"{API_BASE}/withdraw")
    def withdraw(body: WithdrawBody, user_id: str = Depends(get_user_id)):
        return transact(contract.owner_withdraw, user_id, body.amount)

    @app.post(f"{API_BASE}/reap")
    def reap(body: ReapBody, user_id: str = Depends(get_user_id)):
        return transact(contract.reap_session, user_id, body.player)

    @app.get(f"{API_BASE}/events")
    def get_events(since: int = 0):
        return [e.to_dict() for e in contract.events(since)]

    return app


app = create_app()
