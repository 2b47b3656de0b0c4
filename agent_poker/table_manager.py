"""Table manager: runs hand-engine operations against persisted tables.

Each operation loads the table, its seats and the balances it may touch from
Redis, applies exactly one engine call while holding that table's lock, then
writes the new state together with the balance changes in one transaction
and appends the resulting events.  Tables never share a lock, so different
tables proceed in parallel.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from typing import Any, Callable, Iterable, Optional, TypeVar

from agent_poker import table_store
from agent_poker.config import get_settings
from agent_poker.custody import CustodyError, StagedCustody, escrow_account
from agent_poker.engine import HandEngine
from agent_poker.errors import InvalidPin, TableExists, TableNotFound
from agent_poker.models import (
    CreateTableRequest,
    JoinTableRequest,
    TableSummary,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_locks: dict[int, asyncio.Lock] = {}


def _hash_pin(pin: str) -> str:
    return hashlib.sha256(pin.encode()).hexdigest()


def _verify_pin(pin: str, pin_hash: Optional[str]) -> bool:
    return pin_hash is not None and hmac.compare_digest(_hash_pin(pin), pin_hash)


def _get_lock(table_id: int) -> asyncio.Lock:
    """Per-table lock serialising every read-modify-write on that table."""
    return _locks.setdefault(table_id, asyncio.Lock())


async def _table_lock(table_id: int) -> asyncio.Lock:
    """Lock of an existing table; unknown ids never get a lock entry."""
    lock = _locks.get(table_id)
    if lock is None:
        if not await table_store.table_exists(table_id):
            raise TableNotFound(f"Table {table_id} not found")
        lock = _get_lock(table_id)
    return lock


async def _load_engine(table_id: int) -> HandEngine:
    """Load a hand engine from Redis for a read-only view."""
    data = await table_store.load_engine(table_id)
    if data is None:
        raise TableNotFound(f"Table {table_id} not found")
    return HandEngine.from_dict(data)


async def _apply(
    table_id: int,
    operation: Callable[[HandEngine], T],
    accounts: Iterable[str] = (),
    pins: Optional[dict[str, str]] = None,
) -> T:
    """Run one engine call and commit its state and balance changes together.

    *accounts* are the funding accounts the call may debit besides the
    table escrow.  If the write fails nothing is committed, so a retry
    starts from the same state and balances.
    """
    async with await _table_lock(table_id):
        data = await table_store.load_engine(table_id)
        if data is None:
            raise TableNotFound(f"Table {table_id} not found")
        balances = await table_store.load_balances([escrow_account(table_id), *accounts])
        ledger = StagedCustody(balances)
        engine = HandEngine.from_dict(data, custody=ledger)
        try:
            result = operation(engine)
        except CustodyError:
            logger.warning("Custody transfer failed for table %s", table_id, exc_info=True)
            raise
        await table_store.store_engine(
            table_id,
            engine.to_dict(),
            transfers=ledger.deltas(),
            expected=balances,
            pins=pins,
        )
        await table_store.append_events(
            table_id, engine.drain_events(), keep=get_settings().event_history
        )
        return result


async def _verify_seat_pin(table_id: int, agent: str, pin: str) -> None:
    if not _verify_pin(pin, await table_store.load_pin_hash(table_id, agent)):
        raise InvalidPin()


# ------------------------------------------------------------------
# Table Lifecycle
# ------------------------------------------------------------------


async def create_table(req: CreateTableRequest) -> dict[str, Any]:
    """Create and persist a new table. Returns its state."""
    # Validate before a lock entry exists for the id
    engine = HandEngine.create_table(
        table_id=req.table_id,
        creator=req.creator,
        small_blind=req.small_blind,
        big_blind=req.big_blind,
        min_buy_in=req.min_buy_in,
        max_buy_in=req.max_buy_in,
        max_players=req.max_players,
        post_blinds=req.post_blinds,
    )
    async with _get_lock(req.table_id):
        if await table_store.table_exists(req.table_id):
            raise TableExists(f"Table {req.table_id} already exists")
        await table_store.store_engine(
            req.table_id, engine.to_dict(), creator_pin=_hash_pin(req.creator_pin)
        )
        await table_store.append_events(
            req.table_id, engine.drain_events(), keep=get_settings().event_history
        )
        return engine.get_state()


async def join_table(table_id: int, req: JoinTableRequest) -> dict[str, Any]:
    """Seat an agent. Returns the agent's seat view."""
    if not _verify_pin(req.human_pin, await table_store.load_account_pin_hash(req.human)):
        raise InvalidPin(f"Invalid PIN for account {req.human}")

    def _join(engine: HandEngine) -> dict[str, Any]:
        engine.join_table(req.agent, req.human, req.buy_in)
        return engine.get_seat_view(req.agent)

    return await _apply(
        table_id, _join, accounts=[req.human], pins={req.agent: _hash_pin(req.pin)}
    )


async def leave_table(table_id: int, agent: str, pin: str) -> int:
    """Unseat an agent. Returns the refunded stack."""
    await _verify_seat_pin(table_id, agent, pin)
    return await _apply(table_id, lambda engine: engine.leave_table(agent))


# ------------------------------------------------------------------
# Hand Lifecycle
# ------------------------------------------------------------------


async def start_hand(table_id: int) -> dict[str, Any]:
    return await _apply(table_id, lambda engine: engine.start_hand())


async def deal_hole_cards(table_id: int, agent: str, cards: list[int]) -> dict[str, Any]:
    def _deal(engine: HandEngine) -> dict[str, Any]:
        engine.deal_hole_cards(agent, cards)
        return engine.get_state()

    return await _apply(table_id, _deal)


async def deal_community(table_id: int, cards: list[int]) -> dict[str, Any]:
    return await _apply(table_id, lambda engine: engine.deal_community(cards))


async def player_action(
    table_id: int, agent: str, pin: str, action: str, amount: int = 0
) -> dict[str, Any]:
    await _verify_seat_pin(table_id, agent, pin)
    return await _apply(
        table_id, lambda engine: engine.player_action(agent, action, amount)
    )


async def settle_hand(table_id: int, winner: str, winner_position: int) -> dict[str, Any]:
    return await _apply(
        table_id, lambda engine: engine.settle_hand(winner, winner_position)
    )


async def withdraw_rake(table_id: int, admin: str, pin: str) -> int:
    if not _verify_pin(pin, await table_store.load_creator_pin_hash(table_id)):
        raise InvalidPin()
    return await _apply(table_id, lambda engine: engine.withdraw_rake(admin))


# ------------------------------------------------------------------
# Accounts
# ------------------------------------------------------------------


async def credit_account(account: str, amount: int, pin: str) -> int:
    """Fund a human's account so it can buy in. Returns the new balance.

    The first credit sets the PIN that later joins must present.
    """
    balance = await table_store.credit(account, amount, pin_hash=_hash_pin(pin))
    logger.info("Credited %d to %s (balance %d)", amount, account, balance)
    return balance


async def get_balance(account: str) -> int:
    balances = await table_store.load_balances([account])
    return balances[account]


# ------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------


async def get_table_state(table_id: int) -> dict[str, Any]:
    engine = await _load_engine(table_id)
    return engine.get_state()


async def get_seat_view(table_id: int, agent: str, pin: str) -> dict[str, Any]:
    """Seat view with hole cards, only for the seat's own PIN holder."""
    await _verify_seat_pin(table_id, agent, pin)
    engine = await _load_engine(table_id)
    return engine.get_seat_view(agent)


async def list_tables() -> list[TableSummary]:
    summaries: list[TableSummary] = []
    for table_id in await table_store.list_table_ids():
        data = await table_store.load_table(table_id)
        if data is None:
            continue
        t = data["table"]
        summaries.append(
            TableSummary(
                table_id=t["table_id"],
                small_blind=t["small_blind"],
                big_blind=t["big_blind"],
                min_buy_in=t["min_buy_in"],
                max_buy_in=t["max_buy_in"],
                player_count=t["player_count"],
                max_players=t["max_players"],
                state=t["state"],
                current_hand=t["current_hand"],
            )
        )
    return summaries


async def get_events(table_id: int, after: int = 0) -> list[dict[str, Any]]:
    if not await table_store.table_exists(table_id):
        raise TableNotFound(f"Table {table_id} not found")
    return await table_store.load_events(table_id, after)


async def count_tables() -> Optional[int]:
    try:
        return len(await table_store.list_table_ids())
    except Exception:
        logger.warning("Could not reach Redis for health check", exc_info=True)
        return None
