"""Redis persistence for tables, seats, table events and custody balances.

Each table is one key, each seat is its own key keyed by (table, agent) and
listed in a per-table set, and events are appended to a per-table list.
Account balances (humans, table escrows, the protocol wallet) are integer
keys that only change in the same transaction as the table write that
moved them.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from agent_poker.config import REDIS_URL
from agent_poker.custody import CustodyError

_pool: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    global _pool
    if _pool is None:
        _pool = redis.from_url(REDIS_URL, decode_responses=True)
    return _pool


TABLES_KEY = "tables"


def _table_key(table_id: int) -> str:
    return f"table:{table_id}"


def _seats_key(table_id: int) -> str:
    return f"table:{table_id}:seats"


def _seat_key(table_id: int, agent: str) -> str:
    return f"table:{table_id}:seat:{agent}"


def _pin_key(table_id: int, agent: str) -> str:
    return f"table:{table_id}:pin:{agent}"


def _creator_pin_key(table_id: int) -> str:
    return f"table:{table_id}:creator_pin"


def _events_key(table_id: int) -> str:
    return f"table:{table_id}:events"


def _balance_key(account: str) -> str:
    return f"balance:{account}"


def _account_pin_key(account: str) -> str:
    return f"account:{account}:pin"


async def table_exists(table_id: int) -> bool:
    r = await get_redis()
    return bool(await r.exists(_table_key(table_id)))


async def load_table(table_id: int) -> Optional[dict[str, Any]]:
    r = await get_redis()
    raw = await r.get(_table_key(table_id))
    if raw is None:
        return None
    return json.loads(raw)


async def load_seat(table_id: int, agent: str) -> Optional[dict[str, Any]]:
    r = await get_redis()
    raw = await r.get(_seat_key(table_id, agent))
    if raw is None:
        return None
    return json.loads(raw)


async def load_all_seats(table_id: int) -> list[dict[str, Any]]:
    r = await get_redis()
    agents = await r.smembers(_seats_key(table_id))
    seats = []
    for agent in agents:
        data = await load_seat(table_id, agent)
        if data:
            seats.append(data)
    return seats


async def load_engine(table_id: int) -> Optional[dict[str, Any]]:
    """Load a table plus its seats in the shape ``HandEngine.from_dict`` reads."""
    table_data = await load_table(table_id)
    if table_data is None:
        return None
    seats = await load_all_seats(table_id)
    return {
        "table": table_data["table"],
        "seats": sorted(seats, key=lambda s: s["position"]),
        "next_event_seq": table_data.get("next_event_seq", 1),
    }


async def store_engine(
    table_id: int,
    data: dict[str, Any],
    transfers: Optional[dict[str, int]] = None,
    expected: Optional[dict[str, int]] = None,
    pins: Optional[dict[str, str]] = None,
    creator_pin: Optional[str] = None,
) -> None:
    """Write a table, its seats and its balance changes in one transaction.

    *expected* holds the balances the operation was computed from.  If any of
    them moved since, nothing is written and ``CustodyError`` is raised.
    Departed seats lose their seat record and PIN.
    """
    r = await get_redis()
    existing = await r.smembers(_seats_key(table_id))
    current = {s["agent"]: s for s in data["seats"]}
    transfers = transfers or {}
    expected = expected or {}
    pins = pins or {}

    async with r.pipeline(transaction=True) as pipe:
        try:
            if expected:
                accounts = list(expected)
                keys = [_balance_key(a) for a in accounts]
                await pipe.watch(*keys)
                stored = await pipe.mget(*keys)
                for account, raw in zip(accounts, stored):
                    if int(raw or 0) != expected[account]:
                        raise CustodyError(
                            f"Balance of {account} changed, retry the operation"
                        )
                pipe.multi()
            pipe.set(
                _table_key(table_id),
                json.dumps(
                    {"table": data["table"], "next_event_seq": data["next_event_seq"]}
                ),
            )
            pipe.sadd(TABLES_KEY, str(table_id))
            if creator_pin is not None:
                pipe.set(_creator_pin_key(table_id), creator_pin)
            for agent in set(existing) - set(current):
                pipe.delete(_seat_key(table_id, agent), _pin_key(table_id, agent))
                pipe.srem(_seats_key(table_id), agent)
            for agent, seat in current.items():
                pipe.set(_seat_key(table_id, agent), json.dumps(seat))
                pipe.sadd(_seats_key(table_id), agent)
            for agent, pin_hash in pins.items():
                pipe.set(_pin_key(table_id, agent), pin_hash)
            for account, delta in transfers.items():
                pipe.incrby(_balance_key(account), delta)
            await pipe.execute()
        except WatchError:
            raise CustodyError(
                "Balances changed concurrently, retry the operation"
            ) from None


async def load_pin_hash(table_id: int, agent: str) -> Optional[str]:
    r = await get_redis()
    return await r.get(_pin_key(table_id, agent))


async def load_creator_pin_hash(table_id: int) -> Optional[str]:
    r = await get_redis()
    return await r.get(_creator_pin_key(table_id))


async def load_balances(accounts: Iterable[str]) -> dict[str, int]:
    accounts = list(dict.fromkeys(accounts))
    if not accounts:
        return {}
    r = await get_redis()
    raw = await r.mget(*(_balance_key(a) for a in accounts))
    return {a: int(v or 0) for a, v in zip(accounts, raw)}


async def credit(account: str, amount: int, pin_hash: Optional[str] = None) -> int:
    """Fund an account from outside the tables. Returns the new balance.

    *pin_hash* becomes the account PIN only if the account has none yet.
    """
    r = await get_redis()
    async with r.pipeline(transaction=True) as pipe:
        if pin_hash is not None:
            pipe.set(_account_pin_key(account), pin_hash, nx=True)
        pipe.incrby(_balance_key(account), amount)
        results = await pipe.execute()
    return results[-1]


async def load_account_pin_hash(account: str) -> Optional[str]:
    r = await get_redis()
    return await r.get(_account_pin_key(account))


async def list_table_ids() -> list[int]:
    r = await get_redis()
    ids = await r.smembers(TABLES_KEY)
    return sorted(int(i) for i in ids)


async def append_events(
    table_id: int, events: list[dict[str, Any]], keep: int = 0
) -> None:
    if not events:
        return
    r = await get_redis()
    key = _events_key(table_id)
    await r.rpush(key, *(json.dumps(e) for e in events))
    if keep > 0:
        await r.ltrim(key, -keep, -1)


async def load_events(table_id: int, after: int = 0) -> list[dict[str, Any]]:
    r = await get_redis()
    raw = await r.lrange(_events_key(table_id), 0, -1)
    events = [json.loads(e) for e in raw]
    return [e for e in events if e["seq"] > after]


async def close() -> None:
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None
