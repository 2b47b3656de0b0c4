"""Shared fixtures: an in-memory stand-in for the Redis table store."""

from __future__ import annotations

import copy
from unittest.mock import patch

import pytest

from agent_poker import config, table_manager
from agent_poker.custody import CustodyError


class FakeTableStore:
    """Dict-backed copy of the ``agent_poker.table_store`` functions.

    ``store_engine`` keeps the all-or-nothing contract of the Redis version:
    the table, seats, PINs and balance changes land together or not at all.
    Set ``fail_next_store`` to make the next write fail before anything lands.
    """

    def __init__(self):
        self.tables: dict[int, dict] = {}
        self.balances: dict[str, int] = {}
        self.seat_pins: dict[tuple[int, str], str] = {}
        self.creator_pins: dict[int, str] = {}
        self.account_pins: dict[str, str] = {}
        self.events: dict[int, list[dict]] = {}
        self.fail_next_store = False
        self.writes = 0

    async def table_exists(self, table_id):
        return table_id in self.tables

    async def load_engine(self, table_id):
        data = self.tables.get(table_id)
        return copy.deepcopy(data) if data is not None else None

    async def load_table(self, table_id):
        data = self.tables.get(table_id)
        if data is None:
            return None
        return {"table": copy.deepcopy(data["table"]), "next_event_seq": data["next_event_seq"]}

    async def store_engine(
        self, table_id, data, transfers=None, expected=None, pins=None, creator_pin=None
    ):
        if self.fail_next_store:
            self.fail_next_store = False
            raise ConnectionError("Redis unavailable")
        for account, amount in (expected or {}).items():
            if self.balances.get(account, 0) != amount:
                raise CustodyError(f"Balance of {account} changed, retry the operation")
        previous = self.tables.get(table_id, {"seats": []})
        remaining = {s["agent"] for s in data["seats"]}
        for seat in previous["seats"]:
            if seat["agent"] not in remaining:
                self.seat_pins.pop((table_id, seat["agent"]), None)
        self.tables[table_id] = copy.deepcopy(data)
        if creator_pin is not None:
            self.creator_pins[table_id] = creator_pin
        for agent, pin_hash in (pins or {}).items():
            self.seat_pins[(table_id, agent)] = pin_hash
        for account, delta in (transfers or {}).items():
            self.balances[account] = self.balances.get(account, 0) + delta
        self.writes += 1

    async def load_pin_hash(self, table_id, agent):
        return self.seat_pins.get((table_id, agent))

    async def load_creator_pin_hash(self, table_id):
        return self.creator_pins.get(table_id)

    async def load_account_pin_hash(self, account):
        return self.account_pins.get(account)

    async def load_balances(self, accounts):
        return {a: self.balances.get(a, 0) for a in dict.fromkeys(accounts)}

    async def credit(self, account, amount, pin_hash=None):
        if pin_hash is not None:
            self.account_pins.setdefault(account, pin_hash)
        self.balances[account] = self.balances.get(account, 0) + amount
        return self.balances[account]

    async def list_table_ids(self):
        return sorted(self.tables)

    async def append_events(self, table_id, events, keep=0):
        log = self.events.setdefault(table_id, [])
        log.extend(events)
        if keep > 0:
            del log[:-keep]

    async def load_events(self, table_id, after=0):
        return [e for e in self.events.get(table_id, []) if e["seq"] > after]


_STORE_FUNCTIONS = (
    "table_exists",
    "load_engine",
    "load_table",
    "store_engine",
    "load_pin_hash",
    "load_creator_pin_hash",
    "load_account_pin_hash",
    "load_balances",
    "credit",
    "list_table_ids",
    "append_events",
    "load_events",
)


@pytest.fixture
def fake_store():
    """Patch every table_store function the manager calls with a FakeTableStore."""
    fake = FakeTableStore()
    config.configure(protocol_wallet="protocol")
    table_manager._locks.clear()
    with patch.multiple(
        "agent_poker.table_store", **{name: getattr(fake, name) for name in _STORE_FUNCTIONS}
    ):
        yield fake
    table_manager._locks.clear()
    config.reset_settings()
