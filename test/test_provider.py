import os
import tempfile

import aiosqlite
import pytest
from cryptography.fernet import Fernet
from pydantic import BaseModel
from pytest_asyncio import fixture

from actor_persistence import ProviderConfig, ReadError, SQLiteProvider, register_payload
from actor_persistence.adaptors.sqlite.connection import resolve_db_path


@register_payload(name="bank.Deposited")
class Deposited(BaseModel):
    amount: int


@register_payload(name="bank.Withdrawn")
class Withdrawn(BaseModel):
    amount: int


@register_payload(name="bank.Account")
class Account(BaseModel):
    balance: int = 0
    applied: int = 0

    def apply(self, event):
        if isinstance(event, Deposited):
            self.balance += event.amount
        elif isinstance(event, Withdrawn):
            self.balance -= event.amount
        self.applied += 1


@fixture
def fresh_config():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = os.path.join(tmpdir, "bank.db")
        yield {"url": f"sqlite:///{db_path}", "auto_create_tables": True}


@fixture
async def provider(fresh_config):
    async with SQLiteProvider.from_config(fresh_config) as p:
        yield p


async def recover(provider, actor_name):
    """Rebuilds an account from its latest snapshot plus the events after it."""
    snapshot, index = await provider.load_latest_snapshot(actor_name)
    account = snapshot if snapshot is not None else Account()
    await provider.read_events(actor_name, index + 1, account.apply)
    return account


@pytest.mark.asyncio
async def test_full_replay_without_snapshot(provider):
    events = [Deposited(amount=100), Withdrawn(amount=30), Deposited(amount=5)]
    for index, event in enumerate(events, start=1):
        await provider.persist_event("acc-1", index, event)

    account = await recover(provider, "acc-1")
    assert account.balance == 75
    assert account.applied == 3


@pytest.mark.asyncio
async def test_replay_from_snapshot(provider):
    account = Account()
    for index in range(1, 11):
        event = Deposited(amount=index)
        await provider.persist_event("acc-1", index, event)
        account.apply(event)
        if index == 6:
            await provider.persist_snapshot("acc-1", index, account)

    recovered = await recover(provider, "acc-1")
    assert recovered.balance == sum(range(1, 11))
    # 6 applied before the snapshot, 4 replayed after it.
    assert recovered.applied == 10


@pytest.mark.asyncio
async def test_compaction_after_snapshot(provider):
    for index in range(1, 6):
        await provider.persist_event("acc-1", index, Deposited(amount=10))
    await provider.persist_snapshot("acc-1", 5, Account(balance=50, applied=5))
    await provider.delete_events("acc-1", 5)
    await provider.persist_event("acc-1", 6, Withdrawn(amount=20))

    recovered = await recover(provider, "acc-1")
    assert recovered.balance == 30
    assert recovered.applied == 6


@pytest.mark.asyncio
async def test_state_survives_reopening(fresh_config):
    async with SQLiteProvider.from_config(fresh_config) as provider:
        await provider.persist_event("acc-1", 1, Deposited(amount=42))
        await provider.persist_snapshot("acc-1", 1, Account(balance=42, applied=1))

    async with SQLiteProvider.from_config(fresh_config) as provider:
        snapshot, index = await provider.load_latest_snapshot("acc-1")
        assert (snapshot, index) == (Account(balance=42, applied=1), 1)
        assert (await recover(provider, "acc-1")).balance == 42


@pytest.mark.asyncio
async def test_from_config_accepts_provider_config(fresh_config):
    config = ProviderConfig(
        connection_target=fresh_config["url"],
        auto_create_tables=True,
        table_prefix="bank",
    )
    async with SQLiteProvider.from_config(config) as provider:
        assert provider.config == config
        await provider.persist_event("acc-1", 1, Deposited(amount=1))
        assert (await recover(provider, "acc-1")).balance == 1


@pytest.mark.asyncio
async def test_payloads_are_encrypted_at_rest(fresh_config):
    key = Fernet.generate_key().decode()
    config = {**fresh_config, "encryption_key": key}
    async with SQLiteProvider.from_config(config) as provider:
        await provider.persist_event("acc-1", 1, Deposited(amount=99))
        assert (await recover(provider, "acc-1")).balance == 99

    db_path = resolve_db_path(fresh_config["url"])
    async with aiosqlite.connect(db_path) as conn:
        async with conn.execute("SELECT EventData FROM Events") as cursor:
            (stored,) = await cursor.fetchone()
    assert "bank.Deposited" not in stored

    # Reading with a different key aborts instead of returning garbage.
    other = {**fresh_config, "encryption_key": Fernet.generate_key().decode()}
    async with SQLiteProvider.from_config(other) as provider:
        with pytest.raises(ReadError):
            await recover(provider, "acc-1")


@pytest.mark.asyncio
async def test_provider_is_generic_over_the_payload(fresh_config):
    async with SQLiteProvider[Deposited](fresh_config["url"], auto_create_tables=True) as provider:
        await provider.persist_event("acc-1", 1, Deposited(amount=7))
        seen: list[Deposited] = []
        assert await provider.read_events("acc-1", 0, seen.append) == 1
    assert seen == [Deposited(amount=7)]
