"""
Pytest fixtures shared by the watchlist tests
"""
import asyncio

import pytest

from watchlist import crypto
from watchlist.client import WatchlistClient
from watchlist.credentials import CredentialManager
from watchlist.errors import TransportError
from watchlist.records import EntryTable, UserTable
from watchlist.session import Session
from watchlist.store import MemoryStore


class QueueTransport:
    """One end of an in-memory connection; closing it wakes the other end."""

    def __init__(self, inbox, outbox, peer):
        self.inbox = inbox
        self.outbox = outbox
        self.peer = peer
        self.closed = False

    async def send(self, data):
        if self.closed:
            raise TransportError("send on closed transport")
        await self.outbox.put(bytes(data))

    async def receive(self, max_len=None):
        data = await self.inbox.get()
        if data is None:
            raise TransportError("peer closed")
        return data

    async def close(self):
        if not self.closed:
            self.closed = True
            await self.outbox.put(None)


def transport_pair():
    """(server end, client end). Must be called inside a running loop."""
    to_server, to_client = asyncio.Queue(), asyncio.Queue()
    return (QueueTransport(to_server, to_client, "test-client"),
            QueueTransport(to_client, to_server, "test-server"))


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    """Keep PBKDF2 cheap in tests; the algorithm is unchanged."""
    monkeypatch.setattr(crypto, "HASH_ITERATIONS", 1000)


@pytest.fixture
def users_store():
    return MemoryStore()


@pytest.fixture
def entries_store():
    return MemoryStore()


@pytest.fixture
def user_table(users_store):
    return UserTable(users_store)


@pytest.fixture
def entry_table(entries_store):
    return EntryTable(entries_store)


@pytest.fixture
def credential_manager(user_table):
    return CredentialManager(user_table)


@pytest.fixture
def converse(credential_manager, entry_table):
    """
    Run `script(client)` against a live Session over an in-memory pipe.
    Returns (session, whatever the script returned).
    """
    def run(script, require_auth=True):
        async def main():
            server_end, client_end = transport_pair()
            session = Session(server_end, credential_manager, entry_table, require_auth)
            task = asyncio.create_task(session.run())
            try:
                result = await script(WatchlistClient(client_end))
            finally:
                await client_end.close()
            await asyncio.wait_for(task, 5)
            return session, result
        return asyncio.run(main())
    return run
