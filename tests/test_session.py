"""
Tests for the per-connection dispatcher, driven through the real client
"""
import pytest

from watchlist import messages as m
from watchlist.errors import AlreadyExists, CorruptRecord, NotFound, ParseError, TransportError
from watchlist.models import Entry, MediaType, Status
from watchlist.session import SessionState

DUNE = Entry("Dune", MediaType.MOVIE, "sci-fi", Status.COMPLETED, 5)


class TestAuthentication:
    """Tests for the registration/login phase"""

    def test_register_then_serve(self, converse, user_table):
        async def script(client):
            assert await client.register("alice", "secret1")
            await client.create(DUNE)
            await client.proceed(False)

        session, _ = converse(script)
        assert session.state == SessionState.CLOSED
        assert session.authenticated
        assert user_table.exists("alice")

    def test_alice_login_right_and_wrong_password(self, converse):
        async def register(client):
            assert await client.register("alice", "secret1")
        converse(register)

        async def good(client):
            return await client.login("alice", "secret1")
        assert converse(good)[1] is True

        async def bad(client):
            return await client.login("alice", "wrong")
        session, result = converse(bad)
        assert result is False
        assert not session.authenticated

    def test_unknown_user_is_not_found(self, converse):
        async def script(client):
            with pytest.raises(NotFound):
                await client.login("mallory", "whatever")
            return True

        session, result = converse(script)
        assert result
        assert session.state == SessionState.CLOSED

    def test_duplicate_registration_drops_connection(self, converse):
        async def first(client):
            assert await client.register("alice", "secret1")
        converse(first)

        async def second(client):
            with pytest.raises(AlreadyExists):
                await client.register("alice", "another")
        session, _ = converse(second)
        assert not session.authenticated

    def test_failed_login_is_not_served_by_default(self, converse, entry_table):
        async def script(client):
            with pytest.raises(NotFound):
                await client.login("mallory", "x")
            # The server has hung up; nothing we send is acted on.
            await client.send(m.create_request(DUNE))
        converse(script)
        with pytest.raises(NotFound):
            entry_table.find("Dune")

    def test_failed_login_served_when_auth_not_required(self, converse, entry_table):
        async def script(client):
            with pytest.raises(NotFound):
                await client.login("mallory", "x")
            await client.create(DUNE)
            await client.proceed(False)

        session, _ = converse(script, require_auth=False)
        assert not session.authenticated
        assert entry_table.find("Dune") == DUNE

    def test_record_operation_before_login_is_rejected(self, converse):
        async def script(client):
            with pytest.raises(ParseError):
                await client.call(m.find_request("Dune"))
        converse(script)


class TestServing:
    """Tests for the request loop"""

    def test_dune_scenario(self, converse):
        async def script(client):
            assert await client.register("alice", "secret1")
            await client.create(DUNE)
            await client.proceed(True)

            rows = [row async for row in client.display()]
            await client.proceed(True)

            await client.update("Dune", m.FIELD_STATUS, 1)
            await client.proceed(True)

            found = await client.find("Dune")
            await client.proceed(False)
            return rows, found

        _, (rows, found) = converse(script)
        assert rows == [DUNE]
        assert found.status == Status.PLAN_TO_WATCH
        assert found.rating is None

    def test_malformed_request_does_not_end_session(self, converse):
        async def script(client):
            assert await client.register("alice", "secret1")
            with pytest.raises(ParseError):
                await client.call("x:whatever")
            await client.proceed(True)
            with pytest.raises(ParseError):
                await client.call("c:Dune:one:sci-fi:1")
            await client.proceed(True)
            await client.create(DUNE)
            await client.proceed(False)

        session, _ = converse(script)
        assert session.state == SessionState.CLOSED

    def test_recoverable_errors_are_reported(self, converse):
        async def script(client):
            assert await client.register("alice", "secret1")
            await client.create(DUNE)
            await client.proceed(True)
            with pytest.raises(AlreadyExists):
                await client.create(DUNE)
            await client.proceed(True)
            await client.remove("Dune")
            await client.proceed(True)
            with pytest.raises(NotFound):
                await client.find("Dune")
            await client.proceed(True)
            with pytest.raises(NotFound):
                await client.remove("Dune")
            await client.proceed(False)

        converse(script)

    def test_display_streams_corrupt_rows(self, converse, entries_store, entry_table):
        entry_table.create(DUNE)
        entries_store.put(b"Bad", b"1:broken")

        async def script(client):
            assert await client.register("alice", "secret1")
            rows = [row async for row in client.display()]
            await client.proceed(False)
            return rows

        _, rows = converse(script)
        assert DUNE in rows
        assert any(isinstance(r, CorruptRecord) for r in rows)

    def test_empty_display(self, converse):
        async def script(client):
            assert await client.register("alice", "secret1")
            rows = [row async for row in client.display()]
            await client.proceed(False)
            return rows

        assert converse(script)[1] == []

    def test_continuation_other_than_yes_ends_loop(self, converse):
        async def script(client):
            assert await client.register("alice", "secret1")
            await client.create(DUNE)
            await client.send("nope")
            return await client.receive()

        with pytest.raises(TransportError):
            converse(script)
