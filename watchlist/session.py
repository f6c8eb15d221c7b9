"""
session.py - server side: one Session per connection, plus the server that
accepts them.

Per-connection state machine:

    CONNECTED -> AUTHENTICATING -> AUTHENTICATED -> SERVING -> CLOSED

- The first frame picks register (1) or login (2).
- Registration succeeds once the credential is stored; on failure the
  connection is dropped (the peer can reconnect and try again).
- Login is salt challenge + hash proof; only a matching hash authenticates.
- With `require_auth` off the session goes on to SERVING even after a failed
  authentication. A warning is logged.
- SERVING: read a request, answer it, read the continuation line, repeat
  while that line starts with y/Y.

Recoverable errors become `err:` responses and the loop carries on. A
TransportError ends only this session.
"""

import asyncio
import enum
import logging
import ssl
from typing import Awaitable, Callable, Dict, Optional, Sequence

from . import messages as m
from .config import Settings
from .credentials import CredentialManager
from .errors import AuthDenied, CorruptRecord, ParseError, TransportError, WatchlistError
from .records import EntryTable, UserTable
from .store import KeyValueStore, open_tables
from .transport import StreamTransport, listen, server_context

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    SERVING = "serving"
    CLOSED = "closed"


class Session:
    """Drives one connection end to end. Holds no state shared with other sessions."""

    def __init__(self, transport, credentials: CredentialManager, entries: EntryTable,
                 require_auth: bool = True) -> None:
        self.transport = transport
        self.credentials = credentials
        self.entries = entries
        self.require_auth = require_auth
        self.state = SessionState.CONNECTED
        self.username: Optional[str] = None
        self.peer = getattr(transport, "peer", "peer")
        self._handlers: Dict[str, Callable[[Sequence[str]], Awaitable[None]]] = {
            m.CREATE: self.do_create,
            m.FIND: self.do_find,
            m.DISPLAY: self.do_display,
            m.UPDATE: self.do_update,
            m.REMOVE: self.do_remove,
        }

    @property
    def authenticated(self) -> bool:
        return self.username is not None

    async def send(self, line: str) -> None:
        await self.transport.send(line.encode("utf-8"))

    async def receive(self) -> str:
        return (await self.transport.receive()).decode("utf-8", errors="replace")

    async def run(self) -> None:
        logger.info("connection from %s", self.peer)
        try:
            self.state = SessionState.AUTHENTICATING
            if await self.authenticate():
                self.state = SessionState.AUTHENTICATED
            elif self.require_auth:
                logger.info("%s failed to authenticate; closing", self.peer)
                return
            else:
                logger.warning("%s failed to authenticate; serving anyway (require_auth is off)",
                               self.peer)
            self.state = SessionState.SERVING
            await self.serve()
        except TransportError as exc:
            logger.info("session with %s ended: %s", self.peer, exc.detail)
        except Exception:
            logger.exception("session with %s crashed", self.peer)
        finally:
            self.state = SessionState.CLOSED
            await self.transport.close()
            logger.info("connection closed from %s", self.peer)

    # -----------------------------
    # Authentication phase
    # -----------------------------

    async def authenticate(self) -> bool:
        """Run registration or login. True only when the peer is now known."""
        try:
            msg = m.decode(await self.receive())
            if msg.op == m.REGISTER:
                username, password_hash, salt = msg.fields
                self.credentials.register(username, password_hash, salt)
                await self.send(m.AUTH_OK)
                self.username = username
                return True
            if msg.op == m.LOGIN:
                return await self.login(msg)
            raise ParseError("expected register (1) or login (2)")
        except TransportError:
            raise
        except WatchlistError as exc:
            logger.warning("%s: authentication %s: %s", self.peer, exc.kind, exc.detail)
            await self.send(m.error(exc))
            return False

    async def login(self, request: m.Message) -> bool:
        if len(request.fields) != 1:
            raise ParseError("login starts with 2:<username>")
        username = request.fields[0]
        salt = self.credentials.challenge(username)
        await self.send(salt)

        proof = m.decode(await self.receive())
        if proof.op != m.LOGIN or len(proof.fields) != 3:
            raise ParseError("expected 2:<username>:<password_hash>:<salt>")
        try:
            if proof.fields[0] != username:
                raise AuthDenied("login proof is for a different user")
            self.credentials.authenticate(*proof.fields)
        except AuthDenied:
            await self.send(m.AUTH_DENIED)
            return False
        await self.send(m.AUTH_OK)
        self.username = username
        return True

    # -----------------------------
    # Serving phase
    # -----------------------------

    async def serve(self) -> None:
        while True:
            await self.handle(await self.receive())
            if not m.wants_more(await self.receive()):
                break

    async def handle(self, line: str) -> None:
        """Decode and dispatch one request; recoverable errors go back as `err:`."""
        try:
            msg = m.decode(line)
            handler = self._handlers.get(msg.op)
            if handler is None:
                raise ParseError(f"operation {msg.op!r} is not a watchlist operation")
            await handler(msg.fields)
        except TransportError:
            raise
        except WatchlistError as exc:
            if not isinstance(exc, CorruptRecord):
                logger.warning("%s: %s: %s", self.peer, exc.kind, exc.detail)
            await self.send(m.error(exc))

    async def do_create(self, fields: Sequence[str]) -> None:
        self.entries.create(m.entry_from_fields(fields))
        await self.send(m.ok())

    async def do_find(self, fields: Sequence[str]) -> None:
        await self.send(m.ok_entry(self.entries.find(fields[0])))

    async def do_display(self, fields: Sequence[str]) -> None:
        count = 0
        for row in self.entries.display():
            if isinstance(row, CorruptRecord):
                await self.send(m.error(row))
                continue
            await self.send(m.item(row))
            count += 1
        await self.send(m.ok(count))

    async def do_update(self, fields: Sequence[str]) -> None:
        field_code, title, new_value = fields
        self.entries.update(title, field_code, new_value)
        await self.send(m.ok())

    async def do_remove(self, fields: Sequence[str]) -> None:
        self.entries.remove(fields[0])
        await self.send(m.ok())


class WatchlistServer:
    """
    Accepts TLS connections and runs one Session task per connection. Both
    tables are shared by every session; the record adapters serialize access.
    """

    def __init__(self, settings: Settings, users: Optional[KeyValueStore] = None,
                 entries: Optional[KeyValueStore] = None,
                 ssl_context: Optional[ssl.SSLContext] = None) -> None:
        self.settings = settings
        if users is None or entries is None:
            users, entries = open_tables(settings.home)
        self._stores = (users, entries)
        self.credentials = CredentialManager(UserTable(users))
        self.entries = EntryTable(entries)
        self.ssl_context = ssl_context
        self._server: Optional[asyncio.AbstractServer] = None

    async def handle(self, transport: StreamTransport) -> None:
        session = Session(transport, self.credentials, self.entries, self.settings.require_auth)
        await session.run()

    async def start(self) -> asyncio.AbstractServer:
        """Bind and start accepting; returns the asyncio server (its sockets carry the port)."""
        if self.ssl_context is None:
            self.ssl_context = server_context(self.settings.cert_file, self.settings.key_file)
        self._server = await listen(self.handle, self.settings.host, self.settings.port,
                                    self.ssl_context, self.settings.max_frame,
                                    self.settings.idle_timeout)
        addrs = ", ".join(str(sock.getsockname()) for sock in self._server.sockets or [])
        logger.info("watchlist server listening on %s", addrs)
        if not self.settings.require_auth:
            logger.warning("require_auth is off: unauthenticated peers will be served")
        return self._server

    async def serve_forever(self) -> None:
        server = await self.start()
        async with server:
            await server.serve_forever()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
        for store in self._stores:
            store.close()
