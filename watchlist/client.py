"""
client.py - client side: request/response calls plus the interactive prompt loop.

WatchlistClient speaks the protocol over any transport with send/receive/close.
run_interactive() is the terminal front end: it asks for register/login,
then loops over operations, building each request with the codec before
anything goes on the wire. Input that the codec rejects is reported locally
and never sent.
"""

import getpass
import logging
from typing import AsyncIterator, Callable, Union

from . import credentials
from . import messages as m
from . import models
from .errors import ParseError, TransportError, WatchlistError
from .models import SEPARATOR, Entry, MediaType, Status

logger = logging.getLogger(__name__)

Ask = Callable[[str], str]
Say = Callable[[str], None]


class WatchlistClient:
    def __init__(self, transport) -> None:
        self.transport = transport

    async def send(self, line: str) -> None:
        await self.transport.send(line.encode("utf-8"))

    async def receive(self) -> str:
        return (await self.transport.receive()).decode("utf-8", errors="replace")

    async def _auth_reply(self) -> bool:
        reply = await self.receive()
        if reply == m.AUTH_OK:
            return True
        if reply == m.AUTH_DENIED:
            return False
        m.decode_response(reply)  # raises for err: replies
        raise ParseError(f"unexpected authentication reply {reply[:32]!r}")

    # -----------------------------
    # Authentication
    # -----------------------------

    async def register(self, username: str, password: str) -> bool:
        """Register a new user; the server stores H(password, salt) and the salt."""
        password_hash, salt = credentials.new_registration(password)
        await self.send(m.register_request(username, password_hash, salt))
        return await self._auth_reply()

    async def login(self, username: str, password: str) -> bool:
        """
        Two-step login. Raises NotFound for an unknown user; returns False when
        the password is wrong.
        """
        await self.send(m.login_request(username))
        challenge = await self.receive()
        if challenge.startswith(m.ERR + SEPARATOR):
            m.decode_response(challenge)
        proof = credentials.answer_challenge(password, challenge)
        await self.send(m.login_proof(username, proof, challenge))
        return await self._auth_reply()

    # -----------------------------
    # Record operations
    # -----------------------------

    async def call(self, line: str) -> m.Message:
        """Send one request and decode its single response (err: raises)."""
        await self.send(line)
        return m.decode_response(await self.receive())

    async def create(self, entry: Entry) -> None:
        await self.call(m.create_request(entry))

    async def find(self, title: str) -> Entry:
        reply = await self.call(m.find_request(title))
        return m.entry_from_fields(reply.fields)

    async def update(self, title: str, field_code: str, new_value: object) -> None:
        await self.call(m.update_request(field_code, title, new_value))

    async def remove(self, title: str) -> None:
        await self.call(m.remove_request(title))

    async def display(self) -> AsyncIterator[Union[Entry, WatchlistError]]:
        """
        Yield every entry the server streams back. Rows the server could not
        decode arrive as CorruptRecord errors and are yielded, not raised.
        """
        await self.send(m.display_request())
        while True:
            line = await self.receive()
            try:
                reply = m.decode_response(line)
            except TransportError:
                raise
            except WatchlistError as exc:
                yield exc
                continue
            if reply.op == m.ITEM:
                yield m.entry_from_fields(reply.fields)
            else:
                return

    async def proceed(self, more: bool) -> None:
        """Answer the continuation prompt; False ends the session."""
        await self.send(m.continuation(more))

    async def close(self) -> None:
        await self.transport.close()


# -----------------------------
# Request construction from prompts
# -----------------------------

OPERATION_PROMPT = "Please choose an operation: (create, find, display, update, remove)\n"
AGAIN_PROMPT = "Would you like to choose another operation? (yes or no)\n"

_NEW_VALUE_PROMPTS = {
    m.FIELD_TITLE: "Enter new title:\n",
    m.FIELD_MEDIA_TYPE: "Enter new type (1 - movie, 2 - TV show, 3 - cartoon, 4 - anime):\n",
    m.FIELD_DESCRIPTION: "Enter new description:\n",
    m.FIELD_STATUS: "Enter new status (1 - plan to watch, 2 - watching, 3 - completed):\n",
    m.FIELD_RATING: "Enter new rating (1 - 5):\n",
}


def build_request(op: str, ask: Ask) -> str:
    """
    Prompt for the fields `op` needs and return the encoded request.
    Raises ParseError on bad input, before anything is sent.
    """
    op = op.strip()[:1].lower()
    if op == m.CREATE:
        title = ask("Enter the title:\n")
        tokens = [
            ask("Enter type (1 - movie, 2 - TV show, 3 - cartoon, 4 - anime):\n"),
            ask("Enter description (max of 500 bytes):\n"),
            ask("Enter status (1 - plan to watch, 2 - watching, 3 - completed):\n"),
        ]
        if models.parse_status(tokens[2]) > Status.PLAN_TO_WATCH:
            tokens.append(ask("Enter rating (1 - 5, 1 being terrible and 5 being amazing):\n"))
        return m.create_request(models.entry_from_tokens(title, tokens, require_rating=True))
    if op == m.FIND:
        return m.find_request(models.check_title(ask("Enter title you wish to search for:\n")))
    if op == m.DISPLAY:
        return m.display_request()
    if op == m.UPDATE:
        title = models.check_title(ask("Enter title you wish to update:\n"))
        code = ask("Which field would you like to update? "
                   "(Title, Media type, Description, Status, Rating)\n").strip()[:1].lower()
        if code not in m.FIELD_CODES:
            raise ParseError("choose one of Title, Media type, Description, Status, Rating")
        value = m.normalize_value(code, ask(_NEW_VALUE_PROMPTS[code]))
        return m.update_request(code, title, value)
    if op == m.REMOVE:
        return m.remove_request(models.check_title(ask("Enter title of entry you wish to delete:\n")))
    raise ParseError("choose one of create, find, display, update, remove")


def format_entry(entry: Entry) -> str:
    media = MediaType(entry.media_type).name.replace("_", " ").lower()
    status = Status(entry.status).name.replace("_", " ").lower()
    line = f"{entry.title} [{media}] {entry.description} - {status}"
    if entry.rated:
        line += f", rated {entry.rating}/5"
    return line


# -----------------------------
# Interactive loop
# -----------------------------

async def authenticate_interactive(client: WatchlistClient, ask: Ask,
                                   read_password: Callable[[str], str], say: Say) -> bool:
    choice = ask("Enter 1 to register or 2 to log in:\n").strip()[:1]
    if choice not in m.AUTH_OPS:
        say("Please enter 1 or 2.")
        return False
    username = ask("Username:\n").strip()
    # getpass turns terminal echo off and restores it on every way out.
    password = read_password("Password: ")
    try:
        models.check_text(username, "username", models.MAX_USERNAME)
        if choice == m.REGISTER:
            ok = await client.register(username, password)
            say(f"Registered {username}." if ok else "Registration failed.")
        else:
            ok = await client.login(username, password)
            say(f"Welcome back, {username}." if ok else "Passwords do not match.")
        return ok
    except TransportError:
        raise
    except WatchlistError as exc:
        say(f"Error ({exc.kind}): {exc.detail}")
        return False


async def run_interactive(client: WatchlistClient, ask: Ask = input,
                          read_password: Callable[[str], str] = getpass.getpass,
                          say: Say = print) -> None:
    """Register or log in, then serve operations until the user says no."""
    if not await authenticate_interactive(client, ask, read_password, say):
        return

    while True:
        op = ask(OPERATION_PROMPT).strip()[:1].lower()
        try:
            line = build_request(op, ask)
        except ParseError as exc:
            say(f"Invalid input: {exc.detail}")
            continue

        try:
            if op == m.DISPLAY:
                say("The whole list will be displayed:")
                count = 0
                async for row in client.display():
                    if isinstance(row, WatchlistError):
                        say(f"  <unreadable entry: {row.detail}>")
                    else:
                        say("  " + format_entry(row))
                        count += 1
                say(f"{count} entries.")
            elif op == m.FIND:
                reply = await client.call(line)
                say(format_entry(m.entry_from_fields(reply.fields)))
            else:
                await client.call(line)
                say("Done.")
        except TransportError:
            raise
        except WatchlistError as exc:
            say(f"Error ({exc.kind}): {exc.detail}")

        more = m.wants_more(ask(AGAIN_PROMPT).strip())
        await client.proceed(more)
        if not more:
            break
