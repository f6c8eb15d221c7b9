"""
records.py - maps watchlist entries and user credentials onto key-value tables.

On-disk layout (one table each, key = UTF-8 title / username):

    entries:  <media_type>:<description>:<status>[:<rating>]
    users:    <password_hash>:<salt>

Every public method is synchronous: one read-modify-write with no `await`
inside it. Sessions all run on the event loop thread, so that alone keeps two
sessions from interleaving inside an operation. The table lock only matters
when an adapter is also used from another thread (a maintenance script, a
thread-pool executor); it is re-entrant and never excludes sessions from
each other. display() is a generator, so other sessions can change the
table between the rows it yields.

A stored value that does not decode raises CorruptRecord; fields are never
silently dropped or defaulted.
"""

import logging
import threading
from typing import Iterator, Optional, Union

from . import messages as m
from . import models
from .errors import AlreadyExists, CorruptRecord, NotFound, ParseError
from .models import SEPARATOR, Credential, Entry, Status
from .store import KeyValueStore

logger = logging.getLogger(__name__)


def _key(text: str) -> bytes:
    return text.encode("utf-8")


def encode_entry_value(entry: Entry) -> bytes:
    return SEPARATOR.join(entry.field_tokens()).encode("utf-8")


def decode_entry_value(title: str, raw: bytes) -> Entry:
    """Positional decode; the rating token is keyed off the decoded status."""
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise CorruptRecord(f"{title}: value is not UTF-8") from None
    try:
        return models.entry_from_tokens(title, text.split(SEPARATOR), error=CorruptRecord)
    except CorruptRecord as exc:
        raise CorruptRecord(f"{title}: {exc.detail}") from None


class EntryTable:
    """Record adapter for the `entries` table."""

    def __init__(self, store: KeyValueStore, lock: Optional[threading.RLock] = None) -> None:
        self._store = store
        self._lock = lock or threading.RLock()

    def _load(self, title: str) -> Entry:
        raw = self._store.get(_key(title))
        if raw is None:
            raise NotFound(f"no entry titled {title!r}")
        try:
            return decode_entry_value(title, raw)
        except CorruptRecord as exc:
            logger.error("corrupt entry record: %s", exc.detail)
            raise

    def create(self, entry: Entry) -> Entry:
        """Insert-only; a duplicate title raises AlreadyExists and leaves the old record alone."""
        models.check_title(entry.title)
        with self._lock:
            if not self._store.put(_key(entry.title), encode_entry_value(entry)):
                raise AlreadyExists(f"entry {entry.title!r} already exists")
        logger.info("created entry %r", entry.title)
        return entry

    def find(self, title: str) -> Entry:
        with self._lock:
            return self._load(title)

    def display(self) -> Iterator[Union[Entry, CorruptRecord]]:
        """
        Walk the table in store order, one key per step.

        Rows that fail to decode are yielded as CorruptRecord instances (and
        logged) so the caller can report them and keep going. Each call starts
        over from the first key.
        """
        with self._lock:
            key = self._store.first_key()
        while key is not None:
            with self._lock:
                raw = self._store.get(key)
                following = self._store.next_key(key)
            if raw is not None:
                title = key.decode("utf-8", errors="replace")
                try:
                    yield decode_entry_value(title, raw)
                except CorruptRecord as exc:
                    logger.error("corrupt entry record: %s", exc.detail)
                    yield exc
            key = following

    def update(self, title: str, field_code: str, new_value: str) -> Entry:
        """
        Change exactly one field and write the record back.

        Renaming (field 't') moves the record to a new key; the new title must
        be free. Setting status to plan-to-watch drops the rating; rating a
        plan-to-watch entry is refused.
        """
        code = field_code.lower()
        with self._lock:
            entry = self._load(title)

            if code == m.FIELD_TITLE:
                new_title = models.check_title(new_value)
                if new_title == title:
                    return entry
                if self._store.exists(_key(new_title)):
                    raise AlreadyExists(f"entry {new_title!r} already exists")
                updated = entry.with_field(title=new_title)
                self._store.put(_key(new_title), encode_entry_value(updated))
                self._store.delete(_key(title))
                logger.info("renamed entry %r to %r", title, new_title)
                return updated

            if code == m.FIELD_MEDIA_TYPE:
                updated = entry.with_field(media_type=models.parse_media_type(new_value))
            elif code == m.FIELD_DESCRIPTION:
                updated = entry.with_field(description=models.check_description(new_value))
            elif code == m.FIELD_STATUS:
                updated = entry.with_field(status=models.parse_status(new_value))
            elif code == m.FIELD_RATING:
                if entry.status == Status.PLAN_TO_WATCH:
                    raise ParseError("plan-to-watch entries cannot be rated")
                updated = entry.with_field(rating=models.parse_rating(new_value))
            else:
                raise ParseError(f"unknown field code {field_code!r}")

            self._store.put(_key(title), encode_entry_value(updated), replace=True)
        logger.info("updated entry %r (field %s)", title, code)
        return updated

    def remove(self, title: str) -> None:
        with self._lock:
            if not self._store.delete(_key(title)):
                raise NotFound(f"no entry titled {title!r}")
        logger.info("removed entry %r", title)


class UserTable:
    """Record adapter for the `users` table. Credentials are write-once."""

    def __init__(self, store: KeyValueStore, lock: Optional[threading.RLock] = None) -> None:
        self._store = store
        self._lock = lock or threading.RLock()

    def add(self, credential: Credential) -> None:
        value = SEPARATOR.join((credential.password_hash, credential.salt)).encode("utf-8")
        with self._lock:
            if not self._store.put(_key(credential.username), value):
                raise AlreadyExists(f"user {credential.username!r} already exists")
        logger.info("registered user %r", credential.username)

    def lookup(self, username: str) -> Credential:
        with self._lock:
            raw = self._store.get(_key(username))
        if raw is None:
            raise NotFound(f"no user named {username!r}")
        try:
            password_hash, salt = raw.decode("utf-8").split(SEPARATOR)
        except (UnicodeDecodeError, ValueError):
            logger.error("corrupt credential record for %r", username)
            raise CorruptRecord(f"credential record for {username!r} is unreadable") from None
        return Credential(username, password_hash, salt)

    def exists(self, username: str) -> bool:
        with self._lock:
            return self._store.exists(_key(username))
