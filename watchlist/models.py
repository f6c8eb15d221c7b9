"""
models.py - watchlist entries, user credentials and their field rules.

An entry is positional on the wire and on disk:

    <media_type>:<description>:<status>[:<rating>]

The rating token is keyed off the status: a plan-to-watch entry never carries
one, a watching/completed entry carries one once it has been rated.
"""

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import List, Optional, Sequence, Type

from .errors import ParseError, WatchlistError

SEPARATOR = ":"

# Field bounds in UTF-8 bytes, matching the fixed-size fields of existing
# record files. With these, the longest valid request or response line stays
# under the default frame size.
MAX_TITLE = 255
MAX_DESCRIPTION = 500
MAX_USERNAME = 31

MIN_RATING = 1
MAX_RATING = 5


class MediaType(IntEnum):
    MOVIE = 1
    TV_SHOW = 2
    CARTOON = 3
    ANIME = 4


class Status(IntEnum):
    PLAN_TO_WATCH = 1
    WATCHING = 2
    COMPLETED = 3


@dataclass(frozen=True)
class Credential:
    username: str
    password_hash: str
    salt: str


@dataclass(frozen=True)
class Entry:
    title: str
    media_type: MediaType
    description: str
    status: Status
    rating: Optional[int] = None

    @property
    def rated(self) -> bool:
        """A rating only means something once the entry is being watched."""
        return self.status > Status.PLAN_TO_WATCH and self.rating is not None

    def with_field(self, **changes) -> "Entry":
        entry = replace(self, **changes)
        if entry.status == Status.PLAN_TO_WATCH and entry.rating is not None:
            entry = replace(entry, rating=None)
        return entry

    def field_tokens(self) -> List[str]:
        """Tokens for the value side of the record (everything but the title)."""
        tokens = [str(int(self.media_type)), self.description, str(int(self.status))]
        if self.rated:
            tokens.append(str(self.rating))
        return tokens


# -----------------------------
# Field checks
# -----------------------------

def check_text(value: str, what: str, limit: int, allow_empty: bool = False,
               error: Type[WatchlistError] = ParseError) -> str:
    """Reject separators, line breaks, empties and values over `limit` UTF-8 bytes."""
    if not value and not allow_empty:
        raise error(f"{what} must not be empty")
    if SEPARATOR in value or "\n" in value or "\r" in value:
        raise error(f"{what} must not contain '{SEPARATOR}' or line breaks")
    try:
        size = len(value.encode("utf-8"))
    except UnicodeEncodeError:
        raise error(f"{what} is not valid text") from None
    if size > limit:
        raise error(f"{what} longer than {limit} bytes")
    return value


def check_title(value: str, error: Type[WatchlistError] = ParseError) -> str:
    return check_text(value, "title", MAX_TITLE, error=error)


def check_description(value: str, error: Type[WatchlistError] = ParseError) -> str:
    return check_text(value, "description", MAX_DESCRIPTION, allow_empty=True, error=error)


def _parse_int(token: str, what: str, error: Type[WatchlistError]) -> int:
    try:
        return int(token.strip())
    except (TypeError, ValueError):
        raise error(f"{what} must be a number, got {token!r}") from None


def parse_media_type(token: str, error: Type[WatchlistError] = ParseError) -> MediaType:
    value = _parse_int(token, "media type", error)
    try:
        return MediaType(value)
    except ValueError:
        raise error(f"unknown media type {value}") from None


def parse_status(token: str, error: Type[WatchlistError] = ParseError) -> Status:
    value = _parse_int(token, "status", error)
    try:
        return Status(value)
    except ValueError:
        raise error(f"unknown status {value}") from None


def parse_rating(token: str, error: Type[WatchlistError] = ParseError) -> int:
    value = _parse_int(token, "rating", error)
    if not MIN_RATING <= value <= MAX_RATING:
        raise error(f"rating must be between {MIN_RATING} and {MAX_RATING}")
    return value


def entry_from_tokens(title: str, tokens: Sequence[str], require_rating: bool = False,
                      error: Type[WatchlistError] = ParseError) -> Entry:
    """
    Build an Entry from `media_type, description, status[, rating]`.

    The number of tokens is checked against the decoded status, not the other
    way round: three tokens are always fine, a fourth is only allowed past
    plan-to-watch. With `require_rating` (fresh creates) a watching/completed
    entry must bring its rating along.
    """
    if len(tokens) not in (3, 4):
        raise error(f"expected 3 or 4 entry fields, got {len(tokens)}")
    media_type = parse_media_type(tokens[0], error)
    description = check_description(tokens[1], error)
    status = parse_status(tokens[2], error)

    rating = None
    if status == Status.PLAN_TO_WATCH:
        if len(tokens) == 4:
            raise error("plan-to-watch entries carry no rating")
    elif len(tokens) == 4:
        rating = parse_rating(tokens[3], error)
    elif require_rating:
        raise error(f"status {int(status)} requires a rating")

    return Entry(check_title(title, error), media_type, description, status, rating)
