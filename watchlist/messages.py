"""
messages.py - the colon-delimited request/response grammar.

Requests (client -> server), one line each:

    1:<username>:<password_hash>:<salt>            register
    2:<username>                                   login, step 1
    2:<username>:<password_hash>:<salt>            login, step 2 (proof)
    c:<title>:<media_type>:<description>:<status>[:<rating>]
    f:<title>
    d
    u:<field_code>:<title>:<new_value>             field_code in t/m/d/s/r
    r:<title>

Between the two login steps the server answers with the bare salt, and after
the proof with "1" (authenticated) or "0" (rejected).

Responses to record operations:

    ok[:<payload>...]        success; find carries the entry, display the count
    item:<title>:<fields>    one display row, sent before the closing ok
    err:<kind>:<detail>      recoverable failure, the session goes on

After every response the client sends a continuation line; anything starting
with y/Y keeps the session loop going.

decode() validates everything it can without touching storage, so a request
that gets past it can only fail on NotFound/AlreadyExists/CorruptRecord.
"""

from typing import Callable, Dict, NamedTuple, Sequence, Tuple

from . import models
from .errors import ParseError, WatchlistError, from_kind
from .models import SEPARATOR, Entry

# -----------------------
# Operation bytes
# -----------------------
REGISTER = "1"
LOGIN = "2"
CREATE = "c"
FIND = "f"
DISPLAY = "d"
UPDATE = "u"
REMOVE = "r"

AUTH_OPS = (REGISTER, LOGIN)

# Field codes for UPDATE.
FIELD_TITLE = "t"
FIELD_MEDIA_TYPE = "m"
FIELD_DESCRIPTION = "d"
FIELD_STATUS = "s"
FIELD_RATING = "r"
FIELD_CODES = (FIELD_TITLE, FIELD_MEDIA_TYPE, FIELD_DESCRIPTION, FIELD_STATUS, FIELD_RATING)

# Login results.
AUTH_OK = "1"
AUTH_DENIED = "0"

# Response tags.
OK = "ok"
ITEM = "item"
ERR = "err"

# Longest error detail sent, in UTF-8 bytes.
MAX_DETAIL = 300


class Message(NamedTuple):
    op: str
    fields: Tuple[str, ...]


# -----------------------
# Encoding
# -----------------------

def encode(op: str, fields: Sequence[object] = ()) -> str:
    """
    Join an operation byte and its fields into one line.

    Fields are stringified; a separator or a line break inside a field would
    shift every later token, so it is refused here instead of on the far side.
    """
    parts = [op]
    for value in fields:
        text = str(int(value)) if isinstance(value, int) else str(value)
        if SEPARATOR in text or "\n" in text or "\r" in text:
            raise ParseError(f"field {text!r} contains '{SEPARATOR}' or a line break")
        parts.append(text)
    return SEPARATOR.join(parts)


def encode_entry(entry: Entry) -> str:
    """`<title>:<media_type>:<description>:<status>[:<rating>]`."""
    return encode(models.check_title(entry.title), entry.field_tokens())


def register_request(username: str, password_hash: str, salt: str) -> str:
    return encode(REGISTER, (username, password_hash, salt))


def login_request(username: str) -> str:
    return encode(LOGIN, (username,))


def login_proof(username: str, password_hash: str, salt: str) -> str:
    return encode(LOGIN, (username, password_hash, salt))


def create_request(entry: Entry) -> str:
    return encode(CREATE, [entry.title] + entry.field_tokens())


def find_request(title: str) -> str:
    return encode(FIND, (title,))


def display_request() -> str:
    return encode(DISPLAY)


def update_request(field_code: str, title: str, new_value: object) -> str:
    return encode(UPDATE, (field_code, title, new_value))


def remove_request(title: str) -> str:
    return encode(REMOVE, (title,))


def continuation(more: bool) -> str:
    return "y" if more else "n"


def wants_more(line: str) -> bool:
    """Only the first character counts, as in 'yes', 'Y', 'yep'."""
    return line[:1] in ("y", "Y")


def ok(*fields: object) -> str:
    return encode(OK, fields)


def ok_entry(entry: Entry) -> str:
    return SEPARATOR.join((OK, encode_entry(entry)))


def item(entry: Entry) -> str:
    return SEPARATOR.join((ITEM, encode_entry(entry)))


def error(exc: WatchlistError) -> str:
    # The detail is the last field, so it may hold separators; line breaks go.
    # It can echo request text, so it is cut to keep the line inside one frame.
    raw = " ".join(str(exc.detail).split()).encode("utf-8", errors="replace")
    detail = raw[:MAX_DETAIL].decode("utf-8", errors="ignore")
    return SEPARATOR.join((ERR, exc.kind, detail))


# -----------------------
# Decoding
# -----------------------

def _clean(line: str) -> str:
    # Peers written against fixed-size buffers pad with NULs.
    return line.rstrip("\x00").rstrip("\r\n")


def _need(fields: Sequence[str], counts: Tuple[int, ...], op: str) -> None:
    if len(fields) not in counts:
        wanted = " or ".join(str(c) for c in counts)
        raise ParseError(f"'{op}' takes {wanted} field(s), got {len(fields)}")


def _username(value: str) -> str:
    return models.check_text(value, "username", models.MAX_USERNAME)


def _token(value: str, what: str) -> str:
    if not value:
        raise ParseError(f"{what} must not be empty")
    return value


def _check_register(fields: Sequence[str]) -> Tuple[str, ...]:
    _need(fields, (3,), REGISTER)
    return (_username(fields[0]), _token(fields[1], "password hash"), _token(fields[2], "salt"))


def _check_login(fields: Sequence[str]) -> Tuple[str, ...]:
    _need(fields, (1, 3), LOGIN)
    if len(fields) == 1:
        return (_username(fields[0]),)
    return (_username(fields[0]), _token(fields[1], "password hash"), _token(fields[2], "salt"))


def _check_create(fields: Sequence[str]) -> Tuple[str, ...]:
    _need(fields, (4, 5), CREATE)
    entry = models.entry_from_tokens(fields[0], fields[1:], require_rating=True)
    return tuple([entry.title] + entry.field_tokens())


def _check_title_only(op: str) -> Callable[[Sequence[str]], Tuple[str, ...]]:
    def check(fields: Sequence[str]) -> Tuple[str, ...]:
        _need(fields, (1,), op)
        return (models.check_title(fields[0]),)
    return check


def _check_display(fields: Sequence[str]) -> Tuple[str, ...]:
    _need(fields, (0,), DISPLAY)
    return ()


def normalize_value(field_code: str, value: str) -> str:
    """Validate an update value for its field; numbers come back canonical."""
    if field_code == FIELD_TITLE:
        return models.check_title(value)
    if field_code == FIELD_MEDIA_TYPE:
        return str(int(models.parse_media_type(value)))
    if field_code == FIELD_DESCRIPTION:
        return models.check_description(value)
    if field_code == FIELD_STATUS:
        return str(int(models.parse_status(value)))
    if field_code == FIELD_RATING:
        return str(models.parse_rating(value))
    raise ParseError(f"unknown field code {field_code!r}")


def _check_update(fields: Sequence[str]) -> Tuple[str, ...]:
    _need(fields, (3,), UPDATE)
    code = fields[0].lower()
    if code not in FIELD_CODES:
        raise ParseError(f"unknown field code {fields[0]!r}")
    return (code, models.check_title(fields[1]), normalize_value(code, fields[2]))


_CHECKS: Dict[str, Callable[[Sequence[str]], Tuple[str, ...]]] = {
    REGISTER: _check_register,
    LOGIN: _check_login,
    CREATE: _check_create,
    FIND: _check_title_only(FIND),
    DISPLAY: _check_display,
    UPDATE: _check_update,
    REMOVE: _check_title_only(REMOVE),
}


def decode(line: str) -> Message:
    """
    Parse one request line into (op, fields).

    Raises:
        ParseError: unknown operation byte, wrong number of fields, or a field
        that fails its type constraint.
    """
    text = _clean(line)
    if not text:
        raise ParseError("empty request")
    tokens = text.split(SEPARATOR)
    op = tokens[0].lower()
    check = _CHECKS.get(op)
    if check is None:
        raise ParseError(f"unknown operation {tokens[0][:8]!r}")
    return Message(op, check(tokens[1:]))


def decode_response(line: str) -> Message:
    """
    Split a response into its tag and fields.

    Raises the matching WatchlistError for `err:` responses, ParseError for
    anything that is not a response at all.
    """
    text = _clean(line)
    tag, _, rest = text.partition(SEPARATOR)
    if tag == ERR:
        kind, _, detail = rest.partition(SEPARATOR)
        raise from_kind(kind, detail)
    if tag not in (OK, ITEM):
        raise ParseError(f"unexpected response {text[:32]!r}")
    return Message(tag, tuple(rest.split(SEPARATOR)) if rest else ())


def entry_from_fields(fields: Sequence[str]) -> Entry:
    """Turn `title, media_type, description, status[, rating]` back into an Entry."""
    if not fields:
        raise ParseError("missing entry")
    return models.entry_from_tokens(fields[0], fields[1:])
