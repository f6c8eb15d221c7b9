"""
errors.py - the error kinds shared by the codec, the stores and the dispatcher.

Every exception carries a `kind` string. That string is what travels on the
wire inside an error response (`err:<kind>:<detail>`), so the client can turn
it back into the same class with `from_kind()`.

Recoverable kinds (ParseError, NotFound, AlreadyExists, AuthDenied,
CorruptRecord) are reported to the peer and the session keeps going.
TransportError ends the session but never the server process.
"""

from typing import Dict, Type


class WatchlistError(Exception):
    """Base class; `kind` is the wire name of the error."""
    kind = "Error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail


class ParseError(WatchlistError):
    """Malformed message or a field that fails its type constraint."""
    kind = "ParseError"


class NotFound(WatchlistError):
    """Missing username or title."""
    kind = "NotFound"


class AlreadyExists(WatchlistError):
    """Duplicate title on create/rename, or duplicate username on register."""
    kind = "AlreadyExists"


class AuthDenied(WatchlistError):
    """Password hash mismatch."""
    kind = "AuthDenied"


class CorruptRecord(WatchlistError):
    """A stored value could not be decoded."""
    kind = "CorruptRecord"


class TransportError(WatchlistError):
    """Send/receive failed or the peer went away."""
    kind = "IoError"


_BY_KIND: Dict[str, Type[WatchlistError]] = {
    cls.kind: cls
    for cls in (ParseError, NotFound, AlreadyExists, AuthDenied, CorruptRecord, TransportError)
}


def from_kind(kind: str, detail: str = "") -> WatchlistError:
    """Rebuild an exception from its wire kind. Unknown kinds map to the base class."""
    return _BY_KIND.get(kind, WatchlistError)(detail)
