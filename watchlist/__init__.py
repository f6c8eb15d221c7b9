"""
watchlist - manage a personal watchlist on a remote server over TLS.

A client registers or logs in with a salted password hash (the password
itself never leaves the client), then creates, finds, displays, updates and
removes entries with colon-delimited requests. The server keeps users and
entries in two key-value tables.
"""
__all__ = [
    "client", "config", "credentials", "crypto", "errors", "framing",
    "messages", "models", "records", "run", "session", "store", "transport",
]
