"""
transport.py - the secure channel the protocol runs over.

StreamTransport wraps an asyncio (reader, writer) pair that has already done
its TLS handshake and exposes just what the dispatcher and client need:

    send(bytes)            one frame out
    receive(max_len)       one frame in
    close()

Every failure on the wire (peer gone, reset, oversize frame, idle timeout)
comes out as TransportError, which ends the session.
"""

import asyncio
import logging
import ssl
from pathlib import Path
from typing import Awaitable, Callable, Optional

from . import crypto
from .errors import TransportError
from .framing import DEFAULT_MAX_FRAME, read_frame, write_frame

logger = logging.getLogger(__name__)


class StreamTransport:
    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 max_frame: int = DEFAULT_MAX_FRAME, idle_timeout: Optional[float] = None) -> None:
        self.reader = reader
        self.writer = writer
        self.max_frame = max_frame
        self.idle_timeout = idle_timeout or None
        self.peer = str(writer.get_extra_info("peername"))

    async def send(self, data: bytes) -> None:
        try:
            await write_frame(self.writer, data, self.max_frame)
        except (ConnectionError, OSError, ValueError) as exc:
            raise TransportError(f"send to {self.peer} failed: {exc}") from exc

    async def receive(self, max_len: Optional[int] = None) -> bytes:
        limit = min(max_len or self.max_frame, self.max_frame)
        try:
            return await asyncio.wait_for(read_frame(self.reader, limit), self.idle_timeout)
        except asyncio.IncompleteReadError as exc:
            raise TransportError(f"{self.peer} closed the connection") from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(f"{self.peer} idle for {self.idle_timeout}s") from exc
        except (ConnectionError, OSError, ValueError) as exc:
            raise TransportError(f"receive from {self.peer} failed: {exc}") from exc

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError, ssl.SSLError) as exc:
            logger.debug("close of %s: %s", self.peer, exc)


# -----------------------------
# TLS contexts
# -----------------------------

def server_context(cert_file: Path, key_file: Path) -> ssl.SSLContext:
    """Server side TLS from cert.pem/key.pem. Missing files are a clear error."""
    for path in (cert_file, key_file):
        if not Path(path).exists():
            raise FileNotFoundError(
                f"{path} not found; create it with `python -m watchlist.run --mode keygen`")
    crypto.check_certificate_pair(Path(cert_file), Path(key_file))
    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.load_cert_chain(str(cert_file), str(key_file))
    return ctx


def client_context(cafile: Optional[Path] = None) -> ssl.SSLContext:
    """
    Client side TLS. With a CA file the server certificate is verified;
    without one the channel is encrypted but the server is not authenticated,
    so a warning is logged.
    """
    ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH,
                                     cafile=str(cafile) if cafile else None)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    if cafile is None:
        logger.warning("no CA file given; the server certificate will not be verified")
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


# -----------------------------
# connect / accept
# -----------------------------

async def connect(host: str, port: int, ssl_context: Optional[ssl.SSLContext],
                  max_frame: int = DEFAULT_MAX_FRAME) -> StreamTransport:
    """Open a TCP connection, run the TLS handshake, return the transport."""
    try:
        reader, writer = await asyncio.open_connection(
            host, port, ssl=ssl_context,
            server_hostname=host if ssl_context is not None else None)
    except (ConnectionError, OSError, ssl.SSLError) as exc:
        raise TransportError(f"could not connect to {host}:{port}: {exc}") from exc
    return StreamTransport(reader, writer, max_frame)


async def listen(handler: Callable[[StreamTransport], Awaitable[None]], host: str, port: int,
                 ssl_context: Optional[ssl.SSLContext], max_frame: int = DEFAULT_MAX_FRAME,
                 idle_timeout: Optional[float] = None) -> asyncio.AbstractServer:
    """
    Start accepting. Each accepted (and handshaken) connection is wrapped in a
    StreamTransport and handed to `handler` in its own task.
    """
    async def on_accept(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await handler(StreamTransport(reader, writer, max_frame, idle_timeout))

    return await asyncio.start_server(on_accept, host, port, ssl=ssl_context)
