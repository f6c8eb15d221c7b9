"""
run.py - single entry point for the watchlist server and client.

What you can do here:
- server:  accept TLS connections and serve watchlists from ~/.watchlist
- client:  connect to host[:port], register or log in, manage the list
- keygen:  write a self-signed cert.pem/key.pem for the server

Quick examples:
  Keys:    python -m watchlist.run --mode keygen
  Server:  python -m watchlist.run --mode server --port 4433
  Client:  python -m watchlist.run --mode client localhost:4433
"""

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

from . import crypto
from .client import WatchlistClient, run_interactive
from .config import DEFAULT_PORT, Settings
from .errors import TransportError
from .session import WatchlistServer
from .transport import client_context, connect

logger = logging.getLogger(__name__)


def split_address(address: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """`host` or `host:port`; the port falls back to the default."""
    host, sep, port = address.rpartition(":")
    if not sep:
        return address, default_port
    if not port.isdigit():
        raise ValueError(f"bad port in {address!r}")
    return host, int(port)


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def run_server(settings: Settings) -> None:
    server = WatchlistServer(settings)
    try:
        await server.serve_forever()
    finally:
        await server.close()


async def run_client(settings: Settings, host: str, port: int) -> None:
    transport = await connect(host, port, client_context(settings.cafile), settings.max_frame)
    print(f"Client: Established SSL/TLS session to '{host}' on port {port}")
    client = WatchlistClient(transport)
    try:
        await run_interactive(client)
    except TransportError as exc:
        print(f"Client: connection lost: {exc.detail}")
    finally:
        await client.close()
        print(f"Client: Terminated SSL/TLS connection with server '{host}'")


def run_keygen(settings: Settings, force: bool = False) -> None:
    if settings.cert_file.exists() and not force:
        raise SystemExit(f"{settings.cert_file} already exists; pass --force to replace it")
    crypto.write_self_signed(settings.cert_file, settings.key_file)
    print(f"Wrote {settings.cert_file} and {settings.key_file}")


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="watchlist")
    p.add_argument("--mode", choices=["server", "client", "keygen"], required=True)
    p.add_argument("address", nargs="?", help="client mode: <host>[:<port>]")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.add_argument("--home", help="directory for databases and key material")
    p.add_argument("--cert")
    p.add_argument("--key")
    p.add_argument("--cafile", help="client mode: verify the server against this CA")
    p.add_argument("--allow-unauthenticated", action="store_true",
                   help="server mode: keep serving after a failed login")
    p.add_argument("--force", action="store_true", help="keygen mode: overwrite existing files")
    p.add_argument("--log-level")
    return p.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment first, then whatever the command line overrides."""
    settings = Settings.from_env()
    if args.home:
        old_home = settings.home
        settings.home = Path(args.home).expanduser()
        if settings.cert_file == old_home / "cert.pem":
            settings.cert_file = settings.home / "cert.pem"
        if settings.key_file == old_home / "key.pem":
            settings.key_file = settings.home / "key.pem"
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    if args.cert:
        settings.cert_file = Path(args.cert).expanduser()
    if args.key:
        settings.key_file = Path(args.key).expanduser()
    if args.cafile:
        settings.cafile = Path(args.cafile).expanduser()
    if args.allow_unauthenticated:
        settings.require_auth = False
    if args.log_level:
        settings.log_level = args.log_level.upper()
    return settings


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    settings = settings_from_args(args)
    logging.basicConfig(level=settings.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.mode == "keygen":
        run_keygen(settings, args.force)

    elif args.mode == "server":
        try:
            asyncio.run(run_server(settings))
        except KeyboardInterrupt:
            logger.info("server stopped")

    elif args.mode == "client":
        if not args.address:
            raise SystemExit("client mode needs <host>[:<port>]")
        host, port = split_address(args.address, args.port or DEFAULT_PORT)
        try:
            asyncio.run(run_client(settings, host, port))
        except TransportError as exc:
            raise SystemExit(f"Client: {exc.detail}")


if __name__ == "__main__":
    main()
