"""
config.py - runtime settings, read from WATCHLIST_* environment variables.

Everything has a default so `python -m watchlist.run --mode server` works out
of the box; key material and the two database files live under
~/.watchlist unless WATCHLIST_HOME says otherwise. CLI flags in run.py
override what is read here.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .framing import DEFAULT_MAX_FRAME

DEFAULT_PORT = 4433
DEFAULT_HOME = Path.home() / ".watchlist"

_FALSE = ("0", "false", "no", "off")


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in _FALSE


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    home: Path = DEFAULT_HOME
    cert_file: Optional[Path] = None
    key_file: Optional[Path] = None
    cafile: Optional[Path] = None
    # False keeps serving a peer whose login failed.
    require_auth: bool = True
    max_frame: int = DEFAULT_MAX_FRAME
    idle_timeout: Optional[float] = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.home = Path(self.home)
        if self.cert_file is None:
            self.cert_file = self.home / "cert.pem"
        if self.key_file is None:
            self.key_file = self.home / "key.pem"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the environment (or any mapping, for tests)."""
        env = os.environ if env is None else env
        home = Path(env.get("WATCHLIST_HOME") or DEFAULT_HOME).expanduser()
        cert = env.get("WATCHLIST_CERT")
        key = env.get("WATCHLIST_KEY")
        cafile = env.get("WATCHLIST_CAFILE")
        timeout = float(env.get("WATCHLIST_IDLE_TIMEOUT") or 0)
        return cls(
            host=env.get("WATCHLIST_HOST") or "0.0.0.0",
            port=int(env.get("WATCHLIST_PORT") or DEFAULT_PORT),
            home=home,
            cert_file=Path(cert).expanduser() if cert else None,
            key_file=Path(key).expanduser() if key else None,
            cafile=Path(cafile).expanduser() if cafile else None,
            require_auth=_flag(env.get("WATCHLIST_REQUIRE_AUTH"), True),
            max_frame=int(env.get("WATCHLIST_MAX_FRAME") or DEFAULT_MAX_FRAME),
            idle_timeout=timeout if timeout > 0 else None,
            log_level=(env.get("WATCHLIST_LOG_LEVEL") or "INFO").upper(),
        )
