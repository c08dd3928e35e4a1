# loyalty/config.py
import argparse
import os
from dataclasses import dataclass
from typing import Optional, Sequence


DEFAULT_RUN_ADDRESS = "localhost:8080"
DEFAULT_ACCRUAL_ADDRESS = "http://localhost:8081"
DEFAULT_POLL_INTERVAL = 5.0
# The accrual system documents no per-request deadline; a hung call would
# otherwise block a whole tick.
DEFAULT_ACCRUAL_TIMEOUT = 10.0


@dataclass
class Settings:
    run_address: str = DEFAULT_RUN_ADDRESS
    database_uri: str = ""
    accrual_address: str = DEFAULT_ACCRUAL_ADDRESS
    poll_interval: float = DEFAULT_POLL_INTERVAL
    accrual_timeout: float = DEFAULT_ACCRUAL_TIMEOUT
    jwt_secret: str = "supersecretkey"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    log_level: str = "INFO"

    @property
    def host(self) -> str:
        host, _, _ = self.run_address.rpartition(":")
        return host or "0.0.0.0"

    @property
    def port(self) -> int:
        _, _, port = self.run_address.rpartition(":")
        return int(port)

    @property
    def async_database_uri(self) -> str:
        """DATABASE_URI as SQLAlchemy wants it for the asyncpg driver."""
        uri = self.database_uri
        if uri.startswith("postgres://"):
            uri = "postgresql://" + uri[len("postgres://"):]
        if uri.startswith("postgresql://"):
            uri = "postgresql+asyncpg://" + uri[len("postgresql://"):]
        return uri

    @property
    def sync_database_uri(self) -> str:
        """DATABASE_URI for the sync psycopg2 driver alembic runs on."""
        return self.async_database_uri.replace("postgresql+asyncpg://", "postgresql://", 1)


def _parse_flags(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="loyalty", description="Loyalty accrual backend")
    parser.add_argument("-a", dest="run_address", default="", help="address and port to run the server")
    parser.add_argument("-d", dest="database_uri", default="", help="database connection URI")
    parser.add_argument("-r", dest="accrual_address", default="", help="accrual system base URL")
    parser.add_argument("--poll-interval", dest="poll_interval", type=float, default=None)
    parser.add_argument("--accrual-timeout", dest="accrual_timeout", type=float, default=None)
    return parser.parse_args(argv)


def _normalize_address(addr: str) -> str:
    # "-a 9999" and "-a :9999" both mean "listen on every interface"
    if ":" not in addr:
        return f":{addr}"
    return addr


def _env_number(name: str, kind, default):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = kind(raw)
    except ValueError:
        value = None
    # "not >" also rejects nan
    if value is None or not value > 0:
        raise SystemExit(f"{name} must be a positive number, got {raw!r}")
    return value


def load_settings(argv: Optional[Sequence[str]] = None) -> Settings:
    """Build settings from command-line flags, then let environment variables win."""
    flags = _parse_flags(argv if argv is not None else [])
    settings = Settings()

    if flags.run_address:
        settings.run_address = _normalize_address(flags.run_address)
    if flags.database_uri:
        settings.database_uri = flags.database_uri
    if flags.accrual_address:
        settings.accrual_address = flags.accrual_address
    if flags.poll_interval is not None:
        settings.poll_interval = flags.poll_interval
    if flags.accrual_timeout is not None:
        settings.accrual_timeout = flags.accrual_timeout

    if os.getenv("RUN_ADDRESS"):
        settings.run_address = _normalize_address(os.environ["RUN_ADDRESS"])
    if os.getenv("DATABASE_URI"):
        settings.database_uri = os.environ["DATABASE_URI"]
    if os.getenv("ACCRUAL_SYSTEM_ADDRESS"):
        settings.accrual_address = os.environ["ACCRUAL_SYSTEM_ADDRESS"]
    settings.poll_interval = _env_number("ACCRUAL_POLL_INTERVAL", float, settings.poll_interval)
    settings.accrual_timeout = _env_number("ACCRUAL_REQUEST_TIMEOUT", float, settings.accrual_timeout)

    settings.jwt_secret = os.getenv("JWT_SECRET", settings.jwt_secret)
    settings.jwt_algorithm = os.getenv("JWT_ALGORITHM", settings.jwt_algorithm)
    settings.access_token_expire_minutes = _env_number(
        "ACCESS_TOKEN_EXPIRE_MINUTES", int, settings.access_token_expire_minutes
    )
    settings.log_level = os.getenv("LOG_LEVEL", settings.log_level)

    settings.accrual_address = settings.accrual_address.rstrip("/")
    if not settings.accrual_address.startswith(("http://", "https://")):
        settings.accrual_address = "http://" + settings.accrual_address
    return settings
