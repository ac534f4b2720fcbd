from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

ENV_FILE = "~/.spreadbot.env"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.environ.get(name)
    if raw is None:
        value = default
    else:
        value = int(raw)
    if min_value is not None:
        value = max(min_value, value)
    return value


def _env_float(name: str, default: float, min_value: float | None = None) -> float:
    raw = os.environ.get(name)
    if raw is None:
        value = default
    else:
        value = float(raw)
    if min_value is not None:
        value = max(min_value, value)
    return value


def _env_str(name: str, default: str = "") -> str:
    return str(os.environ.get(name, default) or default).strip()


@dataclass(frozen=True)
class Settings:
    profile: str
    dry_run: bool
    data_dir: str
    log_level: str
    tick_interval_sec: float
    status_every_ticks: int
    config_refresh_sec: float
    store_backend: str
    supabase_url: str
    supabase_key: str
    private_key: str
    wallet_address: str
    api_key: str
    api_secret: str
    api_passphrase: str
    signature_type: int
    clob_host: str
    gamma_url: str
    rtds_url: str
    polygon_rpc_url: str
    request_timeout_sec: float
    resolution_mode: str
    resolution_timeout_sec: float
    bankroll: float
    position_size: float
    sizing: str
    confirm_on_book: bool
    balance_poll_sec: float

    @property
    def has_api_creds(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_passphrase)


def load_settings(env_file: str | None = ENV_FILE) -> Settings:
    if env_file:
        load_dotenv(os.path.expanduser(env_file))
    return Settings(
        profile=_env_str("BOT_PROFILE", "b5-5m").lower(),
        dry_run=_env_bool("DRY_RUN", True),
        data_dir=_env_str("DATA_DIR", "./data"),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        tick_interval_sec=_env_float("TICK_INTERVAL_SEC", 1.0, min_value=0.2),
        status_every_ticks=_env_int("STATUS_EVERY_TICKS", 30, min_value=1),
        config_refresh_sec=_env_float("CONFIG_REFRESH_SEC", 300.0, min_value=5.0),
        store_backend=_env_str("STORE_BACKEND", "local").lower(),
        supabase_url=_env_str("SUPABASE_URL"),
        supabase_key=_env_str("SUPABASE_KEY") or _env_str("SUPABASE_SERVICE_ROLE_KEY"),
        private_key=_env_str("POLY_PRIVATE_KEY") or _env_str("PRIVATE_KEY"),
        wallet_address=_env_str("POLY_ADDRESS") or _env_str("ADDRESS"),
        api_key=_env_str("POLY_API_KEY"),
        api_secret=_env_str("POLY_API_SECRET"),
        api_passphrase=_env_str("POLY_API_PASSPHRASE"),
        signature_type=_env_int("POLY_SIGNATURE_TYPE", 0, min_value=0),
        clob_host=_env_str("CLOB_HOST", "https://clob.polymarket.com"),
        gamma_url=_env_str("GAMMA_URL", "https://gamma-api.polymarket.com"),
        rtds_url=_env_str("RTDS_URL", "wss://ws-live-data.polymarket.com"),
        polygon_rpc_url=_env_str("POLYGON_RPC_URL", "https://polygon-rpc.com"),
        request_timeout_sec=_env_float("REQUEST_TIMEOUT_SEC", 8.0, min_value=1.0),
        resolution_mode=_env_str("RESOLUTION_MODE", "price").lower(),
        resolution_timeout_sec=_env_float("RESOLUTION_TIMEOUT_SEC", 900.0, min_value=0.0),
        bankroll=_env_float("BANKROLL", 100.0, min_value=0.0),
        position_size=_env_float("POSITION_SIZE", 0.0, min_value=0.0),
        sizing=_env_str("SIZING_MODE", "fixed").lower(),
        confirm_on_book=_env_bool("CONFIRM_ON_BOOK", True),
        balance_poll_sec=_env_float("BALANCE_POLL_SEC", 900.0, min_value=30.0),
    )
