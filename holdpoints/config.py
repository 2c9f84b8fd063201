"""
Settings read from the environment (.env.local / .env via python-dotenv)
"""

import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .models import RuleConfig

DEFAULT_EXPLORER = "https://hyperliquid.cloud.blockscout.com/api"
DEFAULT_START_AT = "2025-08-18T10:00:00Z"  # 06:00 US-Eastern

STRATEGIES = ("indexer-asc", "indexer-desc", "raw-logs", "indexer-desc+raw-logs")
LOG_SOURCES = ("explorer", "rpc")

_CONTRACT_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def parse_iso(value):
    """ISO-8601 -> unix seconds; a missing offset is taken as UTC"""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError as e:
        raise ConfigError(f"START_AT is not an ISO-8601 timestamp: {value!r}") from e
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def _int(env, name, default=None, minimum=None):
    raw = env.get(name, "")
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float(env, name, default, minimum=0.0):
    raw = env.get(name, "")
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = float(str(raw).strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _bool(env, name, default):
    raw = env.get(name, "")
    if raw is None or str(raw).strip() == "":
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    contract: str
    explorer_api_base: str = DEFAULT_EXPLORER
    explorer_api_key: str = ""
    start_at: str = DEFAULT_START_AT
    start_epoch: int = 0
    window_seconds: int = 6 * 60 * 60
    points_per_window: int = 10
    total_supply: Optional[int] = None
    page_size: int = 1000
    rpc_url: str = ""
    rpc_start_block: int = 0
    start_block: int = 0
    scan_chunk: int = 3000
    scan_concurrency: int = 4
    max_retries: int = 6
    backoff_base: float = 0.3
    backoff_max: float = 8.0
    request_timeout: float = 30.0
    strategy: str = "raw-logs"
    log_source: str = "explorer"
    strict_backfill: bool = True
    output_path: str = "public/leaderboard.json"
    log_level: str = "INFO"

    def rule(self):
        return RuleConfig(
            start_epoch=self.start_epoch,
            window_seconds=self.window_seconds,
            points_per_window=self.points_per_window,
            target_supply=self.total_supply,
        )


def settings_from_env(env):
    contract = (env.get("NFT_CONTRACT") or env.get("SPAZIO_CONTRACT") or "").strip()
    if not contract:
        raise ConfigError("Missing NFT_CONTRACT (contract address) in environment")
    if not _CONTRACT_RE.match(contract):
        raise ConfigError(f"NFT_CONTRACT is not a 0x-prefixed 40 hex digit address: {contract!r}")

    start_at = (env.get("START_AT") or DEFAULT_START_AT).strip()
    window_hours = _float(env, "WINDOW_HOURS", 6.0)
    window_seconds = int(round(window_hours * 3600))
    if window_seconds <= 0:
        raise ConfigError("WINDOW_HOURS must be greater than zero")

    strategy = (env.get("DISCOVERY_STRATEGY") or "raw-logs").strip().lower()
    if strategy not in STRATEGIES:
        raise ConfigError(f"DISCOVERY_STRATEGY must be one of {', '.join(STRATEGIES)}, got {strategy!r}")

    rpc_url = (env.get("RPC_URL") or "").strip()
    log_source = (env.get("LOG_SOURCE") or ("rpc" if rpc_url else "explorer")).strip().lower()
    if log_source not in LOG_SOURCES:
        raise ConfigError(f"LOG_SOURCE must be one of {', '.join(LOG_SOURCES)}, got {log_source!r}")
    if log_source == "rpc" and not rpc_url:
        raise ConfigError("LOG_SOURCE=rpc needs RPC_URL")

    total_supply = _int(env, "TOTAL_SUPPLY", None, minimum=1)
    if strategy.startswith("indexer-desc") and total_supply is None:
        raise ConfigError(f"TOTAL_SUPPLY is required for DISCOVERY_STRATEGY={strategy}")

    return Settings(
        contract=contract.lower(),
        explorer_api_base=(env.get("EXPLORER_API_BASE") or DEFAULT_EXPLORER).strip(),
        explorer_api_key=(env.get("EXPLORER_API_KEY") or "").strip(),
        start_at=start_at,
        start_epoch=parse_iso(start_at),
        window_seconds=window_seconds,
        points_per_window=_int(env, "POINTS_PER_WINDOW", 10, minimum=0),
        total_supply=total_supply,
        page_size=_int(env, "PAGE_SIZE", 1000, minimum=1),
        rpc_url=rpc_url,
        rpc_start_block=_int(env, "RPC_START_BLOCK", 0, minimum=0),
        start_block=_int(env, "START_BLOCK", 0, minimum=0),
        scan_chunk=_int(env, "SCAN_CHUNK", 3000, minimum=1),
        scan_concurrency=_int(env, "SCAN_CONCURRENCY", 4, minimum=1),
        max_retries=_int(env, "MAX_RETRIES", 6, minimum=0),
        backoff_base=_float(env, "BACKOFF_BASE", 0.3),
        backoff_max=_float(env, "BACKOFF_MAX", 8.0),
        request_timeout=_float(env, "REQUEST_TIMEOUT", 30.0, minimum=1.0),
        strategy=strategy,
        log_source=log_source,
        strict_backfill=_bool(env, "STRICT_BACKFILL", True),
        output_path=(env.get("OUTPUT_PATH") or "public/leaderboard.json").strip(),
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
    )


def load_settings(env_file=None):
    """Load dotenv files (never overriding exported variables) and validate"""
    if env_file:
        if not os.path.exists(env_file):
            raise ConfigError(f"env file not found: {env_file}")
        load_dotenv(env_file)
    else:
        load_dotenv(".env.local")
        load_dotenv(".env")
    return settings_from_env(os.environ)
