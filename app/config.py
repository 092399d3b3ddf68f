"""
Configuration management for the RP wager engine.
Supports config.json with environment variable overrides.
All paths are resolved relative to the project root.
"""

import json
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

load_dotenv()

# Project root directory (parent of 'app' folder)
PROJECT_ROOT = Path(__file__).parent.parent


def get_env(key: str, default: str = None) -> Optional[str]:
    """Get environment variable with optional default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes", "on")


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default


# ==================== Configuration Models ====================

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    name: str = "RP Wager"


class SecurityConfig(BaseModel):
    admin_key: str = "CHANGE_THIS_IN_PRODUCTION_PLEASE"


class EconomyConfig(BaseModel):
    starting_balance: int = 0


class WagerConfig(BaseModel):
    """Jackpot and duel tuning. Keys accept camelCase or snake_case."""

    model_config = ConfigDict(populate_by_name=True)

    jackpot_end_frequency_seconds: float = Field(
        default=14400.0, gt=0, alias="jackpotEndFrequencySeconds"
    )
    jackpot_cooldown_seconds: float = Field(
        default=7200.0, ge=0, alias="jackpotCooldownSeconds"
    )
    minimum_jackpot_entry: int = Field(default=100, gt=0, alias="minimumJackpotEntry")
    maximum_jackpot_entry: int = Field(default=1000, gt=0, alias="maximumJackpotEntry")
    duel_request_duration_seconds: float = Field(
        default=120.0, gt=0, alias="duelRequestDurationSeconds"
    )
    duel_countdown_ticks: int = Field(default=5, ge=1, alias="duelCountdownTicks")
    duel_tick_seconds: float = Field(default=1.0, gt=0, alias="duelTickSeconds")
    winners_page_size: int = Field(default=6, ge=1, alias="winnersPageSize")
    rng_seed: Optional[int] = Field(default=None, alias="rngSeed")

    @model_validator(mode="after")
    def check_entry_bounds(self):
        if self.minimum_jackpot_entry > self.maximum_jackpot_entry:
            raise ValueError(
                "minimumJackpotEntry must not exceed maximumJackpotEntry"
            )
        return self


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_to_file: bool = False
    formatter: str = "color"


class PathsConfig(BaseModel):
    """All paths are relative to PROJECT_ROOT."""
    state_file: str = "data/wager_state.json"
    ledger_database: str = "data/ledger.db"
    log_file: str = "data/app.log"

    def get_state_path(self) -> Path:
        return PROJECT_ROOT / self.state_file

    def get_ledger_path(self) -> Path:
        return PROJECT_ROOT / self.ledger_database

    def get_log_path(self) -> Path:
        return PROJECT_ROOT / self.log_file


class AppConfig(BaseModel):
    """Main application configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    economy: EconomyConfig = Field(default_factory=EconomyConfig)
    wager: WagerConfig = Field(default_factory=WagerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)


# ==================== Configuration Loading ====================

# env var -> key inside the "wager" section
WAGER_ENV_OVERRIDES = {
    "JACKPOT_END_FREQUENCY_SECONDS": ("jackpot_end_frequency_seconds", get_env_float),
    "JACKPOT_COOLDOWN_SECONDS": ("jackpot_cooldown_seconds", get_env_float),
    "MINIMUM_JACKPOT_ENTRY": ("minimum_jackpot_entry", get_env_int),
    "MAXIMUM_JACKPOT_ENTRY": ("maximum_jackpot_entry", get_env_int),
    "DUEL_REQUEST_DURATION_SECONDS": ("duel_request_duration_seconds", get_env_float),
    "RNG_SEED": ("rng_seed", get_env_int),
}

# snake_case spellings of the camelCase keys, so an override replaces
# whichever spelling config.json used
_WAGER_ALIASES = {
    name: field.alias for name, field in WagerConfig.model_fields.items()
}


def load_config(config_path: Path = None) -> AppConfig:
    """
    Load configuration from config.json with environment variable overrides.
    Environment variables take precedence over config.json values.
    """
    if config_path is None:
        config_path = PROJECT_ROOT / "config.json"

    # Start with defaults
    data = {}

    # Load from config.json if it exists
    if config_path.exists():
        with open(config_path, "r") as f:
            data = json.load(f)

    # Apply environment variable overrides
    if get_env("SERVER_HOST"):
        data.setdefault("server", {})["host"] = get_env("SERVER_HOST")
    if get_env("SERVER_PORT"):
        data.setdefault("server", {})["port"] = get_env_int("SERVER_PORT", 8000)
    if get_env("DEBUG"):
        data.setdefault("server", {})["debug"] = get_env_bool("DEBUG")

    if get_env("ADMIN_KEY"):
        data.setdefault("security", {})["admin_key"] = get_env("ADMIN_KEY")

    if get_env("STARTING_BALANCE"):
        data.setdefault("economy", {})["starting_balance"] = get_env_int("STARTING_BALANCE")

    for env_key, (field_name, reader) in WAGER_ENV_OVERRIDES.items():
        if get_env(env_key):
            wager = data.setdefault("wager", {})
            wager.pop(_WAGER_ALIASES.get(field_name), None)
            wager[field_name] = reader(env_key)

    if get_env("STATE_FILE"):
        data.setdefault("paths", {})["state_file"] = get_env("STATE_FILE")
    if get_env("LEDGER_DB_PATH"):
        data.setdefault("paths", {})["ledger_database"] = get_env("LEDGER_DB_PATH")

    if get_env("LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = get_env("LOG_LEVEL")
    if get_env("LOG_TO_FILE"):
        data.setdefault("logging", {})["log_to_file"] = get_env_bool("LOG_TO_FILE")
    if get_env("LOG_FORMATTER"):
        data.setdefault("logging", {})["formatter"] = get_env("LOG_FORMATTER")

    return AppConfig(**data)


# Global config instance
settings = load_config()
