"""
Configuration management for DachsTaler Slots.
Supports config.json with environment variable overrides.
All paths are resolved relative to the project root.
"""

import json
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

# Project root directory (parent of 'dachstaler' folder)
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


# ==================== Configuration Models ====================

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    name: str = "DachsTaler Slots"


class StorageConfig(BaseModel):
    backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = ""
    socket_timeout: float = 5.0
    max_connections: int = 20


class EconomyConfig(BaseModel):
    starting_balance: int = 100
    max_balance: int = 999999999
    base_spin_cost: int = 10
    cooldown_seconds: int = 30
    cooldown_ttl_seconds: int = 60
    bank_start_balance: int = 444444
    daily_amount: int = 50
    daily_boost_amount: int = 250
    low_balance_warning: int = 100
    timezone: str = "Europe/Berlin"


class RetryConfig(BaseModel):
    max_retries: int = 3
    backoff_base_ms: int = 10


class FeaturesConfig(BaseModel):
    debug_pair_username: Optional[str] = None  # Routes one account to the forced-pair grid path
    require_disclaimer: bool = True  # `!slots accept` before the first spin or daily


class RateLimitConfig(BaseModel):
    enabled: bool = True
    command_requests: str = "60/minute"  # For !slots / !shop commands
    api_requests: str = "120/minute"     # For read-only API calls


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_to_file: bool = False
    formatter: str = "color"


class PathsConfig(BaseModel):
    """All paths are relative to PROJECT_ROOT."""
    config_file: str = "config.json"
    log_file: str = "data/app.log"

    def get_config_path(self) -> Path:
        return PROJECT_ROOT / self.config_file

    def get_log_path(self) -> Path:
        return PROJECT_ROOT / self.log_file


class AppConfig(BaseModel):
    """Main application configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    economy: EconomyConfig = Field(default_factory=EconomyConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)


# ==================== Configuration Loading ====================

def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from config.json with environment variable overrides.
    Environment variables take precedence over config.json values.
    """
    if config_path is None:
        config_path = PathsConfig(config_file=get_env("CONFIG_FILE", "config.json")).get_config_path()

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

    if get_env("STORAGE_BACKEND"):
        data.setdefault("storage", {})["backend"] = get_env("STORAGE_BACKEND")
    if get_env("REDIS_URL"):
        data.setdefault("storage", {})["redis_url"] = get_env("REDIS_URL")
    if get_env("REDIS_KEY_PREFIX"):
        data.setdefault("storage", {})["key_prefix"] = get_env("REDIS_KEY_PREFIX")

    if get_env("STARTING_BALANCE"):
        data.setdefault("economy", {})["starting_balance"] = get_env_int("STARTING_BALANCE", 100)
    if get_env("COOLDOWN_SECONDS"):
        data.setdefault("economy", {})["cooldown_seconds"] = get_env_int("COOLDOWN_SECONDS", 30)
    if get_env("GAME_TIMEZONE"):
        data.setdefault("economy", {})["timezone"] = get_env("GAME_TIMEZONE")

    if get_env("MAX_RETRIES"):
        data.setdefault("retry", {})["max_retries"] = get_env_int("MAX_RETRIES", 3)

    if get_env("DEBUG_PAIR_USERNAME"):
        data.setdefault("features", {})["debug_pair_username"] = get_env("DEBUG_PAIR_USERNAME")
    if get_env("REQUIRE_DISCLAIMER"):
        data.setdefault("features", {})["require_disclaimer"] = get_env_bool("REQUIRE_DISCLAIMER", True)

    if get_env("LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = get_env("LOG_LEVEL")
    if get_env("LOG_TO_FILE"):
        data.setdefault("logging", {})["log_to_file"] = get_env_bool("LOG_TO_FILE")
    if get_env("LOG_FORMATTER"):
        data.setdefault("logging", {})["formatter"] = get_env("LOG_FORMATTER")
    if get_env("LOG_FILE"):
        data.setdefault("paths", {})["log_file"] = get_env("LOG_FILE")

    if get_env("RATE_LIMIT_ENABLED"):
        data.setdefault("rate_limit", {})["enabled"] = get_env_bool("RATE_LIMIT_ENABLED", True)
    if get_env("RATE_LIMIT_COMMAND_REQUESTS"):
        data.setdefault("rate_limit", {})["command_requests"] = get_env("RATE_LIMIT_COMMAND_REQUESTS")

    return AppConfig(**data)


# Global config instance
settings = load_config()
