"""Configuration management for ShowImages."""

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

CONFIG_ENV_VAR = "SHOWIMAGES_CONFIG"


class CustomStrategyConfig(BaseModel):
    """A user-defined mirror strategy (see PrefixStrategy)."""

    name: str
    prefix: str
    tag: Optional[str] = None
    strip_scheme: bool = True
    encode: bool = False


class AcquisitionConfig(BaseModel):
    """Acquisition engine configuration."""

    load_timeout_ms: int = 15000  # <= 0 disables the per-attempt timeout
    load_mode: str = "serial"
    strategies: List[str] = Field(default_factory=lambda: [
        "FileStack", "SteemitImages", "DDG", "Pocket"
    ])
    custom_strategies: List[CustomStrategyConfig] = Field(default_factory=list)
    max_concurrency: int = 8

    @field_validator('load_mode', mode='before')
    @classmethod
    def normalize_load_mode(cls, v):
        # 's'/'p' shorthands are accepted, as are any casing variants
        mode = str(v or 'serial').strip().lower()
        if mode.startswith('s'):
            return 'serial'
        if mode.startswith('p'):
            return 'parallel'
        raise ValueError(f"Unknown load mode: {v!r} (expected 'serial' or 'parallel')")

    @field_validator('max_concurrency')
    @classmethod
    def check_concurrency(cls, v):
        if v < 1:
            raise ValueError("max_concurrency must be at least 1")
        return v


class HttpConfig(BaseModel):
    """HTTP fetcher configuration."""

    timeout_connect_s: int = 10
    timeout_read_s: int = 30
    http2: bool = False
    max_bytes: int = 50 * 1024 * 1024
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator('headers', mode='before')
    @classmethod
    def set_default_headers(cls, v):
        if not v:
            return {
                "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 showimages/0.1",
                "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
                "Cache-Control": "no-cache",
                "Pragma": "no-cache",
                "Sec-Fetch-Dest": "image",
                "Sec-Fetch-Mode": "no-cors",
                "Sec-Fetch-Site": "cross-site",
            }
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: Optional[str] = None


class Config(BaseModel):
    """Main configuration."""

    acquisition: AcquisitionConfig = Field(default_factory=AcquisitionConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def default_config_path() -> Path:
    """Return the config path named by the environment, or the per-user default."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return Path.home() / ".showimages" / "showimages.yaml"


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file or create default."""
    load_dotenv()

    if config_path is None:
        config_path = default_config_path()

    config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    return Config(**data)


def save_config(config: Config, config_path: Optional[str] = None) -> None:
    """Save configuration to file."""
    if config_path is None:
        config_path = default_config_path()

    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(exclude_none=True)

    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def get_default_config() -> Config:
    """Get default configuration."""
    return Config()
