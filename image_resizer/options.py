"""
Resize policy and run configuration.

The OptionSet is built once from CLI arguments layered over environment
variables and an optional YAML file, then shared read-only by every job.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

from image_resizer.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("resize_config.yaml")
DEFAULT_QUALITY = 92

ENV_LOG_LEVEL = "IMAGE_RESIZER_LOG_LEVEL"
ENV_LOG_DIR = "IMAGE_RESIZER_LOG_DIR"
ENV_THREADS = "IMAGE_RESIZER_THREADS"


def default_thread_count() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class OptionSet:
    side_maximum: int
    quality: int = DEFAULT_QUALITY
    shrink_only: bool = False
    sharpen: bool = True
    chroma_quartered: bool = False
    remain_profile: bool = False
    allow_gif: bool = False
    force_overwrite: bool = False
    ppi: Optional[float] = None
    thread_count: int = 1

    def __post_init__(self):
        if isinstance(self.side_maximum, bool) or not isinstance(self.side_maximum, int):
            raise ConfigurationError(f"side maximum must be an integer, got {self.side_maximum!r}")
        if self.side_maximum < 1:
            raise ConfigurationError("The maximum for image sides must be bigger than 0.")
        if not 1 <= self.quality <= 100:
            raise ConfigurationError(f"The range of quality is from 1 to 100, got {self.quality}.")
        if self.ppi is not None and self.ppi <= 0:
            raise ConfigurationError("PPI must be bigger than 0.")
        if self.thread_count < 1:
            raise ConfigurationError(f"thread count must be at least 1, got {self.thread_count}")

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "OptionSet":
        """Build an OptionSet from a loose mapping, ignoring unknown keys."""
        known = {k: v for k, v in values.items() if k in cls.__dataclass_fields__ and v is not None}
        if "side_maximum" not in known:
            raise ConfigurationError("side maximum is required")
        try:
            return cls(**known)
        except TypeError as e:
            raise ConfigurationError(str(e)) from e


@dataclass(frozen=True)
class RunConfig:
    """Ambient settings that do not influence the pixels."""
    log_level: str = "INFO"
    log_dir: Optional[Path] = None
    log_rotation: str = "10 MB"
    progress: bool = True
    queue_depth: Optional[int] = None
    threads: Optional[int] = None
    quality: int = DEFAULT_QUALITY


def _default_config() -> dict:
    """Default configuration settings"""
    return {
        "quality": DEFAULT_QUALITY,
        "threads": None,
        "log_level": "INFO",
        "log_dir": None,
        "log_rotation": "10 MB",
        "progress": True,
        "queue_depth": None,
    }


def _load_yaml(config_path: Path) -> dict:
    """Load configuration from YAML file"""
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"cannot read config {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"config {config_path} must be a mapping")
    return data


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    return value


def _env_overrides() -> dict:
    overrides: Dict[str, Any] = {}
    if os.getenv(ENV_LOG_LEVEL):
        overrides["log_level"] = os.environ[ENV_LOG_LEVEL]
    if os.getenv(ENV_LOG_DIR):
        overrides["log_dir"] = os.environ[ENV_LOG_DIR]
    if os.getenv(ENV_THREADS):
        try:
            overrides["threads"] = int(os.environ[ENV_THREADS])
        except ValueError as e:
            raise ConfigurationError(f"{ENV_THREADS} must be an integer") from e
    return overrides


def load_run_config(config_path: Optional[Path] = None) -> RunConfig:
    """
    Merge defaults, the YAML file and environment variables.

    An explicit config_path must exist; the default path is optional.
    """
    config = _default_config()

    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"config file not found: {config_path}")
        config.update(_load_yaml(config_path))
    elif DEFAULT_CONFIG_PATH.exists():
        config.update(_load_yaml(DEFAULT_CONFIG_PATH))
        logger.debug(f"Loaded configuration from {DEFAULT_CONFIG_PATH}")

    config.update(_env_overrides())

    unknown = set(config) - set(_default_config())
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

    quality = _as_int("quality", config["quality"])
    if not 1 <= quality <= 100:
        raise ConfigurationError(f"The range of quality is from 1 to 100, got {quality}.")

    queue_depth = config.get("queue_depth")
    if queue_depth is not None:
        queue_depth = _as_int("queue_depth", queue_depth)
        if queue_depth < 1:
            raise ConfigurationError(f"queue_depth must be at least 1, got {queue_depth}")

    # Range check for threads happens in OptionSet, after the CLI had its say
    threads = config.get("threads")
    if threads is not None:
        threads = _as_int("threads", threads)

    log_dir = config.get("log_dir")
    return RunConfig(
        log_level=str(config["log_level"]).upper(),
        log_dir=Path(log_dir) if log_dir else None,
        log_rotation=str(config["log_rotation"]),
        progress=bool(config["progress"]),
        queue_depth=queue_depth,
        threads=threads,
        quality=quality,
    )
