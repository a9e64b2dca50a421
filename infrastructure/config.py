"""
PRIVDAG CONFIG - TOML Configuration

Configuration is loaded once from config/privdag.toml (or the file named by
the PRIVDAG_CONFIG environment variable) and converted into a typed
AppConfig. Missing sections fall back to defaults; a missing or unreadable
file warns and yields the all-default config.

Usage:
    from infrastructure.config import get_config

    config = get_config()
    config.schema.supported_versions   # ["1.0.0"]
    config.bounds.max_x                # 10000.0
"""
import msgspec
import logging
import os
import tomllib
import warnings
from typing import Optional, Dict, Any, List
from pathlib import Path

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "privdag.toml"
CONFIG_ENV_VAR = "PRIVDAG_CONFIG"


# =============================================================================
# CONFIG STRUCTS
# =============================================================================

class SchemaConfig(msgspec.Struct, kw_only=True):
    supported_versions: List[str] = msgspec.field(default_factory=lambda: ["1.0.0"])
    current_version: str = "1.0.0"


class BoundsConfig(msgspec.Struct, kw_only=True):
    """Legal area for element positions."""
    min_x: float = 0.0
    min_y: float = 0.0
    max_x: float = 10000.0
    max_y: float = 10000.0


class LayoutConfig(msgspec.Struct, kw_only=True):
    data_resource_top_height: float = 100.0
    export_task_bottom_height: float = 100.0
    default_node_width: float = 160.0
    default_node_height: float = 80.0
    node_spacing: float = 40.0
    swimlane_spacing: float = 20.0
    swimlane_label_width: float = 150.0


class LoggingConfig(msgspec.Struct, kw_only=True):
    level: str = "INFO"
    mutation_file_log: bool = False
    mutation_log_path: str = "./workspace/logs"
    mutation_buffer_size: int = 10000


class AppConfig(msgspec.Struct, kw_only=True):
    schema: SchemaConfig = msgspec.field(default_factory=SchemaConfig)
    bounds: BoundsConfig = msgspec.field(default_factory=BoundsConfig)
    layout: LayoutConfig = msgspec.field(default_factory=LayoutConfig)
    logging: LoggingConfig = msgspec.field(default_factory=LoggingConfig)


# =============================================================================
# LOADING
# =============================================================================

def load_toml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load raw configuration sections from TOML.

    Args:
        path: Explicit file. Defaults to $PRIVDAG_CONFIG, then config/privdag.toml

    Returns:
        Dict with all configuration sections (empty on failure)
    """
    if path is None:
        path = Path(os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH))

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        warnings.warn(f"Failed to load config from TOML: {e}")
        return {}


def build_config(raw: Dict[str, Any]) -> AppConfig:
    """Convert raw sections into an AppConfig. Invalid content warns and uses defaults."""
    try:
        return msgspec.convert(raw, AppConfig)
    except msgspec.ValidationError as e:
        warnings.warn(f"Invalid configuration, using defaults: {e}")
        return AppConfig()


def configure_logging(config: AppConfig) -> None:
    """Apply the configured level to the privdag.* loggers."""
    level = getattr(logging, config.logging.level.upper(), logging.INFO)
    logging.getLogger("privdag").setLevel(level)


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get (loading on first use) the process-wide configuration."""
    global _config
    if _config is None:
        _config = build_config(load_toml_config())
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace the process-wide configuration (None forces a reload)."""
    global _config
    _config = config
