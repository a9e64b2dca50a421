"""
PRIVDAG INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML configuration loaded into typed msgspec structs
- logger: Mutation event logging (ring buffer + optional JSONL file)
"""

from infrastructure.config import AppConfig, get_config, set_config
from infrastructure.logger import MutationLogger, get_logger, configure_logger

__all__ = [
    "AppConfig",
    "get_config",
    "set_config",
    "MutationLogger",
    "get_logger",
    "configure_logger",
]
