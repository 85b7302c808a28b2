"""Utility modules for the cloud broker."""

from .config import load_config, save_config, save_results, Config
from .log import setup_logging

__all__ = [
    "load_config",
    "save_config",
    "save_results",
    "Config",
    "setup_logging",
]
