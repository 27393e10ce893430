"""Configuration module for pi-memory."""

from pi_memory.config.loader import get_config_path, load_config
from pi_memory.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
