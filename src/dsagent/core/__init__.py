"""DSAgent core modules."""

from dsagent.core.config import load_config, read_config_file, save_config, get_config_path

__all__ = ["load_config", "read_config_file", "save_config", "get_config_path"]
