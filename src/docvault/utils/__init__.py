"""
Utility modules for DocVault.
"""

from docvault.utils.config import Config, VaultConfig, load_config
from docvault.utils.logging import get_logger, set_log_level

__all__ = [
    "Config",
    "VaultConfig",
    "load_config",
    "get_logger",
    "set_log_level",
]
