"""
Configuration management for assistdesk.

This module handles loading, validating, and saving configuration settings,
as well as encrypted storage of the chat service API key.
"""

from assistdesk.config.credentials import (
    ApiKeyStore,
    CredentialError,
)
from assistdesk.config.settings import (
    BackupConfig,
    ConfigurationError,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    # Settings
    "Settings",
    "BackupConfig",
    "load_config",
    "save_config",
    "ConfigurationError",
    # Credentials
    "ApiKeyStore",
    "CredentialError",
]
