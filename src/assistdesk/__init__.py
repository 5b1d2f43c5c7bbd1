"""
assistdesk - desktop assistant history with portable backups

assistdesk keeps the chat assistants ("agents") of a desktop AI client, their
title bar settings and the files attached to them, and moves that state
between machines.

Key Features:
    - JSON history store with an in-memory mirror
    - Attachment files kept under one root directory
    - Full and per-agent export into a single ZIP archive
    - Import as full replace (with one backup generation) or append
    - Attachment paths made portable across OS user accounts
    - API key stored encrypted at rest
"""

__version__ = "0.1.0"

from assistdesk.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
