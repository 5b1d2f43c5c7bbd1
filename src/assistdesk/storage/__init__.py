"""
History storage.

This module holds the persisted state of the desktop assistant: a JSON
key-value store for agents and title settings, and the directory of files
attached to agents.

Storage Structure:
    <user_data_dir>/
        history/
            config.json         # agents, titleSettings, other UI keys
            config.json.bak     # previous generation after a full import
        files/
            {attachment files}

Usage:
    from assistdesk.storage import HistoryStore

    store = HistoryStore.for_user_data(user_data_dir)
    agents = store.load_agents()
"""

from assistdesk.storage.attachments import AttachmentStore, is_within, relative_to_root
from assistdesk.storage.history_store import HistoryStore
from assistdesk.storage.models import (
    AgentRecord,
    StoreSnapshot,
    TitleSegment,
    TitleSettings,
    dump_snapshot,
    parse_snapshot,
)

__all__ = [
    # Stores
    "HistoryStore",
    "AttachmentStore",
    "is_within",
    "relative_to_root",
    # Data models
    "AgentRecord",
    "TitleSegment",
    "TitleSettings",
    "StoreSnapshot",
    "parse_snapshot",
    "dump_snapshot",
]
