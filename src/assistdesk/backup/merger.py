"""
Append-mode import: merge imported agents into the existing store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from assistdesk.storage.history_store import HistoryStore
from assistdesk.storage.models import AgentRecord, parse_snapshot

logger = logging.getLogger(__name__)


class IdAllocator:
    """
    Hands out agent ids that are not yet in use.

    Ids are allocated above the highest id seen so far, so every id returned
    is distinct from all known ids and from every earlier allocation.
    """

    def __init__(self, used: Iterable[int] = ()) -> None:
        self._used = set(used)
        self._next = max(self._used, default=0) + 1

    def claim(self, agent_id: int) -> bool:
        """Mark agent_id as used. Returns False if it was already taken."""
        if agent_id in self._used:
            return False
        self._used.add(agent_id)
        self._next = max(self._next, agent_id + 1)
        return True

    def allocate(self) -> int:
        agent_id = self._next
        self._used.add(agent_id)
        self._next += 1
        return agent_id


@dataclass
class MergeResult:
    """
    Result of an append import.

    Attributes:
        added: Number of imported agents appended.
        remapped: Original id -> new id for agents whose id collided.
        total: Number of agents in the store after the merge.
    """

    added: int = 0
    remapped: dict[int, int] = field(default_factory=dict)
    total: int = 0


class RecordMerger:
    """
    Appends imported agents to the store and merges title settings.

    Existing agents keep their ids and order. Imported agents follow in
    their own order; any whose id is already taken gets a fresh id.
    Title settings merge key by key with imported keys winning.
    """

    def __init__(self, store: HistoryStore) -> None:
        self.store = store

    def merge(self, config_text: str) -> MergeResult:
        """
        Merge an imported payload into the store and persist it.

        Args:
            config_text: Detokenized config JSON.

        Returns:
            MergeResult describing what was added.

        Raises:
            MalformedPayload: If config_text is not a valid snapshot.
            FileSystemError: If the store cannot be written.
        """
        imported = parse_snapshot(config_text)

        with self.store.lock:
            data = self.store.data
            existing = self.store.snapshot()

            merged_agents, remapped = self.merge_agents(existing.agents, imported.agents)
            data["agents"] = [agent.to_dict() for agent in merged_agents]

            if imported.title_settings is not None:
                data["titleSettings"] = self.merge_title_settings(
                    data.get("titleSettings"), imported.title_settings.to_dict()
                )

            self.store.save(data)

        for old_id, new_id in remapped.items():
            logger.info(f"Imported agent id {old_id} collided, reassigned to {new_id}")
        logger.info(f"Appended {len(imported.agents)} agents ({len(merged_agents)} total)")

        return MergeResult(
            added=len(imported.agents),
            remapped=remapped,
            total=len(merged_agents),
        )

    @staticmethod
    def merge_agents(
        existing: Iterable[AgentRecord],
        imported: Iterable[AgentRecord],
    ) -> tuple[list[AgentRecord], dict[int, int]]:
        """
        Concatenate existing and imported agents with unique ids.

        Returns:
            The merged list and a map of reassigned ids.
        """
        merged = list(existing)
        allocator = IdAllocator(agent.id for agent in merged)
        remapped: dict[int, int] = {}

        for agent in imported:
            if not allocator.claim(agent.id):
                new_id = allocator.allocate()
                remapped[agent.id] = new_id
                agent = replace(agent, id=new_id)
            merged.append(agent)

        return merged, remapped

    @staticmethod
    def merge_title_settings(
        existing: dict[str, Any] | None,
        imported: dict[str, Any],
    ) -> dict[str, Any]:
        """Shallow merge: imported keys override, existing-only keys remain."""
        merged = dict(existing or {})
        merged.update(imported)
        return merged
