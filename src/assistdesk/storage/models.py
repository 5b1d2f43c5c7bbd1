"""
Data models for the persisted assistant history.

This module defines the snapshot types that move between the history store,
the export path and the import path.

Schema Design Decisions:
    - Snapshots are frozen dataclasses; transforms return new instances
    - Field names are snake_case in Python and camelCase on the wire, matching
      the JSON the desktop UI writes
    - Conversation messages and API configs are opaque JSON objects; only their
      container shape is validated
    - Keys the model does not know are kept in ``extras`` and written back
      unchanged, so a round trip never drops data
    - Shape errors are rejected at ``from_dict`` with MalformedPayload instead
      of being patched over later
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from assistdesk.errors import MalformedPayload

AGENT_KEYS = {
    "id",
    "customTitle",
    "systemPrompt",
    "messages",
    "postMessages",
    "createdAt",
    "inputMessage",
    "agentFilePaths",
    "agentFilePath",
    "assistantSummary",
    "apiConfigs",
    "enableAPICall",
}

TITLE_KEYS = {"segments", "fontFamily", "backgroundImagePath"}


def _expect(value: Any, expected: type | tuple[type, ...], where: str) -> Any:
    """Return value if it has the expected JSON type, else raise MalformedPayload."""
    # bool is a subclass of int; JSON true/false is never a valid id or count
    if isinstance(value, bool) and bool not in (
        expected if isinstance(expected, tuple) else (expected,)
    ):
        raise MalformedPayload(f"{where} has invalid type bool")
    if not isinstance(value, expected):
        raise MalformedPayload(f"{where} has invalid type {type(value).__name__}")
    return value


def _object_list(value: Any, where: str) -> tuple[dict[str, Any], ...]:
    items = _expect(value, list, where)
    for index, item in enumerate(items):
        _expect(item, dict, f"{where}[{index}]")
    return tuple(copy.deepcopy(items))


def _string_list(value: Any, where: str) -> tuple[str, ...]:
    items = _expect(value, list, where)
    for index, item in enumerate(items):
        _expect(item, str, f"{where}[{index}]")
    return tuple(items)


@dataclass(frozen=True)
class AgentRecord:
    """
    One chat assistant ("agent") as persisted by the desktop UI.

    Attributes:
        id: Integer identifier, unique within a store.
        custom_title: Display title.
        system_prompt: System prompt sent with every request.
        messages: Ordered conversation history shown in the UI.
        post_messages: Pending outbound message buffer sent to the model.
        created_at: Creation timestamp as written by the UI.
        input_message: Unsent text in the input box.
        agent_file_paths: Absolute paths of attached files.
        assistant_summary: Optional one-line summary used by auto-assist.
        api_configs: Optional external API definitions (opaque objects).
        enable_api_call: Whether the agent may call its external APIs.
        extras: Unrecognized keys, preserved verbatim.
    """

    id: int
    custom_title: str = ""
    system_prompt: str = ""
    messages: tuple[dict[str, Any], ...] = ()
    post_messages: tuple[dict[str, Any], ...] = ()
    created_at: str = ""
    input_message: str = ""
    agent_file_paths: tuple[str, ...] = ()
    assistant_summary: str | None = None
    api_configs: tuple[dict[str, Any], ...] | None = None
    enable_api_call: bool = True
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase JSON form."""
        data: dict[str, Any] = copy.deepcopy(self.extras)
        data.update(
            {
                "id": self.id,
                "customTitle": self.custom_title,
                "systemPrompt": self.system_prompt,
                "messages": copy.deepcopy(list(self.messages)),
                "postMessages": copy.deepcopy(list(self.post_messages)),
                "createdAt": self.created_at,
                "inputMessage": self.input_message,
                "agentFilePaths": list(self.agent_file_paths),
                "enableAPICall": self.enable_api_call,
            }
        )
        if self.assistant_summary is not None:
            data["assistantSummary"] = self.assistant_summary
        if self.api_configs is not None:
            data["apiConfigs"] = copy.deepcopy(list(self.api_configs))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentRecord:
        """
        Create from the JSON form, validating every known field.

        Missing list fields default to empty lists. The legacy single-file
        ``agentFilePath`` key is folded into ``agentFilePaths``.

        Raises:
            MalformedPayload: If the record or one of its fields has the
                wrong shape.
        """
        _expect(data, dict, "agent")
        if "id" not in data:
            raise MalformedPayload("agent is missing 'id'")
        agent_id = _expect(data["id"], int, "agent.id")
        where = f"agent {agent_id}"

        paths = list(_string_list(data.get("agentFilePaths", []), f"{where}.agentFilePaths"))
        legacy_path = data.get("agentFilePath")
        if legacy_path is not None:
            _expect(legacy_path, str, f"{where}.agentFilePath")
            if legacy_path and legacy_path not in paths:
                paths.append(legacy_path)

        summary = data.get("assistantSummary")
        if summary is not None:
            _expect(summary, str, f"{where}.assistantSummary")

        api_configs = data.get("apiConfigs")
        if api_configs is not None:
            api_configs = _object_list(api_configs, f"{where}.apiConfigs")

        enable_api_call = data.get("enableAPICall")
        if enable_api_call is None:
            enable_api_call = True

        return cls(
            id=agent_id,
            custom_title=_expect(data.get("customTitle", ""), str, f"{where}.customTitle"),
            system_prompt=_expect(data.get("systemPrompt", ""), str, f"{where}.systemPrompt"),
            messages=_object_list(data.get("messages", []), f"{where}.messages"),
            post_messages=_object_list(data.get("postMessages", []), f"{where}.postMessages"),
            created_at=_expect(data.get("createdAt", ""), str, f"{where}.createdAt"),
            input_message=_expect(data.get("inputMessage", ""), str, f"{where}.inputMessage"),
            agent_file_paths=tuple(paths),
            assistant_summary=summary,
            api_configs=api_configs,
            enable_api_call=_expect(enable_api_call, bool, f"{where}.enableAPICall"),
            extras={k: copy.deepcopy(v) for k, v in data.items() if k not in AGENT_KEYS},
        )

    def without_history(self) -> AgentRecord:
        """Return a copy with the conversation and outbound buffer emptied."""
        return replace(self, messages=(), post_messages=())


@dataclass(frozen=True)
class TitleSegment:
    """A run of title text drawn in one color."""

    text: str
    color: str

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "color": self.color}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TitleSegment:
        _expect(data, dict, "titleSettings.segments[]")
        return cls(
            text=_expect(data.get("text", ""), str, "titleSettings.segment.text"),
            color=_expect(data.get("color", ""), str, "titleSettings.segment.color"),
        )


@dataclass(frozen=True)
class TitleSettings:
    """
    Global title bar settings.

    Attributes:
        segments: Ordered colored text segments.
        font_family: Font selector.
        background_image_path: Optional absolute path to a background image.
        extras: Unrecognized keys, preserved verbatim.
    """

    segments: tuple[TitleSegment, ...] = ()
    font_family: str = ""
    background_image_path: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase JSON form."""
        data: dict[str, Any] = copy.deepcopy(self.extras)
        data["segments"] = [segment.to_dict() for segment in self.segments]
        data["fontFamily"] = self.font_family
        if self.background_image_path is not None:
            data["backgroundImagePath"] = self.background_image_path
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TitleSettings:
        """Create from the JSON form, rejecting wrongly typed fields."""
        _expect(data, dict, "titleSettings")
        segments = _expect(data.get("segments", []), list, "titleSettings.segments")
        background = data.get("backgroundImagePath")
        if background is not None:
            _expect(background, str, "titleSettings.backgroundImagePath")
        return cls(
            segments=tuple(TitleSegment.from_dict(segment) for segment in segments),
            font_family=_expect(data.get("fontFamily", ""), str, "titleSettings.fontFamily"),
            background_image_path=background,
            extras={k: copy.deepcopy(v) for k, v in data.items() if k not in TITLE_KEYS},
        )


@dataclass(frozen=True)
class StoreSnapshot:
    """
    The full persisted state handed to export and produced by import.

    Agent order is insertion order. Partial exports carry no title settings,
    which is represented by ``title_settings=None`` and an absent
    ``titleSettings`` key on the wire.
    """

    agents: tuple[AgentRecord, ...] = ()
    title_settings: TitleSettings | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON form written to disk and into archives."""
        data: dict[str, Any] = {"agents": [agent.to_dict() for agent in self.agents]}
        if self.title_settings is not None:
            data["titleSettings"] = self.title_settings.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> StoreSnapshot:
        """
        Create from parsed JSON.

        Raises:
            MalformedPayload: If the payload is not an object, has no
                ``agents`` list, or contains a malformed record.
        """
        _expect(data, dict, "payload")
        if "agents" not in data:
            raise MalformedPayload("payload is missing 'agents'")
        agents = _expect(data["agents"], list, "agents")
        title = data.get("titleSettings")
        return cls(
            agents=tuple(AgentRecord.from_dict(agent) for agent in agents),
            title_settings=TitleSettings.from_dict(title) if title is not None else None,
        )

    def agent_ids(self) -> list[int]:
        return [agent.id for agent in self.agents]

    def ensure_unique_ids(self) -> None:
        """Raise MalformedPayload if two agents share an id."""
        seen: set[int] = set()
        for agent_id in self.agent_ids():
            if agent_id in seen:
                raise MalformedPayload(f"duplicate agent id: {agent_id}")
            seen.add(agent_id)

    def select(self, agent_ids: Iterable[int]) -> StoreSnapshot:
        """Return the agents whose id is in agent_ids, without title settings."""
        wanted = set(agent_ids)
        return StoreSnapshot(
            agents=tuple(agent for agent in self.agents if agent.id in wanted),
            title_settings=None,
        )


def parse_snapshot(text: str) -> StoreSnapshot:
    """
    Parse config text into a validated snapshot.

    Raises:
        MalformedPayload: If the text is not JSON or has the wrong shape.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedPayload(f"Invalid JSON: {e}") from e
    return StoreSnapshot.from_dict(data)


def dump_snapshot(snapshot: StoreSnapshot) -> str:
    """Serialize a snapshot as pretty-printed JSON."""
    return json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False)
