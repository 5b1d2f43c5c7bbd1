"""
Portable attachment paths.

Attachment paths are absolute and usually contain the OS user name, e.g.
``/home/alice/.assistdesk/data/files/report.pdf``. Before export the
files-root prefix of such paths is rewritten with the user name replaced by
``${USERNAME}``; import rewrites it back with the importing user's name.

Paths that do not start with the files root are foreign and pass through
both directions untouched. They are never relocated.
"""

from __future__ import annotations

import getpass
import re
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from assistdesk.storage.models import StoreSnapshot

USER_TOKEN = "${USERNAME}"

_SEPARATORS = "/\\"
_SPLIT_RE = re.compile(r"([/\\])")


@dataclass(frozen=True)
class Environment:
    """
    Host facts used by tokenization and import staging.

    Attributes:
        user_name: Current OS user name.
        temp_dir: Directory in which staging directories are created.
    """

    user_name: str
    temp_dir: Path

    @classmethod
    def detect(cls, staging_dir: Path | None = None) -> Environment:
        """Read the user name and temp directory from the running OS."""
        return cls(
            user_name=getpass.getuser(),
            temp_dir=Path(staging_dir) if staging_dir else Path(tempfile.gettempdir()),
        )


def _strip_trailing_separator(prefix: str) -> str:
    stripped = prefix.rstrip(_SEPARATORS)
    return stripped or prefix


def _swap_prefix(path: str, old: str, new: str) -> str:
    if path == old:
        return new
    if path.startswith(old) and path[len(old)] in _SEPARATORS:
        return new + path[len(old) :]
    return path


class PathTokenizer:
    """
    Rewrites files-root prefixes in snapshots between local and portable form.

    Both directions are pure: they return new snapshots and never touch the
    filesystem or their argument.

    Attributes:
        local_prefix: The files root as seen by the current user.
        token_prefix: The same root with the user name component replaced
            by USER_TOKEN. Equal to local_prefix when the user name is not a
            component of the root.
    """

    def __init__(self, files_root: Path | str, user_name: str) -> None:
        self.local_prefix = _strip_trailing_separator(str(files_root))
        self.token_prefix = self._tokenize_root(self.local_prefix, user_name)

    @staticmethod
    def _tokenize_root(root: str, user_name: str) -> str:
        if not user_name:
            return root
        parts = _SPLIT_RE.split(root)
        return "".join(USER_TOKEN if part == user_name else part for part in parts)

    def tokenize_path(self, path: str) -> str:
        return _swap_prefix(path, self.local_prefix, self.token_prefix)

    def detokenize_path(self, path: str) -> str:
        return _swap_prefix(path, self.token_prefix, self.local_prefix)

    def tokenize(self, snapshot: StoreSnapshot) -> StoreSnapshot:
        """Return a copy of snapshot with owned paths in portable form."""
        return self._map_paths(snapshot, self.tokenize_path)

    def detokenize(self, snapshot: StoreSnapshot) -> StoreSnapshot:
        """Return a copy of snapshot with portable paths made local."""
        return self._map_paths(snapshot, self.detokenize_path)

    @staticmethod
    def _map_paths(snapshot: StoreSnapshot, convert: Callable[[str], str]) -> StoreSnapshot:
        agents = tuple(
            replace(agent, agent_file_paths=tuple(convert(p) for p in agent.agent_file_paths))
            for agent in snapshot.agents
        )
        title = snapshot.title_settings
        if title is not None and title.background_image_path is not None:
            title = replace(title, background_image_path=convert(title.background_image_path))
        return StoreSnapshot(agents=agents, title_settings=title)
