"""Per-user cache of the files toggled into the query context."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def valid_file_ids(file_ids: Iterable[str]) -> list[str]:
    """Keep only well-formed file ids (UUIDs), preserving order."""
    return [f for f in file_ids if isinstance(f, str) and _UUID_RE.match(f)]


@dataclass
class ToggledFilesCache:
    """Toggled file ids keyed by user id.

    Owned by whoever constructs it and passed in explicitly; entries are
    replaced on ``update()`` and dropped on ``invalidate()``.
    """

    _files: dict[str, list[str]] = field(default_factory=dict)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._files

    def get(self, user_id: str) -> list[str]:
        return list(self._files.get(user_id, []))

    def update(self, user_id: str, file_ids: Iterable[str]) -> list[str]:
        """Replace the user's toggled files. Returns the ids actually kept."""
        file_ids = list(file_ids)
        kept = valid_file_ids(file_ids)
        if len(kept) != len(file_ids):
            logger.warning(
                "Dropped %d invalid file ids for user %s",
                len(file_ids) - len(kept),
                user_id,
            )
        self._files[user_id] = list(dict.fromkeys(kept))
        return self.get(user_id)

    def toggle(self, user_id: str, file_id: str) -> bool:
        """Flip one file. Returns True if it is now toggled on."""
        current = self.get(user_id)
        if file_id in current:
            current.remove(file_id)
            self._files[user_id] = current
            return False
        self.update(user_id, [*current, file_id])
        return file_id in self._files[user_id]

    def invalidate(self, user_id: str | None = None) -> None:
        """Forget one user's entry, or everything."""
        if user_id is None:
            self._files.clear()
        else:
            self._files.pop(user_id, None)
