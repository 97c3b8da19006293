"""Append-only session transcript and its on-disk JSON snapshot."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

from callcoach.events import PersistenceError
from callcoach.models import TranscriptEntry

logger = logging.getLogger(__name__)


class TranscriptLedger:
    """Ordered, append-only list of TranscriptEntry for one session."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._entries: List[TranscriptEntry] = []
        self.writes = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple:
        return tuple(self._entries)

    def extend(self, entries: Iterable[TranscriptEntry]) -> int:
        added = list(entries)
        self._entries.extend(added)
        return len(added)

    def window(self, size: Optional[int] = None) -> List[TranscriptEntry]:
        """The trailing `size` entries; the whole ledger when size is None or <= 0."""
        if not size or size <= 0:
            return list(self._entries)
        return self._entries[-size:]

    def to_json(self) -> str:
        return json.dumps([e.to_dict() for e in self._entries], indent=2, ensure_ascii=False)

    def save(self) -> Path:
        """Overwrite the snapshot file with the full ledger.

        Written to a sibling temp file and renamed into place, so a crash
        mid-write leaves the previous snapshot intact.
        """
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(self.to_json() + "\n", encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise PersistenceError(f"failed to save transcript to {self.path}: {e}") from e
        self.writes += 1
        logger.debug("saved %d entries to %s", len(self._entries), self.path)
        return self.path
