"""
Snapshot slot storage for the reference backend: an in-memory test double and
a directory of JSON files.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol


class SnapshotStore(Protocol):
    """Named slots each holding one JSON-serializable mapping."""

    def load(self, slot: str) -> Optional[dict]:
        ...

    def save(self, slot: str, payload: dict) -> None:
        ...

    def delete(self, slot: str) -> None:
        ...


@dataclass
class InMemorySnapshotStore:
    """Test double for snapshot persistence."""

    slots: dict = None

    def __post_init__(self):
        if self.slots is None:
            self.slots = {}

    def load(self, slot: str) -> Optional[dict]:
        stored = self.slots.get(slot)
        if stored is None:
            return None
        return json.loads(stored)

    def save(self, slot: str, payload: dict) -> None:
        # Keep the serialized text to mimic a real write.
        self.slots[slot] = json.dumps(payload, default=str)

    def delete(self, slot: str) -> None:
        self.slots.pop(slot, None)


@dataclass
class FileSnapshotStore:
    """
    One ``<slot>.json`` file per slot under ``directory``.
    """

    directory: str

    def __post_init__(self):
        self._root = Path(self.directory)
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, slot: str) -> Path:
        return self._root / f"{slot}.json"

    def load(self, slot: str) -> Optional[dict]:
        path = self._path(slot)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, slot: str, payload: dict) -> None:
        body = json.dumps(payload, default=str)
        fd, tmp_path = tempfile.mkstemp(dir=self._root, prefix=f".{slot}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
            os.replace(tmp_path, self._path(slot))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete(self, slot: str) -> None:
        path = self._path(slot)
        if path.exists():
            path.unlink()
