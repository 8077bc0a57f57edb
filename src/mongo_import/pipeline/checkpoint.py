"""
Per-collection cursor storage.

The default in-memory store lives for a single run, so every run scans from
the beginning. `FileCheckpointStore` keeps cursors in a JSON file so a later
run resumes after the last `_id` the sink accepted.
"""

from __future__ import annotations

import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from bson import json_util
from loguru import logger


@dataclass(frozen=True)
class Checkpoint:
    last_id: Any
    count: int = 0


class CheckpointStore(ABC):
    @abstractmethod
    def load(self, namespace: str) -> Optional[Checkpoint]: ...

    @abstractmethod
    def save(self, namespace: str, checkpoint: Checkpoint) -> None: ...


class InMemoryCheckpointStore(CheckpointStore):
    def __init__(self) -> None:
        self._data: dict[str, Checkpoint] = {}
        self._lock = threading.Lock()

    def load(self, namespace: str) -> Optional[Checkpoint]:
        with self._lock:
            return self._data.get(namespace)

    def save(self, namespace: str, checkpoint: Checkpoint) -> None:
        with self._lock:
            self._data[namespace] = checkpoint


class FileCheckpointStore(CheckpointStore):
    """JSON file keyed by namespace. `_id` values round-trip as extended JSON."""

    def __init__(self, path: str | Path, *, mkdirs: bool = True) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        if mkdirs:
            self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        with open(self._path, "r", encoding="utf-8") as f:
            text = f.read()
        return json_util.loads(text) if text.strip() else {}

    def load(self, namespace: str) -> Optional[Checkpoint]:
        with self._lock:
            entry = self._read().get(namespace)
        if entry is None:
            return None
        return Checkpoint(last_id=entry["last_id"], count=int(entry.get("count", 0)))

    def save(self, namespace: str, checkpoint: Checkpoint) -> None:
        with self._lock:
            data = self._read()
            data[namespace] = {"last_id": checkpoint.last_id, "count": checkpoint.count}
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(json_util.dumps(data, json_options=json_util.CANONICAL_JSON_OPTIONS))
            os.replace(tmp, self._path)
        logger.debug(f"Checkpoint saved: {namespace} -> {checkpoint.last_id} ({checkpoint.count})")

    def clear(self) -> None:
        with self._lock:
            if self._path.exists():
                self._path.unlink()
