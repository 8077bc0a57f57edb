from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..errors import ConfigError


@dataclass(frozen=True)
class Namespace:
    """A `database.collection` pair.

    Splits on the first dot only; collection names may contain dots.
    """

    database: str
    collection: str

    @classmethod
    def parse(cls, value: str) -> "Namespace":
        db, sep, coll = value.strip().partition(".")
        if not sep or not db or not coll:
            raise ConfigError(f"Invalid namespace {value!r}, expected database.collection")
        return cls(db, coll)

    @property
    def full_name(self) -> str:
        return f"{self.database}.{self.collection}"

    @property
    def label(self) -> str:
        """Separator-free form used in topics and the `database` payload field."""
        return self.full_name.replace(".", "_")

    def topic(self, prefix: str) -> str:
        return f"{prefix}_{self.label}"

    def __str__(self) -> str:
        return self.full_name


def parse_namespaces(value: str) -> list[Namespace]:
    """Parse a comma-separated namespace list, ignoring empty entries."""
    namespaces = [Namespace.parse(part) for part in value.split(",") if part.strip()]
    if not namespaces:
        raise ConfigError("No collections configured")
    return namespaces


def _dumps(obj: dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@dataclass(frozen=True)
class Message:
    """One outbound record: topic plus key/value envelopes.

    `namespace`, `source_id` and `offset` locate the document in its
    collection; the publisher uses them to advance the durable cursor once
    the message has reached the sink.
    """

    topic: str
    key: dict[str, Any]
    value: dict[str, Any]
    namespace: str = ""
    source_id: Any = None
    offset: int = 0

    def key_bytes(self) -> bytes:
        return _dumps(self.key)

    def value_bytes(self) -> bytes:
        return _dumps(self.value)

    @property
    def document_id(self) -> str:
        return self.key["payload"]


class Sink(ABC):
    """Outbound publish target. Owned by a single Publisher."""

    @abstractmethod
    def send(self, message: Message) -> None:
        """Hand off one message. Must not wait for delivery acknowledgement."""

    def close(self) -> None:
        """Flush and release resources."""
        return None

    @property
    def delivery_errors(self) -> int:
        """Records accepted by `send` that later failed to deliver."""
        return 0


@dataclass
class ScanResult:
    """Outcome of one collection scan."""

    namespace: str
    topic: str
    count: int = 0
    pages: int = 0
    errors: int = 0
    ok: bool = True
    last_id: Optional[Any] = None


@dataclass
class ImportReport:
    """Outcome of one coordinator run."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    published: int = 0
    failed: int = 0
    results: dict[str, ScanResult] = field(default_factory=dict)

    @property
    def scanned(self) -> int:
        return sum(r.count for r in self.results.values())

    @property
    def ok(self) -> bool:
        """False when any collection scan failed or any message was not delivered."""
        return self.failed == 0 and all(r.ok for r in self.results.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "published": self.published,
            "failed": self.failed,
            "scanned": self.scanned,
            "ok": self.ok,
            "collections": {
                name: {
                    "topic": r.topic,
                    "count": r.count,
                    "pages": r.pages,
                    "errors": r.errors,
                    "ok": r.ok,
                    "last_id": str(r.last_id) if r.last_id is not None else None,
                }
                for name, r in self.results.items()
            },
        }
