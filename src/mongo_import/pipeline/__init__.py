"""Ingestion pipeline (scanner -> queue -> publisher -> sink)

Per-collection scanners page through MongoDB by ascending `_id`, push
envelope-wrapped messages onto a shared queue, and stop after an empty page.
The coordinator drains the queue into a sink until every scanner has finished
and the queue is empty.

- MessageQueue: condition-guarded FIFO, producer-side high-water mark
- RetryPolicy: capped or unlimited retry for page errors, with backoff
- CheckpointStore: per-collection cursors (in-memory or JSON file)
- CollectionScanner / Publisher / ImportCoordinator: the runtime
"""

from .types import Namespace, Message, Sink, ScanResult, ImportReport, parse_namespaces
from .encoder import encode_document, value_schema, KEY_SCHEMA, VALUE_FIELDS
from .queue import MessageQueue
from .policy import RetryPolicy
from .checkpoint import (
    Checkpoint,
    CheckpointStore,
    InMemoryCheckpointStore,
    FileCheckpointStore,
)
from .scanner import CollectionScanner, DEFAULT_BULK_SIZE, DEFAULT_HIGH_WATER_MARK
from .publisher import Publisher
from .coordinator import ImportCoordinator

__all__ = [
    # types
    "Namespace",
    "Message",
    "Sink",
    "ScanResult",
    "ImportReport",
    "parse_namespaces",
    # encoding
    "encode_document",
    "value_schema",
    "KEY_SCHEMA",
    "VALUE_FIELDS",
    # policies
    "RetryPolicy",
    "Checkpoint",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "FileCheckpointStore",
    # runtime
    "MessageQueue",
    "CollectionScanner",
    "Publisher",
    "ImportCoordinator",
    "DEFAULT_BULK_SIZE",
    "DEFAULT_HIGH_WATER_MARK",
]
