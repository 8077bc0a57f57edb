from __future__ import annotations

from typing import Optional

from loguru import logger

from ..metrics import metrics_registry
from .checkpoint import Checkpoint, CheckpointStore
from .queue import MessageQueue
from .types import Message, Sink


class Publisher:
    """Drains the shared queue into a sink. Single consumer.

    Each `flush()` empties whatever is queued at call time. Sends are
    fire-and-forget; a failing send is logged and counted, never retried.

    When a checkpoint store is given, a collection's cursor is saved at the
    end of each flush, pointing at its last message the sink accepted. After
    the first failed send for a collection its cursor stops moving for the
    rest of the run, so a resumed run re-emits from before the gap.
    """

    def __init__(
        self,
        queue: MessageQueue[Message],
        sink: Sink,
        checkpoints: Optional[CheckpointStore] = None,
    ):
        self._queue = queue
        self._sink = sink
        self._checkpoints = checkpoints
        self._held: set[str] = set()
        self._sent = 0
        self._failed = 0
        self._closed = False

    @property
    def sent(self) -> int:
        return self._sent

    @property
    def failed(self) -> int:
        return self._failed

    def flush(self) -> int:
        """Send every queued message. Returns how many were handed to the sink."""
        sent = 0
        cursors: dict[str, Checkpoint] = {}
        while True:
            message = self._queue.poll()
            if message is None:
                break
            try:
                self._sink.send(message)
            except Exception as e:
                self._failed += 1
                if message.namespace:
                    self._held.add(message.namespace)
                metrics_registry.messages_published_total.labels(
                    topic=message.topic, outcome="error"
                ).inc()
                logger.error(f"Send failed for {message.topic}/{message.document_id}: {e}")
                continue
            sent += 1
            metrics_registry.messages_published_total.labels(
                topic=message.topic, outcome="success"
            ).inc()
            if message.namespace and message.namespace not in self._held:
                cursors[message.namespace] = Checkpoint(message.source_id, message.offset)

        self._sent += sent
        metrics_registry.queue_depth.set(self._queue.size)
        self._save(cursors)
        if sent:
            logger.debug(f"Flushed {sent} messages (total {self._sent})")
        return sent

    def _save(self, cursors: dict[str, Checkpoint]) -> None:
        if self._checkpoints is None:
            return
        for namespace, checkpoint in cursors.items():
            try:
                self._checkpoints.save(namespace, checkpoint)
            except Exception as e:
                # a stale cursor only means re-sending on resume
                logger.error(f"Checkpoint save failed for {namespace}: {e}")

    def close(self) -> None:
        """Release the sink; safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        try:
            self._sink.close()
        except Exception as e:
            logger.error(f"Close sink error: {e}")
