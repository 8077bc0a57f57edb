"""
Collection scanner: pages through one collection in ascending `_id` order and
enqueues an envelope per document.

One scanner runs per collection, each on its own thread. Page errors are
retried according to the RetryPolicy; nothing raised inside `run()` escapes
to the coordinator.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from loguru import logger
from pymongo import ASCENDING

from ..errors import ScanAbortedError
from ..metrics import metrics_registry
from .checkpoint import CheckpointStore, InMemoryCheckpointStore
from .encoder import JsonMode, encode_document
from .policy import RetryPolicy
from .queue import MessageQueue
from .types import Message, Namespace, ScanResult

DEFAULT_BULK_SIZE = 1000
DEFAULT_HIGH_WATER_MARK = 3000


class CollectionScanner:
    """Exhaustively emits every document of one collection.

    Args:
        namespace: Collection to scan
        topic_prefix: Prefix for the routing key
        queue: Shared queue the messages go to
        client: MongoClient-like handle; owned by the scanner and closed when
            the scan ends
        bulk_size: Documents per page query
        high_water_mark: Queue size above which the scanner pauses after a page
        retry_policy: How to handle failing page queries
        checkpoints: Where the starting cursor is loaded from. The publisher
            saves it once messages reach the sink
        json_mode: Extended JSON flavour for the `object` field
        backpressure_timeout: Seconds between warnings while paused
    """

    def __init__(
        self,
        namespace: Namespace,
        topic_prefix: str,
        queue: MessageQueue[Message],
        client: Any,
        *,
        bulk_size: int = DEFAULT_BULK_SIZE,
        high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
        retry_policy: Optional[RetryPolicy] = None,
        checkpoints: Optional[CheckpointStore] = None,
        json_mode: JsonMode = "relaxed",
        backpressure_timeout: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if bulk_size <= 0:
            raise ValueError("bulk_size must be > 0")
        if high_water_mark <= 0:
            raise ValueError("high_water_mark must be > 0")

        self.namespace = namespace
        self.topic = namespace.topic(topic_prefix)
        self.bulk_size = bulk_size
        self.high_water_mark = high_water_mark

        self._queue = queue
        self._client = client
        self._collection = client[namespace.database][namespace.collection]
        self._retry = retry_policy or RetryPolicy()
        self._checkpoints = checkpoints or InMemoryCheckpointStore()
        self._json_mode = json_mode
        self._bp_timeout = backpressure_timeout
        self._sleep = sleep

        # cursor
        self._last_id: Any = None
        self._offset_count = 0

    @property
    def last_id(self) -> Any:
        return self._last_id

    @property
    def offset_count(self) -> int:
        return self._offset_count

    def run(self) -> ScanResult:
        ns = str(self.namespace)
        result = ScanResult(namespace=ns, topic=self.topic)

        try:
            self._restore_cursor()
            self._scan(result)
        except ScanAbortedError as e:
            result.ok = False
            logger.error(f"Scan aborted: {e}")
        except Exception as e:
            result.ok = False
            logger.exception(f"Scan failed for {ns}: {e}")
        finally:
            self.release()

        result.last_id = self._last_id
        logger.info(
            f"Task finish, collection {ns}, count {result.count}, "
            f"pages {result.pages}, errors {result.errors}"
        )
        return result

    # --------------------------- internals

    def _restore_cursor(self) -> None:
        saved = self._checkpoints.load(str(self.namespace))
        if saved is not None:
            self._last_id = saved.last_id
            self._offset_count = saved.count
            logger.info(f"Resuming {self.namespace} after {saved.last_id} ({saved.count} done)")

    def _scan(self, result: ScanResult) -> None:
        failures = 0
        while True:
            logger.debug(
                f"Read messages at {self.namespace} from offset {self._last_id}, "
                f"count {self._offset_count}"
            )
            try:
                fetched = self._scan_page(result)
            except Exception as e:
                failures += 1
                result.errors += 1
                metrics_registry.page_errors_total.labels(namespace=str(self.namespace)).inc()
                logger.error(f"Querying error at {self.namespace} (attempt {failures}): {e}")
                if not self._retry.should_retry(failures):
                    raise ScanAbortedError(str(self.namespace), failures, e) from e
                delay_ms = self._retry.next_backoff_ms(failures)
                if delay_ms:
                    self._sleep(delay_ms / 1000.0)
                continue

            failures = 0
            result.pages += 1
            if fetched == 0:
                return
            self._apply_backpressure()

    def _scan_page(self, result: ScanResult) -> int:
        """Query one page and enqueue it. Returns the number of documents read."""
        query = {"_id": {"$gt": self._last_id}} if self._last_id is not None else {}
        cursor = self._collection.find(query, sort=[("_id", ASCENDING)], limit=self.bulk_size)

        fetched = 0
        label = self.namespace.label
        ns = str(self.namespace)
        try:
            for document in cursor:
                self._queue.put(
                    encode_document(
                        document,
                        self.topic,
                        label,
                        json_mode=self._json_mode,
                        namespace=ns,
                        offset=self._offset_count + 1,
                    )
                )
                # cursor only moves past documents that are already queued
                self._last_id = document["_id"]
                self._offset_count += 1
                result.count += 1
                fetched += 1
        finally:
            if fetched:
                metrics_registry.documents_scanned_total.labels(namespace=ns).inc(fetched)
        return fetched

    def _apply_backpressure(self) -> None:
        hwm = self.high_water_mark
        if self._queue.size <= hwm:
            return

        metrics_registry.backpressure_waits_total.labels(namespace=str(self.namespace)).inc()
        while not self._queue.wait_until(lambda: self._queue.size <= hwm, self._bp_timeout):
            logger.warning(
                f"Message overwhelm! collection {self.namespace}, "
                f"docs {self._offset_count}, messages {self._queue.size}"
            )

    def release(self) -> None:
        """Close the owned Mongo client. Errors are logged only."""
        try:
            self._client.close()
        except Exception as e:
            logger.error(f"Close db client error for {self.namespace}: {e}")
