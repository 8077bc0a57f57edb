"""
Import coordinator: one scanner thread per collection, continuous draining
by the publisher, and completion detection.

A run is finished only when no scanner is alive AND the queue is empty.
Checking liveness alone could exit before the last partial flush; checking
emptiness alone could exit while a scanner sits between two pages.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from time import monotonic
from typing import Any, Callable, Iterable, Optional, Sequence

from loguru import logger
from pymongo import MongoClient
from pymongo.errors import ConfigurationError

from ..errors import ConfigError, SinkError
from ..metrics import metrics_registry
from .checkpoint import CheckpointStore, InMemoryCheckpointStore
from .encoder import JsonMode
from .policy import RetryPolicy
from .publisher import Publisher
from .queue import MessageQueue
from .scanner import DEFAULT_BULK_SIZE, DEFAULT_HIGH_WATER_MARK, CollectionScanner
from .types import ImportReport, Message, Namespace, Sink, parse_namespaces

ClientFactory = Callable[[str], Any]


class ImportCoordinator:
    """Runs a full import across all configured collections.

    Each `run()` builds a fresh queue, scanners, Mongo clients and (unless one
    was injected) a fresh in-memory checkpoint store, so coordinators running
    side by side share no state. The sink is owned by the run and closed
    when it ends, so a coordinator runs once; a second `run()` raises
    SinkError.

    Example:
        coord = ImportCoordinator(
            "mongodb://localhost:27017",
            "shop.orders,shop.users",
            "mongo",
            sink=KafkaSink({"bootstrap_servers": "localhost:9092"}),
        )
        report = coord.run()
    """

    def __init__(
        self,
        uri: str,
        databases: str | Iterable[Namespace],
        topic_prefix: str,
        sink: Sink,
        *,
        bulk_size: int = DEFAULT_BULK_SIZE,
        high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
        poll_interval: float = 0.1,
        flush_batch: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        checkpoints: Optional[CheckpointStore] = None,
        json_mode: JsonMode = "relaxed",
        client_factory: Optional[ClientFactory] = None,
    ):
        if bulk_size <= 0:
            raise ValueError("bulk_size must be > 0")
        if high_water_mark <= 0:
            raise ValueError("high_water_mark must be > 0")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if isinstance(databases, str):
            self.namespaces = parse_namespaces(databases)
        else:
            self.namespaces = list(databases)
            if not self.namespaces:
                raise ConfigError("No collections configured")

        self.uri = uri
        self.topic_prefix = topic_prefix
        self.bulk_size = bulk_size
        self.high_water_mark = high_water_mark
        self.poll_interval = poll_interval
        self.flush_batch = flush_batch or bulk_size

        self._sink = sink
        self._retry = retry_policy or RetryPolicy()
        self._checkpoints = checkpoints
        self._json_mode = json_mode
        self._client_factory = client_factory or MongoClient
        self._used = False

    @property
    def topics(self) -> list[str]:
        return [ns.topic(self.topic_prefix) for ns in self.namespaces]

    def run(self) -> ImportReport:
        if self._used:
            raise SinkError("Sink was closed by a previous run; build a new ImportCoordinator")
        self._used = True

        report = ImportReport(started_at=datetime.now(timezone.utc))
        t0 = monotonic()
        queue: MessageQueue[Message] = MessageQueue()
        checkpoints = self._checkpoints or InMemoryCheckpointStore()
        publisher = Publisher(queue, self._sink, checkpoints)

        logger.info(f"Start import data from {','.join(map(str, self.namespaces))}")
        try:
            scanners = self._build_scanners(queue, checkpoints)
            with ThreadPoolExecutor(
                max_workers=len(scanners), thread_name_prefix="scanner"
            ) as executor:
                futures: list[Future] = []
                for scanner in scanners:
                    future = executor.submit(scanner.run)
                    future.add_done_callback(lambda _f: queue.notify())
                    futures.append(future)

                self._drain_until_done(queue, publisher, futures)

            for future in futures:
                result = future.result()
                report.results[result.namespace] = result
        finally:
            report.published = publisher.sent
            publisher.close()
            report.failed = publisher.failed + self._sink.delivery_errors

        report.finished_at = datetime.now(timezone.utc)
        outcome = "success" if report.ok else "partial"
        metrics_registry.run_duration_seconds.labels(outcome=outcome).observe(monotonic() - t0)
        logger.info(
            f"Import finish: scanned={report.scanned} published={report.published} "
            f"failed={report.failed} ok={report.ok} in {monotonic() - t0:.2f}s"
        )
        return report

    # --------------------------- internals

    def _build_scanners(
        self, queue: MessageQueue[Message], checkpoints: CheckpointStore
    ) -> list[CollectionScanner]:
        scanners: list[CollectionScanner] = []
        try:
            for ns in self.namespaces:
                logger.trace(f"Import collection: {ns}")
                scanners.append(
                    CollectionScanner(
                        ns,
                        self.topic_prefix,
                        queue,
                        self._client_factory(self.uri),
                        bulk_size=self.bulk_size,
                        high_water_mark=self.high_water_mark,
                        retry_policy=self._retry,
                        checkpoints=checkpoints,
                        json_mode=self._json_mode,
                    )
                )
        except ConfigurationError as e:
            self._release_all(scanners)
            raise ConfigError(f"Invalid Mongo URI: {e}") from e
        except Exception:
            self._release_all(scanners)
            raise
        return scanners

    @staticmethod
    def _release_all(scanners: Sequence[CollectionScanner]) -> None:
        for scanner in scanners:
            scanner.release()

    def _drain_until_done(
        self,
        queue: MessageQueue[Message],
        publisher: Publisher,
        futures: Sequence[Future],
    ) -> None:
        def alive() -> int:
            return sum(1 for f in futures if not f.done())

        while True:
            if alive() == 0 and queue.empty():
                return
            publisher.flush()
            # woken by puts and by scanner completion; the timeout bounds latency
            queue.wait_until(
                lambda: queue.size >= self.flush_batch or alive() == 0,
                timeout=self.poll_interval,
            )
