"""
Kafka sink backed by aiokafka.

The pipeline is thread based, so the producer lives on a private event loop
running in a background thread. `send()` blocks only until the record is in
the producer's buffer (which keeps per-topic order and applies the producer's
own buffering limits); delivery acknowledgements are observed asynchronously.
Failed deliveries are logged and counted in `delivery_errors`, which the run
report includes.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, Mapping, Optional

from aiokafka import AIOKafkaProducer
from loguru import logger

from ..errors import SinkError
from ..metrics import metrics_registry
from ..pipeline.types import Message, Sink

ProducerFactory = Callable[..., Any]


# AIOKafkaProducer keyword arguments that are not strings. Everything else,
# passwords and client ids included, passes through untouched.
_INT_OPTIONS = frozenset(
    {
        "acks",
        "connections_max_idle_ms",
        "linger_ms",
        "max_batch_size",
        "max_request_size",
        "metadata_max_age_ms",
        "request_timeout_ms",
        "retry_backoff_ms",
        "send_backoff_ms",
        "transaction_timeout_ms",
    }
)
_BOOL_OPTIONS = frozenset({"enable_idempotence"})


def _coerce_value(name: str, value: str) -> Any:
    text = value.strip()
    if name in _BOOL_OPTIONS:
        if text.lower() in ("true", "false"):
            return text.lower() == "true"
        raise SinkError(f"Invalid Kafka option {name}: expected true or false, got {value!r}")
    if name in _INT_OPTIONS:
        if name == "acks" and text.lower() == "all":
            return "all"
        try:
            return int(text)
        except ValueError as e:
            raise SinkError(f"Invalid Kafka option {name}: expected an integer, got {value!r}") from e
    return value


def coerce_producer_options(options: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize string config into AIOKafkaProducer keyword arguments.

    Accepts Java-style keys (`bootstrap.servers`) as well as snake case.
    Only options the producer takes as integers or booleans are converted.

    Raises:
        SinkError: a numeric or boolean option has an unparseable value
    """
    out: dict[str, Any] = {}
    for key, value in options.items():
        name = key.strip().lower().replace(".", "_").replace("-", "_")
        if isinstance(value, str):
            value = _coerce_value(name, value)
        out[name] = value
    return out


class KafkaSink(Sink):
    def __init__(
        self,
        options: Mapping[str, Any],
        *,
        start_timeout: float = 30.0,
        send_timeout: float = 60.0,
        close_timeout: float = 60.0,
        producer_factory: Optional[ProducerFactory] = None,
    ):
        self._options = coerce_producer_options(options)
        if "bootstrap_servers" not in self._options:
            raise SinkError("Missing Kafka bootstrap_servers")

        self._send_timeout = send_timeout
        self._close_timeout = close_timeout
        self._factory = producer_factory or AIOKafkaProducer
        self._delivery_errors = 0
        self._closed = False

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="kafka-sink-loop", daemon=True
        )
        self._thread.start()

        try:
            self._producer = self._call(self._start(), start_timeout)
        except Exception as e:
            self._stop_loop()
            raise SinkError(f"Kafka producer failed to start: {e}") from e
        logger.info(f"Kafka producer started ({self._options['bootstrap_servers']})")

    @property
    def delivery_errors(self) -> int:
        return self._delivery_errors

    def send(self, message: Message) -> None:
        if self._closed:
            raise SinkError("KafkaSink is closed")
        self._call(self._enqueue(message), self._send_timeout)

    def close(self) -> None:
        """Flush buffered records, stop the producer and its loop."""
        if self._closed:
            return
        self._closed = True
        try:
            self._call(self._producer.stop(), self._close_timeout)
            logger.info("Kafka producer stopped")
        finally:
            self._stop_loop()

    # --------------------------- internals

    def _call(self, coro, timeout: float):
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout=timeout)

    async def _start(self):
        # created on the sink loop so the producer binds to it
        producer = self._factory(**self._options)
        await producer.start()
        return producer

    async def _enqueue(self, message: Message) -> None:
        delivery = await self._producer.send(
            message.topic, value=message.value_bytes(), key=message.key_bytes()
        )
        delivery.add_done_callback(
            lambda fut: self._on_delivery(fut, message.topic, message.document_id)
        )

    def _on_delivery(self, fut: asyncio.Future, topic: str, doc_id: str) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            self._delivery_errors += 1
            metrics_registry.messages_published_total.labels(topic=topic, outcome="nack").inc()
            logger.error(f"Kafka delivery failed for {topic}/{doc_id}: {exc}")

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5.0)
        if not self._thread.is_alive():
            self._loop.close()
