"""
One import run built from settings: fresh sink, checkpoint store and
coordinator every time, so scheduled runs never share state.
"""

from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from .config import ImportSettings
from .pipeline import ImportCoordinator, ImportReport, Sink
from .sinks import JsonLinesSink, KafkaSink

SinkFactory = Callable[[ImportSettings], Sink]


def build_sink(settings: ImportSettings, *, dry_run: bool = False) -> Sink:
    if dry_run:
        return JsonLinesSink()
    return KafkaSink(settings.kafka_options)


def build_coordinator(settings: ImportSettings, sink: Sink, **overrides) -> ImportCoordinator:
    kwargs = dict(
        bulk_size=settings.BATCH_SIZE,
        high_water_mark=settings.HIGH_WATER_MARK,
        poll_interval=settings.POLL_INTERVAL,
        retry_policy=settings.retry_policy(),
        checkpoints=settings.checkpoint_store(),
        json_mode=settings.JSON_MODE,
    )
    kwargs.update(overrides)
    return ImportCoordinator(
        settings.MONGO_URI,
        settings.namespaces,
        settings.TOPIC_PREFIX,
        sink,
        **kwargs,
    )


def run_import(
    settings: ImportSettings,
    *,
    dry_run: bool = False,
    sink_factory: Optional[SinkFactory] = None,
    **overrides,
) -> ImportReport:
    """Run a full import once and return its report."""
    if sink_factory is not None:
        sink = sink_factory(settings)
    else:
        sink = build_sink(settings, dry_run=dry_run)
    try:
        coordinator = build_coordinator(settings, sink, **overrides)
    except Exception:
        sink.close()
        raise
    logger.info(f"Importing {len(coordinator.namespaces)} collection(s) -> {coordinator.topics}")
    return coordinator.run()
