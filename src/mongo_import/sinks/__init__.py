"""Outbound sinks for the publisher."""

from .jsonl import JsonLinesSink
from .kafka import KafkaSink, coerce_producer_options

__all__ = ["JsonLinesSink", "KafkaSink", "coerce_producer_options"]
