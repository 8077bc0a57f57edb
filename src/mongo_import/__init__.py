"""
Mongo bulk importer

Reads every document of the configured MongoDB collections in ascending
`_id` order and republishes each one as an insert event on Kafka.

Usage:
    from mongo_import import ImportCoordinator
    from mongo_import.sinks import KafkaSink

    coord = ImportCoordinator(
        "mongodb://localhost:27017",
        "shop.orders,shop.users",
        "mongo",
        sink=KafkaSink({"bootstrap_servers": "localhost:9092"}),
    )
    report = coord.run()

Or from the command line:
    mongo-import run import.env
"""

from .errors import MongoImportError, ConfigError, ScanAbortedError, SinkError
from .pipeline import (
    ImportCoordinator,
    ImportReport,
    Message,
    Namespace,
    RetryPolicy,
    encode_document,
)

__version__ = "1.0.0"
__all__ = [
    "ImportCoordinator",
    "ImportReport",
    "Message",
    "Namespace",
    "RetryPolicy",
    "encode_document",
    "MongoImportError",
    "ConfigError",
    "ScanAbortedError",
    "SinkError",
]
