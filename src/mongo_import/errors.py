"""
Custom exceptions for the Mongo bulk importer.

Only configuration/startup failures are meant to reach the process boundary;
the others are raised and handled inside the pipeline.
"""


class MongoImportError(Exception):
    """Base error for the importer."""

    pass


class ConfigError(MongoImportError):
    """Missing or invalid configuration. Fatal before any scanner starts."""

    pass


class ScanAbortedError(MongoImportError):
    """A scanner exhausted its retry policy on a failing page."""

    def __init__(self, namespace: str, attempts: int, last_error: Exception):
        super().__init__(f"{namespace}: gave up after {attempts} attempts: {last_error}")
        self.namespace = namespace
        self.attempts = attempts
        self.last_error = last_error


class SinkError(MongoImportError):
    """The outbound sink could not be started."""

    pass
