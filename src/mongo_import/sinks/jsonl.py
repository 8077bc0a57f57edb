from __future__ import annotations

import json
import sys
import threading
from typing import TextIO

from ..pipeline.types import Message, Sink


class JsonLinesSink(Sink):
    """Writes one `{"topic", "key", "value"}` JSON object per line.

    Used for dry runs and debugging. The stream is flushed on close but not
    closed, since it is usually stdout.
    """

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stdout
        self._lock = threading.Lock()
        self.count = 0

    def send(self, message: Message) -> None:
        line = json.dumps(
            {"topic": message.topic, "key": message.key, "value": message.value},
            separators=(",", ":"),
            ensure_ascii=False,
        )
        with self._lock:
            self._stream.write(line + "\n")
            self.count += 1

    def close(self) -> None:
        self._stream.flush()
