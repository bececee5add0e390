"""Bridge a blocking line source into the broadcast loop.

The pump thread blocks on ``readline``; each completed line goes through a
single-slot handoff, so at most one line is ever waiting for the sender.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Iterator, TextIO

from .errors import InputError


class LineHandoff:
    _CLOSED = object()

    def __init__(self) -> None:
        self._q: queue.Queue = queue.Queue(maxsize=1)

    def put(self, line: str, timeout: float | None = None) -> None:
        """Block until the previous line has been taken, then hand over ``line``."""
        self._q.put(line, timeout=timeout)

    def close(self) -> None:
        self._q.put(self._CLOSED)

    def get(self) -> str | None:
        item = self._q.get()
        if item is self._CLOSED:
            return None
        return item

    def __iter__(self) -> Iterator[str]:
        while True:
            line = self.get()
            if line is None:
                return
            yield line


class InputPump:
    def __init__(self, source: TextIO, handoff: LineHandoff) -> None:
        self.source = source
        self.handoff = handoff
        self.log = logging.getLogger("rchat.input")
        self._thread: threading.Thread | None = None

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(
            target=self.run, name="rchat-input", daemon=True
        )
        self._thread.start()
        return self._thread

    def _readline(self) -> str:
        try:
            return self.source.readline()
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise InputError(f"input source failed: {e}") from e

    def run(self) -> None:
        try:
            while True:
                raw = self._readline()
                if raw == "":
                    self.log.debug("Input exhausted")
                    break
                self.handoff.put(raw.strip())
        except InputError as e:
            self.log.warning("%s", e)
        finally:
            self.handoff.close()
