from __future__ import annotations

import threading


class ReadinessFlag:
    """Process-wide ready bit, written by the command listeners and read by /healthz."""

    def __init__(self) -> None:
        self._ev = threading.Event()

    def set(self, value: bool) -> None:
        if value:
            self._ev.set()
        else:
            self._ev.clear()

    def get(self) -> bool:
        return self._ev.is_set()


SERVER_READY = ReadinessFlag()
