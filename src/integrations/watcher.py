"""
Self-modification registry

A file watcher asks this registry whether a change event was caused by our
own write, so a sync does not trigger another sync.
"""

import threading
import time
from pathlib import Path
from typing import Callable, Dict, Union


SUPPRESSION_WINDOW = 3.0  # seconds


class SelfModificationRegistry:
    """Paths written by the sync within the last few seconds"""

    def __init__(self, window: float = SUPPRESSION_WINDOW, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.clock = clock
        self._lock = threading.Lock()
        self._written: Dict[str, float] = {}

    @staticmethod
    def _key(path: Union[str, Path]) -> str:
        return str(Path(path).expanduser().resolve())

    def register(self, path: Union[str, Path]) -> None:
        with self._lock:
            self._written[self._key(path)] = self.clock()

    def is_self_modified(self, path: Union[str, Path]) -> bool:
        """True if `path` was registered within the suppression window"""
        key = self._key(path)
        with self._lock:
            written_at = self._written.get(key)
            if written_at is None:
                return False
            if self.clock() - written_at > self.window:
                del self._written[key]
                return False
            return True
