"""
File Watcher Module
====================

Polling watcher used by the development server.

It keeps an mtime snapshot per group of glob patterns and calls back with
the group name when anything in the group is added, removed or modified.
Polling needs no platform-specific support.

Example Usage:
    >>> watcher = PollingWatcher(
    ...     root="src",
    ...     groups={"style": ["assets/styles/*.scss"]},
    ...     callback=lambda group: rebuild(group),
    ... )
    >>> watcher.start()
"""

from __future__ import annotations

import glob
import os
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from siteflow.utils.logging import get_logger

# Module logger
logger = get_logger(__name__)

Snapshot = Dict[str, float]


class PollingWatcher:
    """
    Polls groups of files for changes.

    Attributes:
        root: Directory the patterns are relative to.
        groups: Group name -> glob patterns.
        callback: Called with a group name after that group changed.
        interval: Seconds between polls.
    """

    def __init__(
        self,
        root: Union[str, Path],
        groups: Dict[str, List[str]],
        callback: Callable[[str], None],
        interval: float = 0.5,
    ) -> None:
        self.root = Path(root)
        self.groups = {name: list(patterns) for name, patterns in groups.items()}
        self.callback = callback
        self.interval = interval

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._snapshots: Dict[str, Snapshot] = {
            name: self._snapshot(patterns) for name, patterns in self.groups.items()
        }

    def _snapshot(self, patterns: List[str]) -> Snapshot:
        snapshot: Snapshot = {}
        for pattern in patterns:
            for match in glob.glob(str(self.root / pattern), recursive=True):
                try:
                    if os.path.isfile(match):
                        snapshot[match] = os.path.getmtime(match)
                except OSError:
                    # Removed between glob and stat; the next poll sees it
                    continue
        return snapshot

    def scan(self) -> List[str]:
        """
        Take a new snapshot.

        Returns:
            Names of the groups that changed since the last scan.
        """
        changed = []
        for name, patterns in self.groups.items():
            snapshot = self._snapshot(patterns)
            if snapshot != self._snapshots[name]:
                self._snapshots[name] = snapshot
                changed.append(name)
        return changed

    def poll(self) -> List[str]:
        """Scan once and run the callback for every changed group."""
        changed = self.scan()
        for name in changed:
            logger.info(f"Change detected in '{name}'")
            try:
                self.callback(name)
            except Exception as e:
                # Keep watching; the failure is already reported by the run
                logger.error(f"Handling change in '{name}' failed: {e}")
        return changed

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.poll()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="siteflow-watcher", daemon=True
        )
        self._thread.start()
        logger.info(f"Watching {self.root} ({', '.join(self.groups)})")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(self.interval * 2 + 1)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
