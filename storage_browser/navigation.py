from __future__ import annotations
"""Current-location state for a bucket browser."""
import logging
from typing import Callable

from .sync import Observable, Unsubscribe, ViewSynchronizer
from .ui_utils import ValidationError, join_path, normalize_path, parent_path

LOGGER = logging.getLogger(__name__)


class PathNavigator:
    """Single owner of ``current_path``.

    Paths carry no leading or trailing slash and ``""`` is the bucket root.
    Paths are never checked for existence; a stale one just lists empty.
    """

    def __init__(self, synchronizer: ViewSynchronizer, initial_path: str = ""):
        self._sync = synchronizer
        self._path = Observable(normalize_path(initial_path))

    @property
    def current_path(self) -> str:
        return self._path.value

    @property
    def breadcrumbs(self) -> list[str]:
        """Segment 0 is the bucket root; segment ``i`` is the ``i``-th folder name."""
        if not self.current_path:
            return [""]
        return [""] + self.current_path.split("/")

    def subscribe(self, callback: Callable[[str], None]) -> Unsubscribe:
        return self._path.subscribe(callback)

    def navigate_to(self, path: str) -> str:
        path = normalize_path(path)
        LOGGER.debug("Navigating to '%s'", path)
        self._path.set(path)
        self._sync.on_navigation()
        return path

    def enter(self, folder_name: str) -> str:
        return self.navigate_to(join_path(self.current_path, folder_name))

    def navigate_up(self) -> str:
        if not self.current_path:
            return ""
        return self.navigate_to(parent_path(self.current_path))

    def navigate_to_breadcrumb_segment(self, index: int) -> str:
        segments = self.current_path.split("/") if self.current_path else []
        if index < 0 or index > len(segments):
            raise ValidationError(f"Breadcrumb index {index} is out of range")
        return self.navigate_to("/".join(segments[:index]))

    def reset(self) -> None:
        """Return to the root without triggering a refetch."""
        self._path.set("")
