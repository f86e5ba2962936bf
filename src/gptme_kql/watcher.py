"""Workspace file watching using watchdog.

Feeds changes to files matching a glob (``**/*.kql``) to listeners, which
forward them to the language server as ``workspace/didChangeWatchedFiles``.
Watchdog delivers events on its observer thread; listeners are invoked
through ``dispatch`` so the host can move them onto its event loop.
"""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Any

from lsprotocol.types import FileChangeType
from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer

from .host import Disposable

logger = logging.getLogger(__name__)

Dispatch = Callable[..., Any]


@dataclass(frozen=True)
class FileChange:
    path: Path
    kind: FileChangeType

    @property
    def uri(self) -> str:
        return self.path.as_uri()


def split_glob(glob: str) -> tuple[bool, str]:
    """Split a watch glob into (recursive, file pattern).

    >>> split_glob("**/*.kql")
    (True, '*.kql')
    """
    if glob.startswith("**/"):
        return True, glob[3:]
    return False, glob


def _call(fn: Callable[..., Any], *args: Any) -> None:
    fn(*args)


class _GlobEventHandler(PatternMatchingEventHandler):
    """Watchdog handler that maps events to LSP file change types."""

    def __init__(self, watcher: "FileSystemWatcher", pattern: str):
        super().__init__(patterns=[pattern], ignore_directories=True)
        self._watcher = watcher
        self._pattern = pattern

    def on_created(self, event: FileSystemEvent) -> None:
        self._watcher._emit(os.fsdecode(event.src_path), FileChangeType.Created)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._watcher._emit(os.fsdecode(event.src_path), FileChangeType.Changed)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._watcher._emit(os.fsdecode(event.src_path), FileChangeType.Deleted)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Either side of a rename may fall outside the pattern
        src = os.fsdecode(event.src_path)
        dest = os.fsdecode(event.dest_path)
        if PurePath(src).match(self._pattern):
            self._watcher._emit(src, FileChangeType.Deleted)
        if PurePath(dest).match(self._pattern):
            self._watcher._emit(dest, FileChangeType.Created)


class FileSystemWatcher:
    """Watches ``root`` for files matching ``glob``.

    Lifecycle:
        1. ``on_did_change(listener)`` - subscribe to changes.
        2. ``start()`` - start the watchdog observer.
        3. ``dispose()`` - stop the observer and drop listeners.
    """

    def __init__(self, root: Path, glob: str, dispatch: Dispatch | None = None):
        self.root = root
        self.glob = glob
        self.recursive, self.pattern = split_glob(glob)
        self._dispatch = dispatch or _call
        self._listeners: list[Callable[[FileChange], None]] = []
        self._observer: Any = None

    def on_did_change(self, listener: Callable[[FileChange], None]) -> Disposable:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Disposable(remove)

    def start(self) -> None:
        if self._observer is not None:
            return
        if not self.root.is_dir():
            logger.warning(f"Not watching {self.glob}: {self.root} is not a directory")
            return

        observer = Observer()
        observer.daemon = True
        observer.schedule(
            _GlobEventHandler(self, self.pattern), str(self.root), recursive=self.recursive
        )
        observer.start()
        self._observer = observer
        logger.debug(f"Watching {self.root} for {self.glob}")

    def dispose(self) -> None:
        self._listeners.clear()
        if self._observer is None:
            return
        observer, self._observer = self._observer, None
        observer.stop()
        observer.join(timeout=2)

    def _emit(self, path: str, kind: FileChangeType) -> None:
        change = FileChange(path=Path(path), kind=kind)
        logger.debug(f"File {kind.name.lower()}: {path}")
        for listener in list(self._listeners):
            self._dispatch(listener, change)
