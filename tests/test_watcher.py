"""Tests for the watchdog-backed file watcher."""

from pathlib import Path

from lsprotocol.types import FileChangeType
from watchdog.events import FileCreatedEvent, FileDeletedEvent, FileModifiedEvent, FileMovedEvent

from gptme_kql.watcher import FileChange, FileSystemWatcher, _GlobEventHandler, split_glob


def test_split_glob():
    assert split_glob("**/*.kql") == (True, "*.kql")
    assert split_glob("*.kql") == (False, "*.kql")


def test_file_change_uri(tmp_path):
    change = FileChange(tmp_path / "a.kql", FileChangeType.Created)
    assert change.uri == (tmp_path / "a.kql").as_uri()


class TestHandler:
    def setup_method(self):
        self.watcher = FileSystemWatcher(Path("/ws"), "**/*.kql")
        self.changes: list[FileChange] = []
        self.watcher.on_did_change(self.changes.append)
        self.handler = _GlobEventHandler(self.watcher, self.watcher.pattern)

    def test_event_kinds(self):
        self.handler.on_created(FileCreatedEvent("/ws/a.kql"))
        self.handler.on_modified(FileModifiedEvent("/ws/a.kql"))
        self.handler.on_deleted(FileDeletedEvent("/ws/a.kql"))

        assert [c.kind for c in self.changes] == [
            FileChangeType.Created,
            FileChangeType.Changed,
            FileChangeType.Deleted,
        ]
        assert all(c.path == Path("/ws/a.kql") for c in self.changes)

    def test_rename_between_kql_files(self):
        self.handler.on_moved(FileMovedEvent("/ws/a.kql", "/ws/b.kql"))

        assert self.changes == [
            FileChange(Path("/ws/a.kql"), FileChangeType.Deleted),
            FileChange(Path("/ws/b.kql"), FileChangeType.Created),
        ]

    def test_rename_to_other_extension(self):
        self.handler.on_moved(FileMovedEvent("/ws/a.kql", "/ws/a.txt"))

        assert self.changes == [FileChange(Path("/ws/a.kql"), FileChangeType.Deleted)]

    def test_rename_from_other_extension(self):
        self.handler.on_moved(FileMovedEvent("/ws/a.tmp", "/ws/a.kql"))

        assert self.changes == [FileChange(Path("/ws/a.kql"), FileChangeType.Created)]


def test_listener_disposable():
    watcher = FileSystemWatcher(Path("/ws"), "**/*.kql")
    changes: list[FileChange] = []
    subscription = watcher.on_did_change(changes.append)

    subscription.dispose()
    watcher._emit("/ws/a.kql", FileChangeType.Created)

    assert changes == []


def test_dispatch_is_used():
    dispatched = []
    watcher = FileSystemWatcher(
        Path("/ws"), "**/*.kql", dispatch=lambda fn, *args: dispatched.append((fn, args))
    )
    listener = lambda change: None  # noqa: E731
    watcher.on_did_change(listener)

    watcher._emit("/ws/a.kql", FileChangeType.Changed)

    assert dispatched == [(listener, (FileChange(Path("/ws/a.kql"), FileChangeType.Changed),))]


def test_start_on_missing_root_does_not_watch(tmp_path, caplog):
    watcher = FileSystemWatcher(tmp_path / "missing", "**/*.kql")
    watcher.start()

    assert watcher._observer is None
    assert "not a directory" in caplog.text
    watcher.dispose()


def test_start_and_dispose(tmp_path):
    watcher = FileSystemWatcher(tmp_path, "**/*.kql")
    watcher.on_did_change(lambda change: None)
    watcher.start()
    assert watcher._observer is not None

    watcher.dispose()

    assert watcher._observer is None
    assert watcher._listeners == []
