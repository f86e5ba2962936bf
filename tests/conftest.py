"""Pytest configuration and fakes for gptme_kql tests."""

import asyncio
from pathlib import Path

import pytest
from lsprotocol import types

from gptme_kql.host import (
    FORMAT_DOCUMENT,
    CommandNotFoundError,
    Disposable,
    DocumentEvent,
    TextDocument,
)


class FakeProtocol:
    """Stands in for the pygls LanguageClient; records every message sent."""

    def __init__(
        self,
        *,
        spawn_error: Exception | None = None,
        initialize_error: Exception | None = None,
        hang: bool = False,
        initialize_gate: asyncio.Event | None = None,
        capabilities: types.ServerCapabilities | None = None,
        formatting_edits: list[types.TextEdit] | None = None,
    ):
        self.spawn_error = spawn_error
        self.initialize_error = initialize_error
        self.hang = hang
        self.initialize_gate = initialize_gate
        self.capabilities = capabilities or types.ServerCapabilities(
            document_formatting_provider=True
        )
        self.formatting_edits = formatting_edits or []
        self.features: dict[str, object] = {}
        self.calls: list[tuple[str, object]] = []
        self.started_with: tuple | None = None
        self.stopped = False

    def feature(self, name):
        def decorator(fn):
            # pygls tags handlers the same way; bound methods raise here
            fn.reg_name = name
            self.features[name] = fn
            return fn

        return decorator

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    async def start_io(self, cmd, *args, **kwargs):
        if self.spawn_error is not None:
            raise self.spawn_error
        self.started_with = (cmd, args, kwargs)

    async def initialize_async(self, params):
        self.calls.append(("initialize", params))
        if self.hang:
            await asyncio.Event().wait()
        if self.initialize_gate is not None:
            await self.initialize_gate.wait()
        if self.initialize_error is not None:
            raise self.initialize_error
        return types.InitializeResult(capabilities=self.capabilities)

    def initialized(self, params):
        self.calls.append(("initialized", params))

    async def shutdown_async(self, params):
        self.calls.append(("shutdown", params))

    def exit(self, params):
        self.calls.append(("exit", params))

    async def stop(self):
        self.stopped = True

    def text_document_did_open(self, params):
        self.calls.append(("didOpen", params))

    def text_document_did_change(self, params):
        self.calls.append(("didChange", params))

    def text_document_did_save(self, params):
        self.calls.append(("didSave", params))

    def text_document_did_close(self, params):
        self.calls.append(("didClose", params))

    def workspace_did_change_watched_files(self, params):
        self.calls.append(("didChangeWatchedFiles", params))

    async def text_document_formatting_async(self, params):
        self.calls.append(("formatting", params))
        return self.formatting_edits


class FakeWatcher:
    def __init__(self, glob: str):
        self.glob = glob
        self.listeners: list = []
        self.started = False
        self.disposed = False

    def on_did_change(self, listener):
        self.listeners.append(listener)
        return Disposable(lambda: self.listeners.remove(listener))

    def start(self):
        self.started = True

    def dispose(self):
        self.disposed = True

    def fire(self, change):
        for listener in list(self.listeners):
            listener(change)


class FakeHost:
    """In-process host: records notifications, runs coroutines on the test loop."""

    def __init__(self, workspace: Path):
        self.workspace = workspace
        self.notifications: list[tuple[str, str]] = []
        self.commands: dict[str, object] = {}
        self.formatters: dict[str, object] = {}
        self.listeners: list = []
        self.watchers: list[FakeWatcher] = []
        self.executed: list[str] = []
        self.scheduled: list[asyncio.Future] = []
        self.document: TextDocument | None = None

    def show_information(self, message):
        self.notifications.append(("info", message))

    def show_warning(self, message):
        self.notifications.append(("warning", message))

    def show_error(self, message):
        self.notifications.append(("error", message))

    def active_document(self):
        return self.document

    def register_command(self, command, handler):
        self.commands[command] = handler
        return Disposable(lambda: self.commands.pop(command, None))

    async def execute_command(self, command, *args):
        self.executed.append(command)
        if command in self.commands:
            return await self.commands[command](*args)
        if command == FORMAT_DOCUMENT:
            return None
        raise CommandNotFoundError(command)

    def register_document_formatting_provider(self, language_id, provider):
        self.formatters[language_id] = provider
        return Disposable(lambda: self.formatters.pop(language_id, None))

    def on_did_change_document(self, listener):
        self.listeners.append(listener)
        return Disposable(lambda: self.listeners.remove(listener))

    def emit(self, kind, document):
        for listener in list(self.listeners):
            listener(DocumentEvent(kind, document))

    def create_file_system_watcher(self, glob):
        watcher = FakeWatcher(glob)
        self.watchers.append(watcher)
        return watcher

    def schedule(self, coro):
        task = asyncio.ensure_future(coro)
        self.scheduled.append(task)
        return task


@pytest.fixture
def host(tmp_path: Path) -> FakeHost:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return FakeHost(workspace)


@pytest.fixture
def protocol() -> FakeProtocol:
    return FakeProtocol()


@pytest.fixture
def kql_file(host: FakeHost) -> Path:
    file = host.workspace / "query.kql"
    file.write_text("users | where age > 21\n")
    return file


@pytest.fixture
def make_protocol():
    """Factory for protocol fakes with non-default behaviour."""
    return FakeProtocol
