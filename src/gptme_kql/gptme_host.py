"""Host implementation for a gptme session.

gptme tools and hooks run synchronously, so the host keeps its own asyncio
event loop on a daemon thread. Protocol traffic, document events and file
watch events all run on that loop; tools submit coroutines with ``run``.
Notifications are queued and turned into gptme messages by the caller.
"""

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

from .host import (
    FORMAT_DOCUMENT,
    CommandHandler,
    CommandNotFoundError,
    Disposable,
    DocumentEvent,
    DocumentEventKind,
    DocumentListener,
    FormattingProvider,
    TextDocument,
    apply_text_edits,
)
from .watcher import FileSystemWatcher

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 30.0  # seconds


class _EventLoopThread:
    """An asyncio event loop running forever on a daemon thread."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="kql-lsp-loop", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def close(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=timeout)
        self._thread = None
        self.loop.close()


class GptmeHost:
    """The gptme side of the plugin: notifications, documents and commands."""

    def __init__(self, workspace: Path):
        self.workspace = workspace
        self._loop_thread = _EventLoopThread()
        self._lock = threading.Lock()
        self._outbox: list[tuple[str, str]] = []
        self._active: TextDocument | None = None
        self._commands: dict[str, CommandHandler] = {}
        self._formatters: dict[str, FormattingProvider] = {}
        self._document_listeners: list[DocumentListener] = []

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop_thread.loop

    def start(self) -> None:
        self._loop_thread.start()

    def close(self) -> None:
        self._loop_thread.close()

    # Event loop

    def schedule(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        return self._loop_thread.submit(coro)

    def run(self, coro: Coroutine[Any, Any, Any], timeout: float = COMMAND_TIMEOUT) -> Any:
        """Run a coroutine on the host loop and wait for its result."""
        return self.schedule(coro).result(timeout=timeout)

    def _dispatch(self, fn: Any, *args: Any) -> None:
        self.loop.call_soon_threadsafe(fn, *args)

    # Notifications

    def _notify(self, level: str, message: str) -> None:
        with self._lock:
            self._outbox.append((level, message))

    def show_information(self, message: str) -> None:
        logger.info(message)
        self._notify("info", message)

    def show_warning(self, message: str) -> None:
        logger.warning(message)
        self._notify("warning", message)

    def show_error(self, message: str) -> None:
        logger.error(message)
        self._notify("error", message)

    def drain_notifications(self) -> list[tuple[str, str]]:
        with self._lock:
            pending, self._outbox = self._outbox, []
        return pending

    # Documents

    def active_document(self) -> TextDocument | None:
        return self._active

    def open_document(self, path: Path) -> TextDocument:
        """Make ``path`` the active document.

        Re-opening the active document re-reads it and reports a change.
        """
        previous = self._active
        if previous is not None and previous.path == path.resolve():
            document = TextDocument.from_path(path, version=previous.version + 1)
            kind = DocumentEventKind.CHANGE
        else:
            document = TextDocument.from_path(path)
            kind = DocumentEventKind.OPEN
        self._active = document
        self._emit(DocumentEvent(kind, document))
        return document

    def save_document(self, path: Path) -> TextDocument:
        """Report that ``path`` was written to disk."""
        document = self.open_document(path)
        self._emit(DocumentEvent(DocumentEventKind.SAVE, document))
        return document

    def on_did_change_document(self, listener: DocumentListener) -> Disposable:
        self._document_listeners.append(listener)

        def remove() -> None:
            if listener in self._document_listeners:
                self._document_listeners.remove(listener)

        return Disposable(remove)

    def _emit(self, event: DocumentEvent) -> None:
        for listener in list(self._document_listeners):
            self._dispatch(listener, event)

    # Commands

    def register_command(self, command: str, handler: CommandHandler) -> Disposable:
        self._commands[command] = handler
        return Disposable(lambda: self._commands.pop(command, None))

    def has_command(self, command: str) -> bool:
        return command in self._commands

    async def execute_command(self, command: str, *args: Any) -> Any:
        if command == FORMAT_DOCUMENT:
            return await self._format_active_document()
        handler = self._commands.get(command)
        if handler is None:
            raise CommandNotFoundError(f"command '{command}' not found")
        return await handler(*args)

    # Formatting

    def register_document_formatting_provider(
        self, language_id: str, provider: FormattingProvider
    ) -> Disposable:
        self._formatters[language_id] = provider
        return Disposable(lambda: self._formatters.pop(language_id, None))

    async def _format_active_document(self) -> bool:
        document = self._active
        if document is None:
            return False
        provider = self._formatters.get(document.language_id)
        if provider is None:
            logger.info(f"No formatter registered for {document.language_id}")
            self.show_information(f"No formatter available for {document.language_id} documents")
            return False

        edits = await provider(document)
        if not edits:
            return False
        formatted = apply_text_edits(document.text, edits)
        if formatted == document.text:
            return False

        path = document.path
        if path is not None:
            path.write_text(formatted)
        self._active = TextDocument(
            uri=document.uri,
            language_id=document.language_id,
            text=formatted,
            version=document.version + 1,
        )
        self._emit(DocumentEvent(DocumentEventKind.CHANGE, self._active))
        self.show_information(f"Formatted {path.name if path else document.uri}")
        return True

    # File watching

    def create_file_system_watcher(self, glob: str) -> FileSystemWatcher:
        return FileSystemWatcher(self.workspace, glob, dispatch=self._dispatch)
