"""Language client for the kql-lsp server.

Wraps the generic pygls ``LanguageClient`` with the KQL-specific pieces:
which process to spawn, which documents take part in the session, the
``**/*.kql`` file watch, and a one-way lifecycle
(idle -> starting -> started -> stopped). Documents are only sent to the
server in the started state, after the initialize handshake.
"""

import asyncio
import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from lsprotocol import types
from pygls.lsp.client import LanguageClient

from . import __version__
from .host import (
    KQL_LANGUAGE_ID,
    Disposable,
    DocumentEvent,
    DocumentEventKind,
    FileWatcher,
    Host,
    TextDocument,
)
from .launcher import ServerOptions
from .watcher import FileChange

logger = logging.getLogger(__name__)

CLIENT_ID = "kql"
CLIENT_NAME = "KQL Language Server"

INITIALIZE_TIMEOUT = 10.0  # seconds
SHUTDOWN_TIMEOUT = 5.0  # seconds


class ClientState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    STARTED = "started"
    STOPPED = "stopped"


class ClientStateError(RuntimeError):
    """Raised for lifecycle calls the current state does not allow."""


@dataclass(frozen=True)
class DocumentFilter:
    scheme: str
    language: str

    def matches(self, document: TextDocument) -> bool:
        return document.scheme == self.scheme and document.language_id == self.language


@dataclass
class ClientOptions:
    document_selector: Sequence[DocumentFilter]
    file_events: FileWatcher | None = None
    initialization_options: dict[str, Any] = field(default_factory=dict)
    formatting: bool = True
    diagnostics: bool = True

    def selects(self, document: TextDocument) -> bool:
        return any(f.matches(document) for f in self.document_selector)


def kql_document_selector() -> tuple[DocumentFilter, ...]:
    return (
        DocumentFilter(scheme="file", language=KQL_LANGUAGE_ID),
        DocumentFilter(scheme="untitled", language=KQL_LANGUAGE_ID),
    )


@dataclass(frozen=True)
class LaunchError:
    """Why the server could not be brought up.

    kind is one of "spawn" (process did not start), "handshake" (the server
    rejected or broke the initialize exchange) or "timeout".
    """

    kind: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


@dataclass(frozen=True)
class Started:
    capabilities: types.ServerCapabilities | None = None


@dataclass(frozen=True)
class LaunchFailed:
    error: LaunchError


StartResult = Started | LaunchFailed


def _default_protocol() -> LanguageClient:
    return LanguageClient(CLIENT_ID, __version__)


class KqlLanguageClient:
    """Owns the server process and the protocol session on top of it."""

    def __init__(
        self,
        client_id: str,
        name: str,
        server_options: ServerOptions,
        client_options: ClientOptions,
        host: Host,
        *,
        debug: bool = False,
        protocol_factory: Callable[[], Any] | None = None,
    ):
        self.client_id = client_id
        self.name = name
        self.server_options = server_options
        self.client_options = client_options
        self.host = host
        self.debug = debug
        self.capabilities: types.ServerCapabilities | None = None
        self._state = ClientState.IDLE
        self._lsp = (protocol_factory or _default_protocol)()
        self._subscriptions: list[Disposable] = []
        self._open_documents: dict[str, int] = {}
        self._diagnostics: dict[str, list[types.Diagnostic]] = {}
        self._diagnostics_ready: dict[str, asyncio.Event] = {}

        if client_options.diagnostics:
            # pygls sets attributes on handlers, which bound methods reject
            def publish_diagnostics(params: types.PublishDiagnosticsParams) -> None:
                self._on_publish_diagnostics(params)

            self._lsp.feature(types.TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS)(publish_diagnostics)

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ClientState.STARTED

    async def start(self) -> StartResult:
        """Spawn the server and run the initialize handshake.

        Launch and handshake failures are returned as ``LaunchFailed`` and
        leave the client stopped. Calling this twice raises ClientStateError.
        Documents are only synchronized once the handshake has completed.
        """
        if self._state is not ClientState.IDLE:
            raise ClientStateError(f"Cannot start {self.name}: client is {self._state.value}")
        self._state = ClientState.STARTING

        executable = self.server_options.select(self.debug)
        argv = executable.argv()
        logger.info(f"Starting {self.name}: {' '.join(argv)}")

        try:
            await self._lsp.start_io(argv[0], *argv[1:], cwd=str(self.host.workspace))
        except OSError as e:
            return await self._fail(LaunchError("spawn", str(e)))

        try:
            result = await asyncio.wait_for(
                self._lsp.initialize_async(self._initialize_params()),
                timeout=INITIALIZE_TIMEOUT,
            )
        except TimeoutError:
            return await self._fail(
                LaunchError("timeout", f"no initialize response after {INITIALIZE_TIMEOUT:g}s")
            )
        except Exception as e:
            return await self._fail(LaunchError("handshake", str(e) or type(e).__name__))

        self._lsp.initialized(types.InitializedParams())
        self.capabilities = result.capabilities if result is not None else None

        self._watch_files()
        self._subscriptions.append(self.host.on_did_change_document(self._on_document_event))
        if self.client_options.formatting and self._supports_formatting():
            self._subscriptions.append(
                self.host.register_document_formatting_provider(
                    KQL_LANGUAGE_ID, self._provide_formatting
                )
            )
        self._state = ClientState.STARTED

        logger.info(f"{self.name} initialized successfully")
        return Started(capabilities=self.capabilities)

    async def stop(self) -> None:
        """Shut the session down and end the server process."""
        if self._state is not ClientState.STARTED:
            raise ClientStateError(f"Cannot stop {self.name}: client is {self._state.value}")
        self._state = ClientState.STOPPED
        self._dispose_subscriptions()

        try:
            await asyncio.wait_for(self._lsp.shutdown_async(None), timeout=SHUTDOWN_TIMEOUT)
            self._lsp.exit(None)
        except Exception as e:
            logger.warning(f"{self.name} did not shut down cleanly: {e!r}")
        finally:
            await self._lsp.stop()
            self._open_documents.clear()
        logger.info(f"{self.name} stopped")

    async def _fail(self, error: LaunchError) -> LaunchFailed:
        logger.error(f"Failed to start {self.name}: {error}")
        self._state = ClientState.STOPPED
        try:
            await self._lsp.stop()
        except Exception as e:
            logger.debug(f"Cleanup after failed start raised: {e!r}")
        return LaunchFailed(error=error)

    def _initialize_params(self) -> types.InitializeParams:
        workspace = self.host.workspace
        return types.InitializeParams(
            process_id=os.getpid(),
            client_info=types.ClientInfo(name="gptme-kql", version=__version__),
            root_uri=workspace.as_uri(),
            workspace_folders=[types.WorkspaceFolder(uri=workspace.as_uri(), name=workspace.name)],
            initialization_options=self.client_options.initialization_options or None,
            capabilities=types.ClientCapabilities(
                text_document=types.TextDocumentClientCapabilities(
                    synchronization=types.TextDocumentSyncClientCapabilities(did_save=True),
                    formatting=types.DocumentFormattingClientCapabilities(),
                    publish_diagnostics=types.PublishDiagnosticsClientCapabilities(),
                ),
                workspace=types.WorkspaceClientCapabilities(
                    did_change_watched_files=types.DidChangeWatchedFilesClientCapabilities(
                        dynamic_registration=False
                    ),
                ),
            ),
        )

    def _supports_formatting(self) -> bool:
        return bool(self.capabilities and self.capabilities.document_formatting_provider)

    def _dispose_subscriptions(self) -> None:
        while self._subscriptions:
            self._subscriptions.pop().dispose()

    # File watching

    def _watch_files(self) -> None:
        watcher = self.client_options.file_events
        if watcher is None:
            return
        self._subscriptions.append(watcher.on_did_change(self._on_file_change))
        watcher.start()

    def _on_file_change(self, change: FileChange) -> None:
        if not self.is_running:
            return
        self._lsp.workspace_did_change_watched_files(
            types.DidChangeWatchedFilesParams(
                changes=[types.FileEvent(uri=change.uri, type=change.kind)]
            )
        )

    # Document synchronization

    def selects(self, document: TextDocument) -> bool:
        return self.client_options.selects(document)

    def _participates(self, document: TextDocument) -> bool:
        return self.is_running and self.selects(document)

    def did_open(self, document: TextDocument) -> bool:
        if not self._participates(document):
            return False
        self._open_documents[document.uri] = document.version
        self._lsp.text_document_did_open(
            types.DidOpenTextDocumentParams(
                text_document=types.TextDocumentItem(
                    uri=document.uri,
                    language_id=document.language_id,
                    version=document.version,
                    text=document.text,
                )
            )
        )
        return True

    def did_change(self, document: TextDocument) -> bool:
        if not self._participates(document) or document.uri not in self._open_documents:
            return False
        version = max(document.version, self._open_documents[document.uri] + 1)
        self._open_documents[document.uri] = version
        self._lsp.text_document_did_change(
            types.DidChangeTextDocumentParams(
                text_document=types.VersionedTextDocumentIdentifier(
                    uri=document.uri, version=version
                ),
                content_changes=[types.TextDocumentContentChangeWholeDocument(text=document.text)],
            )
        )
        return True

    def did_save(self, document: TextDocument) -> bool:
        if not self._participates(document) or document.uri not in self._open_documents:
            return False
        self._lsp.text_document_did_save(
            types.DidSaveTextDocumentParams(
                text_document=types.TextDocumentIdentifier(uri=document.uri)
            )
        )
        return True

    def did_close(self, document: TextDocument) -> bool:
        if not self._participates(document) or document.uri not in self._open_documents:
            return False
        del self._open_documents[document.uri]
        self._lsp.text_document_did_close(
            types.DidCloseTextDocumentParams(
                text_document=types.TextDocumentIdentifier(uri=document.uri)
            )
        )
        return True

    def sync(self, document: TextDocument) -> bool:
        """Open the document in the server, or send its new text if already open."""
        if document.uri in self._open_documents:
            return self.did_change(document)
        return self.did_open(document)

    def _on_document_event(self, event: DocumentEvent) -> None:
        if event.kind in (DocumentEventKind.OPEN, DocumentEventKind.CHANGE):
            self.sync(event.document)
        elif event.kind is DocumentEventKind.SAVE:
            self.sync(event.document)
            self.did_save(event.document)
        elif event.kind is DocumentEventKind.CLOSE:
            self.did_close(event.document)

    # Formatting

    async def _provide_formatting(self, document: TextDocument) -> list[types.TextEdit]:
        if not self.sync(document):
            return []
        edits = await self._lsp.text_document_formatting_async(
            types.DocumentFormattingParams(
                text_document=types.TextDocumentIdentifier(uri=document.uri),
                options=types.FormattingOptions(tab_size=4, insert_spaces=True),
            )
        )
        return list(edits or [])

    # Diagnostics

    def _on_publish_diagnostics(self, params: types.PublishDiagnosticsParams) -> None:
        logger.debug(f"Received {len(params.diagnostics)} diagnostics for {params.uri}")
        self._diagnostics[params.uri] = list(params.diagnostics)
        self._diagnostics_ready.setdefault(params.uri, asyncio.Event()).set()

    def diagnostics(self, uri: str) -> list[types.Diagnostic]:
        return list(self._diagnostics.get(uri, []))

    async def wait_for_diagnostics(self, uri: str, timeout: float = 5.0) -> list[types.Diagnostic]:
        """Wait until the server has published diagnostics for ``uri``.

        Returns whatever is known when the timeout expires; a file without
        issues may never be reported.
        """
        ready = self._diagnostics_ready.setdefault(uri, asyncio.Event())
        try:
            await asyncio.wait_for(ready.wait(), timeout=timeout)
        except TimeoutError:
            logger.debug(f"No diagnostics received for {uri} after {timeout}s")
        return self.diagnostics(uri)
