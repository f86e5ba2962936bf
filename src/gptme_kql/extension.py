"""Activation and teardown of the KQL language client.

``activate`` runs once per host session. It turns the settings snapshot and
the filesystem into either a running client session or nothing, and returns
the resulting controller state. ``deactivate`` takes that state back and
stops the session if one was started.
"""

import asyncio
import concurrent.futures
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .client import (
    CLIENT_ID,
    CLIENT_NAME,
    ClientOptions,
    KqlLanguageClient,
    LaunchFailed,
    StartResult,
    kql_document_selector,
)
from .commands import register_commands
from .config import KqlSettings, format_server_error
from .host import Disposable, Host
from .launcher import build_launch_parameters
from .resolver import CANDIDATE_PATHS, Candidate, SearchRoots, resolve_server_path

logger = logging.getLogger(__name__)

KQL_FILE_GLOB = "**/*.kql"


@dataclass
class ExtensionContext:
    """Everything activation reads, plus the registrations it makes."""

    host: Host
    settings: KqlSettings
    subscriptions: list[Disposable] = field(default_factory=list)
    roots: SearchRoots = field(default_factory=SearchRoots)
    candidates: Sequence[Candidate] = CANDIDATE_PATHS
    protocol_factory: Callable[[], Any] | None = None

    @property
    def workspace(self) -> Path:
        return self.host.workspace


@dataclass(frozen=True)
class Idle:
    """No session was created; ``reason`` says why."""

    reason: str = ""


@dataclass(frozen=True)
class Running:
    session: KqlLanguageClient
    startup: Any = None  # future for the scheduled start()


@dataclass(frozen=True)
class Stopped:
    pass


ControllerState = Idle | Running | Stopped


def activate(context: ExtensionContext) -> ControllerState:
    """Start the KQL language client if it is enabled and a server is found.

    The client is started in the background; the returned ``Running`` state
    does not mean the server is ready yet.
    """
    settings = context.settings
    if not settings.lsp_enabled:
        logger.info("KQL LSP is disabled in settings")
        return Idle(reason="disabled")

    server_path = resolve_server_path(settings.lsp_path, context.roots, context.candidates)
    if server_path is None or not server_path.exists():
        logger.warning(f"KQL LSP server not found (configured path: {settings.lsp_path!r})")
        context.host.show_warning(format_server_error("not_found"))
        return Idle(reason="not_found")

    server_options = build_launch_parameters(server_path)
    watcher = context.host.create_file_system_watcher(KQL_FILE_GLOB)
    context.subscriptions.append(watcher)
    client_options = ClientOptions(
        document_selector=kql_document_selector(),
        file_events=watcher,
        formatting=settings.format_enabled,
        diagnostics=settings.diagnostics_enabled,
    )

    client = KqlLanguageClient(
        CLIENT_ID,
        CLIENT_NAME,
        server_options,
        client_options,
        context.host,
        debug=settings.lsp_debug,
        protocol_factory=context.protocol_factory,
    )
    startup = context.host.schedule(_start_session(context, client))

    register_commands(context)

    logger.info(f"KQL Language Server starting from {server_path}")
    return Running(session=client, startup=startup)


async def _start_session(context: ExtensionContext, client: KqlLanguageClient) -> StartResult:
    result = await client.start()
    if isinstance(result, LaunchFailed):
        context.host.show_error(format_server_error("start_failed", str(result.error)))
    else:
        logger.info("KQL Language Server started")
    return result


async def _startup_settled(startup: Any) -> None:
    if startup is None:
        return
    if isinstance(startup, concurrent.futures.Future):
        startup = asyncio.wrap_future(startup)
    await startup


async def deactivate(context: ExtensionContext, state: ControllerState) -> ControllerState:
    """Stop the session (if any) and dispose of everything activation registered.

    A start that is still in flight is allowed to finish first; it cannot be
    cancelled.
    """
    next_state = state
    try:
        if isinstance(state, Running):
            next_state = Stopped()
            await _startup_settled(state.startup)
            if state.session.is_running:
                await state.session.stop()
    finally:
        while context.subscriptions:
            context.subscriptions.pop().dispose()
    return next_state
