"""Session lifecycle hooks for the KQL language client."""

import logging
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

from gptme.hooks import HookType, register_hook
from gptme.message import Message

from ..runtime import get_plugin, shutdown_plugin

if TYPE_CHECKING:
    from gptme.logmanager import Log, LogManager
    from gptme.tools.base import ToolUse

logger = logging.getLogger(__name__)

KQL_EXTENSIONS = {".kql"}


def session_start_hook(
    logdir: Path,
    workspace: Path | None,
    initial_msgs: list[Message],
) -> Generator[Message, None, None]:
    """Activate the KQL plugin for this session.

    Yields any notification activation produced, e.g. the warning shown when
    no server binary could be found.
    """
    plugin = get_plugin(workspace)
    yield from plugin.messages()


def session_end_hook(
    logdir: Path,
    manager: "LogManager",
) -> Generator[Message, None, None]:
    """Stop the language server when the session ends."""
    shutdown_plugin()
    yield from ()


def post_save_hook(
    log: "Log",
    workspace: Path | None,
    tool_use: "ToolUse",
) -> Generator[Message, None, None]:
    """Report KQL files written by the save or patch tools to the server."""
    if tool_use.tool not in ("save", "patch"):
        return
    if not tool_use.args:
        return

    file = Path(tool_use.args[0])
    if file.suffix.lower() not in KQL_EXTENSIONS:
        return
    if not file.is_absolute() and workspace:
        file = workspace / file
    if not file.exists():
        return

    plugin = get_plugin(workspace)
    logger.debug(f"Reporting saved KQL file {file}")
    plugin.host.save_document(file)
    yield from plugin.messages()


def register() -> None:
    """Register KQL hooks with gptme."""
    logger.info("KQL plugin: Registering hooks")

    register_hook(
        name="kql.session_start",
        hook_type=HookType.SESSION_START,
        func=session_start_hook,
        priority=0,
    )
    register_hook(
        name="kql.session_end",
        hook_type=HookType.SESSION_END,
        func=session_end_hook,
        priority=0,
    )
    register_hook(
        name="kql.post_save",
        hook_type=HookType.TOOL_POST_EXECUTE,
        func=post_save_hook,
        priority=0,
    )

    logger.info("KQL plugin: Hooks registered")
