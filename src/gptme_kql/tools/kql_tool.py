"""KQL tool for gptme - runs the KQL language client commands.

Actions:
- status: Show settings, the resolved server binary and the session state
- format: Format a KQL file through the language server
- tree: Show the syntax tree summary of a KQL file
- sql: Generate SQL from a KQL file
- diagnostics: Show the errors/warnings the server reported for a file
"""

import logging
import subprocess
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

from gptme.message import Message
from gptme.tools.base import Parameter, ToolSpec
from lsprotocol.types import DiagnosticSeverity

from ..commands import FORMAT_DOCUMENT_COMMAND, GENERATE_SQL_COMMAND, SHOW_SYNTAX_TREE_COMMAND
from ..config import format_server_error
from ..extension import Idle, Running
from ..resolver import resolve_server_path
from ..runtime import KqlPlugin, get_plugin

if TYPE_CHECKING:
    from gptme.commands import CommandContext
    from gptme.tools.base import ConfirmFunc

logger = logging.getLogger(__name__)

ACTION_COMMANDS: dict[str, str] = {
    "format": FORMAT_DOCUMENT_COMMAND,
    "tree": SHOW_SYNTAX_TREE_COMMAND,
    "sql": GENERATE_SQL_COMMAND,
}
FILE_ACTIONS = {*ACTION_COMMANDS, "diagnostics"}

USAGE = (
    "Usage: kql <action> [args]\n\n"
    "Actions:\n"
    "  status              - Show KQL language server status\n"
    "  format <file>       - Format a KQL file\n"
    "  tree <file>         - Show the syntax tree of a KQL file\n"
    "  sql <file>          - Generate SQL from a KQL file\n"
    "  diagnostics <file>  - Show errors/warnings for a KQL file"
)

_SEVERITY_EMOJI = {
    DiagnosticSeverity.Error: "❌",
    DiagnosticSeverity.Warning: "⚠️",
    DiagnosticSeverity.Information: "ℹ️",
    DiagnosticSeverity.Hint: "💡",
}


def _get_workspace() -> Path:
    """Get the current workspace directory."""
    # Try to find git root
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return Path(result.stdout.strip())
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"git workspace detection failed: {e}")

    # Fall back to current directory
    return Path.cwd()


def _resolve_file(target: str, workspace: Path) -> Path:
    file = Path(target)
    if not file.is_absolute():
        file = workspace / file
    return file


def _join(messages: list[Message]) -> str:
    return "\n".join(m.content for m in messages)


def _status(plugin: KqlPlugin) -> Message:
    lines = ["**KQL Status**\n"]
    context = plugin.context
    if context is None:
        return Message("system", "KQL plugin is not activated")

    settings = context.settings
    lines.append(f"LSP enabled: {'yes' if settings.lsp_enabled else 'no'}")
    lines.append(f"Configured path: {settings.lsp_path or '(auto-detect)'}")

    server_path = resolve_server_path(settings.lsp_path, context.roots, context.candidates)
    if server_path is not None and server_path.exists():
        lines.append(f"✅ Server: {server_path}")
    else:
        lines.append(f"❌ Server: {format_server_error('not_found')}")

    state = plugin.state
    if isinstance(state, Running):
        lines.append(f"Session: {state.session.state.value}")
    elif isinstance(state, Idle):
        lines.append(f"Session: none ({state.reason})")
    else:
        lines.append("Session: stopped")

    lines.append(f"\n**Workspace:** {plugin.workspace}")
    return Message("system", "\n".join(lines))


def _run_command(plugin: KqlPlugin, action: str, file: Path) -> Message:
    command = ACTION_COMMANDS[action]
    if not plugin.host.has_command(command):
        reason = plugin.state.reason if isinstance(plugin.state, Idle) else "stopped"
        return Message("system", f"KQL commands are unavailable ({reason}).")

    plugin.wait_for_startup()
    plugin.host.open_document(file)
    plugin.host.run(plugin.host.execute_command(command))
    messages = plugin.messages()
    if not messages:
        return Message("system", f"`kql {action}` produced no output for {file.name}")
    return Message("system", _join(messages))


def _diagnostics(plugin: KqlPlugin, file: Path) -> Message:
    plugin.wait_for_startup()
    session = plugin.session()
    if session is None or not session.is_running:
        return Message("system", "KQL language server is not running.")

    document = plugin.host.open_document(file)
    diagnostics = plugin.host.run(session.wait_for_diagnostics(document.uri))
    if not diagnostics:
        return Message("system", f"**Diagnostics for {file.name}**\n\n✅ No errors or warnings found.")

    lines = []
    for diag in diagnostics:
        emoji = _SEVERITY_EMOJI.get(diag.severity or DiagnosticSeverity.Error, "ℹ️")
        lines.append(f"{emoji} Line {diag.range.start.line + 1}: {diag.message}")
    return Message("system", f"**Diagnostics for {file.name}**\n\n" + "\n".join(lines))


def execute(
    code: str | None,
    args: list[str] | None,
    kwargs: dict[str, str] | None,
    confirm: "ConfirmFunc",
) -> Message:
    """Execute the KQL tool.

    Usage:
        kql status              - Show KQL language server status
        kql format <file>       - Format a KQL file
        kql tree <file>         - Show the syntax tree of a KQL file
        kql sql <file>          - Generate SQL from a KQL file
        kql diagnostics <file>  - Show errors/warnings for a KQL file
    """
    if not args:
        return Message("system", USAGE)

    action = args[0].lower()
    if action != "status" and action not in FILE_ACTIONS:
        return Message(
            "system",
            f"Unknown action: {action}\n\n"
            "Available actions: status, format, tree, sql, diagnostics",
        )

    plugin = get_plugin(_get_workspace())
    if action == "status":
        return _status(plugin)

    if len(args) < 2:
        return Message("system", f"Usage: kql {action} <file>")
    file = _resolve_file(args[1], plugin.workspace)
    if not file.exists():
        return Message("system", f"Error: File not found: {file}")
    if action == "diagnostics":
        return _diagnostics(plugin, file)
    return _run_command(plugin, action, file)


def _kql_command(ctx: "CommandContext") -> Generator[Message, None, None]:
    """Handler for /kql command.

    Usage:
        /kql                 - Show status of the KQL language server
        /kql format <file>   - Format a KQL file
    """
    args = ctx.args if ctx.args else ["status"]
    yield execute(code=None, args=args, kwargs=None, confirm=ctx.confirm)


tool = ToolSpec(
    name="kql",
    desc="KQL language server integration: status, format, syntax tree and SQL generation",
    instructions="""Use the KQL tool to work with .kql files through the kql-lsp language server.

**Commands:**
- `kql status` - Check whether the KQL language server was found and started
- `kql format <file>` - Format a KQL file in place
- `kql tree <file>` - Show the syntax tree summary of a KQL file
- `kql sql <file>` - Generate SQL from a KQL file
- `kql diagnostics <file>` - Show errors/warnings reported by the server

The server binary is found automatically, or set `plugin.kql.lsp.path` in gptme.toml.
""",
    execute=execute,
    block_types=["kql"],
    parameters=[
        Parameter(
            name="action",
            type="string",
            description="Action: status, format, tree, sql, diagnostics",
            required=True,
        ),
        Parameter(
            name="target",
            type="string",
            description="Path of the KQL file for file actions",
            required=False,
        ),
    ],
    commands={"kql": _kql_command},
)
