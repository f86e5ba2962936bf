"""KQL commands exposed to the host.

Every command first checks that the active document is a KQL document and
does nothing otherwise.
"""

import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import TYPE_CHECKING

from .host import FORMAT_DOCUMENT, KQL_LANGUAGE_ID, Host, TextDocument

if TYPE_CHECKING:
    from .extension import ExtensionContext

logger = logging.getLogger(__name__)

FORMAT_DOCUMENT_COMMAND = "kql.formatDocument"
SHOW_SYNTAX_TREE_COMMAND = "kql.showSyntaxTree"
GENERATE_SQL_COMMAND = "kql.generateSQL"


def _active_kql_document(host: Host) -> TextDocument | None:
    document = host.active_document()
    if document is None or document.language_id != KQL_LANGUAGE_ID:
        return None
    return document


async def format_document(host: Host) -> None:
    if _active_kql_document(host) is None:
        return
    await host.execute_command(FORMAT_DOCUMENT)


async def show_syntax_tree(host: Host) -> None:
    # Placeholder until the server exposes a syntax tree request
    document = _active_kql_document(host)
    if document is None:
        return
    host.show_information(f"KQL document length: {len(document.text)} characters")


async def generate_sql(host: Host) -> None:
    # Placeholder
    if _active_kql_document(host) is None:
        return
    host.show_information("SQL generation would be implemented here")


COMMANDS: dict[str, Callable[[Host], Awaitable[None]]] = {
    FORMAT_DOCUMENT_COMMAND: format_document,
    SHOW_SYNTAX_TREE_COMMAND: show_syntax_tree,
    GENERATE_SQL_COMMAND: generate_sql,
}


def register_commands(context: "ExtensionContext") -> None:
    for command, handler in COMMANDS.items():
        context.subscriptions.append(
            context.host.register_command(command, partial(handler, context.host))
        )
    logger.debug(f"Registered {len(COMMANDS)} KQL commands")
