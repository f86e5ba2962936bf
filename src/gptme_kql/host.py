"""Host-side types the language client and commands are written against.

The host is whatever process embeds the plugin (gptme, or a test double):
it shows notifications, tracks the active document, runs commands and owns
the event loop that protocol traffic runs on.
"""

import logging
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import unquote, urlparse

from lsprotocol import types

logger = logging.getLogger(__name__)

KQL_LANGUAGE_ID = "kql"
FORMAT_DOCUMENT = "editor.action.formatDocument"

# Extension to language id mapping
LANGUAGE_IDS: dict[str, str] = {
    ".kql": KQL_LANGUAGE_ID,
    ".sql": "sql",
    ".py": "python",
    ".json": "json",
    ".md": "markdown",
}


class CommandNotFoundError(LookupError):
    pass


@dataclass
class TextDocument:
    """An open document as the host sees it."""

    uri: str
    language_id: str
    text: str
    version: int = 1

    @classmethod
    def from_path(cls, path: Path, version: int = 1) -> "TextDocument":
        path = path.resolve()
        return cls(
            uri=path.as_uri(),
            language_id=LANGUAGE_IDS.get(path.suffix.lower(), "plaintext"),
            text=path.read_text(),
            version=version,
        )

    @classmethod
    def untitled(cls, name: str, text: str, language_id: str = KQL_LANGUAGE_ID) -> "TextDocument":
        return cls(uri=f"untitled:{name}", language_id=language_id, text=text)

    @property
    def scheme(self) -> str:
        return urlparse(self.uri).scheme

    @property
    def path(self) -> Path | None:
        if self.scheme != "file":
            return None
        return Path(unquote(urlparse(self.uri).path))


class Disposable:
    """Runs a cleanup callback once when disposed."""

    def __init__(self, callback: Callable[[], None]):
        self._callback: Callable[[], None] | None = callback

    def dispose(self) -> None:
        if self._callback is not None:
            callback, self._callback = self._callback, None
            callback()


class DocumentEventKind(str, Enum):
    OPEN = "open"
    CHANGE = "change"
    SAVE = "save"
    CLOSE = "close"


@dataclass(frozen=True)
class DocumentEvent:
    kind: DocumentEventKind
    document: TextDocument


CommandHandler = Callable[..., Awaitable[Any]]
FormattingProvider = Callable[[TextDocument], Awaitable[Sequence[types.TextEdit]]]
DocumentListener = Callable[[DocumentEvent], None]


class FileWatcher(Protocol):
    def on_did_change(self, listener: Callable[..., None]) -> Disposable: ...

    def start(self) -> None: ...

    def dispose(self) -> None: ...


class Host(Protocol):
    """Operations the plugin needs from its host process."""

    workspace: Path

    def show_information(self, message: str) -> None: ...

    def show_warning(self, message: str) -> None: ...

    def show_error(self, message: str) -> None: ...

    def active_document(self) -> TextDocument | None: ...

    def register_command(self, command: str, handler: CommandHandler) -> Disposable: ...

    async def execute_command(self, command: str, *args: Any) -> Any: ...

    def register_document_formatting_provider(
        self, language_id: str, provider: FormattingProvider
    ) -> Disposable: ...

    def on_did_change_document(self, listener: DocumentListener) -> Disposable: ...

    def create_file_system_watcher(self, glob: str) -> FileWatcher: ...

    def schedule(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Hand a coroutine to the host event loop and return its future."""
        ...


def _offset(lines: list[str], position: types.Position) -> int:
    line = min(position.line, len(lines))
    offset = sum(len(text) for text in lines[:line])
    if line < len(lines):
        content = lines[line].rstrip("\r\n")
        offset += min(position.character, len(content))
    return offset


def apply_text_edits(text: str, edits: Sequence[types.TextEdit]) -> str:
    """Apply LSP text edits to a string.

    Edits are applied from the end of the document backwards so earlier
    offsets stay valid.
    """
    lines = text.splitlines(keepends=True)
    spans = [
        (_offset(lines, edit.range.start), _offset(lines, edit.range.end), edit.new_text)
        for edit in edits
    ]
    for start, end, new_text in sorted(spans, key=lambda s: (s[0], s[1]), reverse=True):
        text = text[:start] + new_text + text[end:]
    return text
