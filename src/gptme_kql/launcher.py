"""Launch parameters for the language server process.

Both parameter sets run the same binary over stdio. The debug set adds
``--nolazy --inspect=6009`` to the server's own command line. Those are
inspector flags for a script runtime; a native ``kql-lsp`` build that does
not accept them fails to start, which is reported as a launch failure.
Only ``lsp.debug = true`` selects the debug set.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

DEBUG_PORT = 6009
DEBUG_EXEC_ARGS: tuple[str, ...] = ("--nolazy", f"--inspect={DEBUG_PORT}")


class TransportKind(str, Enum):
    STDIO = "stdio"


@dataclass(frozen=True)
class Executable:
    """How to spawn the server: executable, transport and extra arguments."""

    command: str
    transport: TransportKind = TransportKind.STDIO
    args: tuple[str, ...] = ()
    exec_args: tuple[str, ...] = ()

    def argv(self) -> list[str]:
        return [self.command, *self.exec_args, *self.args]


@dataclass(frozen=True)
class ServerOptions:
    """Parameter sets for normal and debug-attached runs."""

    run: Executable
    debug: Executable

    def select(self, debug: bool) -> Executable:
        return self.debug if debug else self.run


def build_launch_parameters(server_path: Path | str) -> ServerOptions:
    """Map a server path to its normal and debug launch parameters."""
    command = str(server_path)
    return ServerOptions(
        run=Executable(command=command, transport=TransportKind.STDIO),
        debug=Executable(
            command=command,
            transport=TransportKind.STDIO,
            exec_args=DEBUG_EXEC_ARGS,
        ),
    )
