"""Process-wide plugin state for a gptme session.

gptme has no activation entry point of its own, so the session hooks and the
``kql`` tool share one ``KqlPlugin``, which holds the host, the extension
context and the controller state between the two lifecycle calls.
"""

import logging
from pathlib import Path

from gptme.message import Message

from .client import KqlLanguageClient
from .config import load_settings
from .extension import ControllerState, ExtensionContext, Idle, Running, activate, deactivate
from .gptme_host import GptmeHost

logger = logging.getLogger(__name__)

DEACTIVATE_TIMEOUT = 15.0  # seconds
STARTUP_TIMEOUT = 15.0  # seconds

_LEVEL_PREFIX = {"info": "ℹ️", "warning": "⚠️", "error": "❌"}


class KqlPlugin:
    """Runs the KQL activation once and tears it down at session end."""

    def __init__(self, workspace: Path):
        self.workspace = workspace
        self.host = GptmeHost(workspace)
        self.context: ExtensionContext | None = None
        self.state: ControllerState = Idle(reason="not activated")

    @property
    def activated(self) -> bool:
        return self.context is not None

    def activate(self) -> ControllerState:
        if self.context is not None:
            logger.debug("KQL plugin already activated")
            return self.state

        logger.info(f"Activating KQL plugin in {self.workspace}")
        self.host.start()
        self.context = ExtensionContext(host=self.host, settings=load_settings(self.workspace))
        self.state = activate(self.context)
        return self.state

    def deactivate(self) -> ControllerState:
        if self.context is None:
            return self.state

        future = self.host.schedule(deactivate(self.context, self.state))
        try:
            self.state = future.result(timeout=DEACTIVATE_TIMEOUT)
        finally:
            self.host.close()
        logger.info("KQL plugin deactivated")
        return self.state

    def session(self) -> KqlLanguageClient | None:
        """The client session, when activation created one."""
        if isinstance(self.state, Running):
            return self.state.session
        return None

    def wait_for_startup(self, timeout: float = STARTUP_TIMEOUT) -> None:
        """Block until the background client start has finished."""
        if isinstance(self.state, Running) and self.state.startup is not None:
            self.state.startup.result(timeout=timeout)

    def messages(self) -> list[Message]:
        """Turn queued host notifications into gptme system messages."""
        return [
            Message("system", f"{_LEVEL_PREFIX.get(level, '')} {text}".strip())
            for level, text in self.host.drain_notifications()
        ]


_plugin: KqlPlugin | None = None


def get_plugin(workspace: Path | None = None) -> KqlPlugin:
    """Return the session's plugin, creating and activating it on first use."""
    global _plugin
    if _plugin is None:
        _plugin = KqlPlugin(workspace or Path.cwd())
    if not _plugin.activated:
        _plugin.activate()
    return _plugin


def shutdown_plugin() -> ControllerState | None:
    """Deactivate and forget the session's plugin, if any."""
    global _plugin
    if _plugin is None:
        return None
    plugin, _plugin = _plugin, None
    return plugin.deactivate()
