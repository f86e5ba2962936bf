"""KQL hooks for gptme.

Provides hooks that activate the language client at session start, stop it
at session end, and report saved KQL files to the server.
"""

from .session import register

__all__ = ["register"]
