"""KQL tools for gptme.

The tool is automatically discovered by gptme's plugin system.
"""

from .kql_tool import tool

__all__ = ["tool"]
