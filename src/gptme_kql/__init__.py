"""KQL language server integration plugin for gptme.

This plugin locates the `kql-lsp` language server, launches it over stdio and
exposes KQL commands (format, syntax tree, SQL generation) to gptme.
"""

__version__ = "0.1.0"
