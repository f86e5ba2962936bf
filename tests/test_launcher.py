"""Tests for server launch parameters."""

from pathlib import Path

from gptme_kql.launcher import DEBUG_EXEC_ARGS, TransportKind, build_launch_parameters


def test_normal_and_debug_share_path_and_transport():
    options = build_launch_parameters(Path("/opt/kql-lsp"))

    assert options.run.command == options.debug.command == "/opt/kql-lsp"
    assert options.run.transport is options.debug.transport is TransportKind.STDIO


def test_only_debug_carries_inspection_flags():
    options = build_launch_parameters("/opt/kql-lsp")

    assert options.run.argv() == ["/opt/kql-lsp"]
    assert options.debug.exec_args == DEBUG_EXEC_ARGS
    assert options.debug.argv() == ["/opt/kql-lsp", "--nolazy", "--inspect=6009"]


def test_select():
    options = build_launch_parameters("/opt/kql-lsp")
    assert options.select(debug=False) is options.run
    assert options.select(debug=True) is options.debug
