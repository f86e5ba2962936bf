"""Tests for the KQL commands."""

import pytest

from gptme_kql.commands import (
    COMMANDS,
    FORMAT_DOCUMENT_COMMAND,
    GENERATE_SQL_COMMAND,
    SHOW_SYNTAX_TREE_COMMAND,
    register_commands,
)
from gptme_kql.config import KqlSettings
from gptme_kql.extension import ExtensionContext
from gptme_kql.host import FORMAT_DOCUMENT, TextDocument


@pytest.fixture
def context(host):
    ctx = ExtensionContext(host=host, settings=KqlSettings())
    register_commands(ctx)
    return ctx


def test_register_commands(host, context):
    assert set(host.commands) == {
        FORMAT_DOCUMENT_COMMAND,
        SHOW_SYNTAX_TREE_COMMAND,
        GENERATE_SQL_COMMAND,
    }
    assert len(context.subscriptions) == len(COMMANDS)


def test_disposing_subscriptions_unregisters(host, context):
    for subscription in context.subscriptions:
        subscription.dispose()
    assert host.commands == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("command", list(COMMANDS))
async def test_no_active_document_is_a_noop(host, context, command):
    await host.commands[command]()

    assert host.notifications == []
    assert host.executed == []


@pytest.mark.asyncio
@pytest.mark.parametrize("command", list(COMMANDS))
async def test_non_kql_document_is_a_noop(host, context, command, tmp_path):
    script = tmp_path / "script.py"
    script.write_text("print('hi')\n")
    host.document = TextDocument.from_path(script)

    await host.commands[command]()

    assert host.notifications == []
    assert host.executed == []


@pytest.mark.asyncio
async def test_show_syntax_tree_reports_length(host, context, kql_file):
    host.document = TextDocument.from_path(kql_file)

    await host.commands[SHOW_SYNTAX_TREE_COMMAND]()

    assert host.notifications == [("info", "KQL document length: 23 characters")]


@pytest.mark.asyncio
async def test_show_syntax_tree_untitled(host, context):
    host.document = TextDocument.untitled("Untitled-1", "")

    await host.commands[SHOW_SYNTAX_TREE_COMMAND]()

    assert host.notifications == [("info", "KQL document length: 0 characters")]


@pytest.mark.asyncio
async def test_generate_sql(host, context, kql_file):
    host.document = TextDocument.from_path(kql_file)

    await host.commands[GENERATE_SQL_COMMAND]()

    assert host.notifications == [("info", "SQL generation would be implemented here")]


@pytest.mark.asyncio
async def test_format_delegates_to_host(host, context, kql_file):
    host.document = TextDocument.from_path(kql_file)

    await host.execute_command(FORMAT_DOCUMENT_COMMAND)

    assert host.executed == [FORMAT_DOCUMENT_COMMAND, FORMAT_DOCUMENT]
    assert host.notifications == []
