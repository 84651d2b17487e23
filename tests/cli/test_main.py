"""
Test main CLI functionality
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from vectorsync.cli.main import cli

CONFIG_ENV_VARS = ("OPENAI_API_KEY", "VECTORSYNC_CONFIG_PATH", "MONGODB_URI", "VECTOR_INDEX_BACKEND")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def patched_store(invoice_store):
    """Route every CLI command to the in-memory invoice store."""
    factory = lambda config: invoice_store  # noqa: E731
    with patch("vectorsync.cli.commands.discover.MongoDocumentStore", factory), \
            patch("vectorsync.cli.commands.backfill.MongoDocumentStore", factory), \
            patch("vectorsync.cli.commands.run.MongoDocumentStore", factory):
        yield invoice_store


class InstantKiller:
    """Signal waiter that returns immediately."""

    received_signal = 0

    def install(self):
        pass

    def uninstall(self):
        pass

    async def wait(self):
        return None


def test_cli_help():
    """Test main CLI help display"""
    runner = CliRunner()
    result = runner.invoke(cli, ['--help'])

    assert result.exit_code == 0
    assert 'MongoDB to vector index synchronization' in result.output


def test_cli_version():
    """Test CLI version display"""
    runner = CliRunner()
    result = runner.invoke(cli, ['--version'])

    assert result.exit_code == 0
    assert '1.0.0' in result.output


def test_cli_no_color_flag():
    """Test no-color flag parsing"""
    runner = CliRunner()
    result = runner.invoke(cli, ['--no-color', '--help'])

    assert result.exit_code == 0


def test_cli_subcommands_available():
    """Test that all expected subcommands are available"""
    runner = CliRunner()
    result = runner.invoke(cli, ['--help'])

    assert result.exit_code == 0
    for command in ('run', 'discover', 'backfill'):
        assert command in result.output


def test_discover_json(patched_store):
    """Test discovery output without credentials"""
    runner = CliRunner()
    result = runner.invoke(cli, ['--no-color', 'discover', '--json'])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output[result.output.index('{'):])
    assert list(payload) == ['paintInvoice']
    assert payload['paintInvoice']['source_collection'] == 'invoices'


def test_discover_table(patched_store):
    runner = CliRunner()
    result = runner.invoke(cli, ['--no-color', 'discover'])

    assert result.exit_code == 0, result.output
    assert 'paintInvoice' in result.output


def test_backfill_dry_run(patched_store):
    """Test a dry run needs no API key and writes nothing"""
    runner = CliRunner()
    result = runner.invoke(cli, ['--no-color', 'backfill', '--dry-run'])

    assert result.exit_code == 0, result.output
    assert 'Backfill Report (dry run)' in result.output
    assert 'documentvectors' not in patched_store.collections


def test_backfill_requires_api_key(patched_store):
    runner = CliRunner()
    result = runner.invoke(cli, ['backfill'])

    assert result.exit_code == 1
    assert 'OPENAI_API_KEY' in result.output


def test_run_requires_api_key():
    """Test the pipeline refuses to start without embedding credentials"""
    runner = CliRunner()
    result = runner.invoke(cli, ['run'])

    assert result.exit_code == 1
    assert 'OPENAI_API_KEY' in result.output


def test_run_starts_and_stops(patched_store, monkeypatch):
    """Test run opens the change streams and shuts down on signal"""
    monkeypatch.setenv('OPENAI_API_KEY', 'sk-test')
    monkeypatch.setenv('VECTOR_MONITORING_ENABLED', 'false')

    runner = CliRunner()
    with patch('vectorsync.cli.commands.run.GracefulKiller', InstantKiller):
        result = runner.invoke(cli, ['--no-color', 'run'])

    assert result.exit_code == 0, result.output
    assert 'Pipeline stopped cleanly' in result.output
    assert patched_store.watch_calls.get('invoices', 0) <= 1


def test_missing_config_file_ignored(patched_store, tmp_path):
    runner = CliRunner()
    result = runner.invoke(
        cli, ['--config', str(tmp_path / 'absent.yaml'), 'discover', '--json']
    )

    assert result.exit_code == 0, result.output
