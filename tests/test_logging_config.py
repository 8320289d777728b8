"""Tests for structured logging configuration."""

import io
import json
import logging

import structlog
from click.testing import CliRunner

from threatscope.cli import cli
from threatscope.logging_config import NOISY_LOGGERS, bind_run_context, configure_logging


def _records(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_json_output_renders_stdlib_records():
    stream = io.StringIO()
    configure_logging('debug', json_output=True, stream=stream)
    logging.getLogger('threatscope.pipeline').debug('Collected %d files from %s', 3, 'repo')

    record = _records(stream)[-1]
    assert record['event'] == 'Collected 3 files from repo'
    assert record['level'] == 'debug'
    assert record['logger'] == 'threatscope.pipeline'
    assert 'timestamp' in record


def test_run_context_is_merged_into_records():
    stream = io.StringIO()
    configure_logging('info', json_output=True, stream=stream)
    bind_run_context('acme/shop', 'STRIDE')
    logging.getLogger('threatscope.synthesis').warning('No API key configured')

    record = _records(stream)[-1]
    assert (record['source'], record['framework']) == ('acme/shop', 'STRIDE')


def test_level_filters_records():
    stream = io.StringIO()
    configure_logging('warning', stream=stream)
    logger = logging.getLogger('threatscope.collector')
    logger.info('hidden')
    logger.warning('shown')

    assert logging.getLogger().level == logging.WARNING
    assert 'hidden' not in stream.getvalue()
    assert 'shown' in stream.getvalue()


def test_unknown_level_falls_back_to_warning():
    configure_logging('loud', stream=io.StringIO())
    assert logging.getLogger().level == logging.WARNING


def test_reconfiguring_replaces_the_handler():
    configure_logging('info', stream=io.StringIO())
    configure_logging('debug', json_output=True, stream=io.StringIO())
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, structlog.stdlib.ProcessorFormatter)


def test_noisy_loggers_are_quieted():
    configure_logging('debug', stream=io.StringIO())
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_cli_json_logs_flag(sample_repo):
    result = CliRunner().invoke(cli, ['scan', str(sample_repo), '--json-logs', '-v'])
    assert result.exit_code == 0, result.output
    assert 'Found 2 finding(s):' in result.output

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h.formatter, structlog.stdlib.ProcessorFormatter) for h in root.handlers)


def test_cli_reads_log_level_from_settings(sample_repo, monkeypatch):
    monkeypatch.setenv('THREATSCOPE_LOG_LEVEL', 'error')
    result = CliRunner().invoke(cli, ['scan', str(sample_repo)])
    assert result.exit_code == 0
    assert logging.getLogger().level == logging.ERROR
