"""Shared test fixtures."""

import logging
from pathlib import Path

import pytest
import structlog

from threatscope.config import Settings, get_settings

USERS_ROUTE = """const express = require('express');
const router = express.Router();

router.get('/users/:id', async (req, res) => {
  const rows = await db.query("SELECT * FROM users WHERE id = " + req.params.id);
  res.json(rows);
});

module.exports = router;
"""

ENV_FILE = 'API_SECRET="supersecretvalue123"\n'


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep the developer's environment and .env out of every test."""
    for name in ('THREATSCOPE_API_KEY', 'OPENAI_API_KEY', 'THREATSCOPE_FORCE_OFFLINE', 'THREATSCOPE_MODEL',
                 'THREATSCOPE_LOG_LEVEL', 'THREATSCOPE_JSON_LOGS'):
        monkeypatch.delenv(name, raising=False)
    work_dir = tmp_path / 'cwd'
    work_dir.mkdir()
    monkeypatch.chdir(work_dir)
    get_settings.cache_clear()
    root = logging.getLogger()
    level = root.level
    yield
    get_settings.cache_clear()
    # Drop handlers installed by configure_logging so CLI tests don't leak
    for handler in list(root.handlers):
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter):
            root.removeHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def make_repo(tmp_path):
    """Factory writing {relative path: content} into a fresh directory."""
    def _make(files: dict, name: str = 'repo') -> Path:
        root = tmp_path / name
        root.mkdir()
        for rel_path, content in files.items():
            path = root / rel_path
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding='utf-8')
        return root
    return _make


@pytest.fixture
def sample_repo(make_repo):
    """An Express route with a concatenated SQL query and a secret in .env."""
    return make_repo({
        'routes/users.js': USERS_ROUTE,
        '.env': ENV_FILE,
    })


@pytest.fixture
def offline_settings():
    return Settings(force_offline=True)
