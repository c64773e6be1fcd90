"""Shared fixtures for rext tests."""

import json

import pytest
from click.testing import CliRunner

from rext import core
from rext.executor import RequestResult
from rext.runner import Runner
from rext.variables import VariableStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def store():
    return VariableStore()


@pytest.fixture
def engine(store):
    """Runner that records retry sleeps instead of sleeping."""
    sleeps = []
    eng = Runner(store, sleep=sleeps.append)
    eng.sleeps = sleeps
    return eng


@pytest.fixture
def global_rext_dir(tmp_path, monkeypatch):
    """Override the global ~/.rext directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".rext"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    monkeypatch.setattr(core, "GLOBAL_VARIABLES_FILE", fake_global / "globals.json")
    return fake_global


@pytest.fixture(autouse=True)
def isolate_history(tmp_path, monkeypatch):
    """Prevent tests from polluting ~/.rext_history.json."""
    from rext import cli

    monkeypatch.setattr(cli, "HISTORY_FILE", tmp_path / "test_history.json")


def make_request_result(
    status_code=200,
    body=None,
    headers=None,
    elapsed_ms=42.0,
    error=None,
    raw_text="",
    set_cookies=None,
):
    """Factory for mock RequestResult objects."""
    r = RequestResult()
    r.status_code = status_code
    r.headers = headers or {}
    r.body = body
    r.elapsed_ms = elapsed_ms
    r.error = error
    r.set_cookies = set_cookies or []
    r.raw_text = raw_text or (
        json.dumps(body) if isinstance(body, dict | list) else str(body or "")
    )
    return r


def transport_error(message="Connection error: refused"):
    return make_request_result(status_code=0, error=message)
