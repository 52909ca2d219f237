"""Tests for the service entry point (uvicorn is never started)."""

import sys

import pytest
from loguru import logger

import funds_sweep.__main__ as entry

from tests.conftest import TEST_PRIVATE_KEY


@pytest.fixture(autouse=True)
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.__stderr__)


@pytest.fixture
def served(monkeypatch):
    runs = []
    monkeypatch.setattr(entry.uvicorn, "run", lambda app, **kwargs: runs.append(kwargs))
    return runs


def _unset(monkeypatch, name):
    # setenv first so teardown removes whatever .env loading put there
    monkeypatch.setenv(name, "")
    monkeypatch.delenv(name)


def test_dotenv_in_working_directory_is_loaded(tmp_path, monkeypatch, served):
    (tmp_path / ".env").write_text(f"PORT=9100\nPRIVATE_KEY={TEST_PRIVATE_KEY}\n")
    monkeypatch.chdir(tmp_path)
    _unset(monkeypatch, "PORT")
    _unset(monkeypatch, "PRIVATE_KEY")

    entry.main([str(tmp_path / "missing.yaml")])

    assert served[0]["port"] == 9100


def test_real_environment_beats_dotenv(tmp_path, monkeypatch, served):
    (tmp_path / ".env").write_text("PORT=9100\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PORT", "9200")

    entry.main([str(tmp_path / "missing.yaml")])

    assert served[0]["port"] == 9200


def test_malformed_private_key_exits_cleanly(tmp_path, monkeypatch, served):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PRIVATE_KEY", "0xnothex")

    with pytest.raises(SystemExit) as exc_info:
        entry.main([str(tmp_path / "missing.yaml")])

    assert exc_info.value.code == 2
    assert served == []
