import os

import pytest
from click.testing import CliRunner

from cli import cli


@pytest.fixture
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("DHAN_") or key.startswith("ACTIVE_BROKER"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LOGGING__LEVEL", "ERROR")
    return monkeypatch


def test_size_previews_each_account(clean_env):
    clean_env.setenv("DHAN_ACCESS_TOKEN_1", "tok-1")
    clean_env.setenv("DHAN_CLIENT_ID_1", "1100001")
    clean_env.setenv("MAX_ORDER_VALUE_1", "50000")

    result = CliRunner().invoke(cli, ["size", "2500"])

    assert result.exit_code == 0, result.output
    assert '"final_quantity": 8' in result.output
    assert '"client_id": "1100001"' in result.output
    assert "tok-1" not in result.output


def test_size_without_accounts(clean_env):
    result = CliRunner().invoke(cli, ["size", "2500"])
    assert result.exit_code == 0
    assert "No accounts configured" in result.output


def test_accounts_reports_invalid_configuration(clean_env):
    clean_env.setenv("DHAN_ACCESS_TOKEN_1", "tok-1")
    clean_env.setenv("DHAN_CLIENT_ID_1", "1100001")
    clean_env.setenv("LEVERAGE_1", "50")

    result = CliRunner().invoke(cli, ["accounts"])

    assert result.exit_code == 1
    assert "Leverage must be between 1x and 10x" in result.output
    assert "Account configuration is invalid" in result.output


def test_rebase_unknown_account(clean_env):
    result = CliRunner().invoke(cli, ["rebase", "--account", "4"])
    assert result.exit_code == 1
    assert "Account 4 is not configured" in result.output
