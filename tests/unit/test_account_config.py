import pytest

from core.config.settings import DhanSettings
from core.utils.exceptions import ConfigurationError
from services.account_config import (
    EnvAccountConfigProvider,
    StaticAccountConfigProvider,
    get_configuration_summary,
    validate_account_policy,
    validate_all_accounts,
)


@pytest.fixture
def environ():
    return {
        "DHAN_ACCESS_TOKEN_1": "tok-1",
        "DHAN_CLIENT_ID_1": "1100001",
        "AVAILABLE_FUNDS_1": "50000",
        "LEVERAGE_1": "5",
        "DHAN_ACCESS_TOKEN_3": "tok-3",
        "DHAN_CLIENT_ID_3": "1100003",
        "ALLOW_DUPLICATE_TICKERS_3": "true",
        "ENABLE_TRAILING_STOP_LOSS_3": "yes",
        "MIN_TRAIL_JUMP_3": "0.1",
        "REBASE_TP_AND_SL": "false",
        "REBASE_THRESHOLD_PERCENTAGE": "0.25",
        "DHAN_PRODUCT_TYPE": "CNC",
    }


class TestEnvAccountConfigProvider:
    async def test_loads_numbered_accounts(self, environ):
        accounts = await EnvAccountConfigProvider(environ).get_accounts()

        assert [a.account_id for a in accounts] == [1, 3]
        first, third = accounts
        assert first.client_id == "1100001"
        assert first.access_token.get_secret_value() == "tok-1"
        assert first.available_funds == 50000.0
        assert first.leverage == 5.0
        assert first.allow_duplicate_tickers is False
        assert third.available_funds == 20000.0
        assert third.allow_duplicate_tickers is True
        assert third.enable_trailing_stop is True
        assert third.min_trail_jump == 0.1

    async def test_global_settings_apply_to_every_account(self, environ):
        accounts = await EnvAccountConfigProvider(environ).get_accounts()
        for account in accounts:
            assert account.rebase_enabled is False
            assert account.rebase_threshold_pct == 0.25
            assert account.product_type == "CNC"
            assert account.order_type == "MARKET"

    async def test_defaults_from_dhan_settings(self):
        provider = EnvAccountConfigProvider(
            {"DHAN_ACCESS_TOKEN_1": "t", "DHAN_CLIENT_ID_1": "c"},
            dhan_settings=DhanSettings(order_type="LIMIT", exchange_segment="BSE_EQ"),
        )
        account = await provider.get_account(1)
        assert account.order_type == "LIMIT"
        assert account.exchange_segment == "BSE_EQ"
        assert account.rebase_enabled is True
        assert account.rebase_threshold_pct == 0.1

    async def test_legacy_single_account(self):
        provider = EnvAccountConfigProvider({
            "DHAN_ACCESS_TOKEN": "legacy",
            "DHAN_CLIENT_ID": "1000000",
            "AVAILABLE_FUNDS": "10000",
        })
        accounts = await provider.get_accounts()
        assert len(accounts) == 1
        assert accounts[0].account_id == 1
        assert accounts[0].available_funds == 10000.0

    async def test_numbered_accounts_take_precedence_over_legacy(self, environ):
        environ.update({"DHAN_ACCESS_TOKEN": "legacy", "DHAN_CLIENT_ID": "1000000"})
        accounts = await EnvAccountConfigProvider(environ).get_accounts()
        assert "1000000" not in [a.client_id for a in accounts]

    async def test_incomplete_account_is_ignored(self):
        provider = EnvAccountConfigProvider({"DHAN_ACCESS_TOKEN_2": "t"})
        assert await provider.get_accounts() == []

    async def test_lookup_by_id_and_client(self, environ):
        provider = EnvAccountConfigProvider(environ)
        assert (await provider.get_account(3)).client_id == "1100003"
        assert await provider.get_account(2) is None
        assert (await provider.get_account_by_client_id("1100001")).account_id == 1

    async def test_reads_environment_on_every_call(self, environ):
        provider = EnvAccountConfigProvider(environ)
        assert len(await provider.get_accounts()) == 2
        environ.update({"DHAN_ACCESS_TOKEN_2": "tok-2", "DHAN_CLIENT_ID_2": "1100002"})
        assert len(await provider.get_accounts()) == 3

    async def test_bad_number_raises(self, environ):
        environ["LEVERAGE_1"] = "five"
        with pytest.raises(ConfigurationError) as exc:
            await EnvAccountConfigProvider(environ).get_accounts()
        assert exc.value.config_field == "LEVERAGE_1"

    async def test_uses_process_environment_by_default(self, monkeypatch):
        monkeypatch.setenv("DHAN_ACCESS_TOKEN_1", "env-token")
        monkeypatch.setenv("DHAN_CLIENT_ID_1", "1200001")
        account = await EnvAccountConfigProvider().get_account(1)
        assert account.client_id == "1200001"


async def test_static_provider(make_policy):
    provider = StaticAccountConfigProvider([make_policy(2), make_policy(1, is_active=False)])
    assert [a.account_id for a in await provider.get_accounts()] == [1, 2]
    assert [a.account_id for a in await provider.get_accounts(active_only=True)] == [2]

    provider.set_account(make_policy(1))
    assert len(await provider.get_accounts(active_only=True)) == 2


class TestValidation:
    def test_default_policy_is_valid(self, make_policy):
        result = validate_account_policy(make_policy())
        assert result.is_valid
        assert result.errors == []

    @pytest.mark.parametrize("field,value,fragment", [
        ("access_token", "", "Access token is required"),
        ("available_funds", 0.0, "Available funds"),
        ("leverage", 11.0, "Leverage"),
        ("max_order_value", 500.0, "Maximum order value"),
        ("stop_loss_pct", 0.6, "Stop loss percentage"),
        ("target_pct", 0.0, "Target price percentage"),
        ("risk_on_capital", 6.0, "Risk on capital"),
        ("min_trail_jump", 0.01, "Minimum trail jump must be between"),
        ("min_trail_jump", 0.12, "multiple of 0.05"),
    ])
    def test_out_of_range_values(self, make_policy, field, value, fragment):
        result = validate_account_policy(make_policy(**{field: value}))
        assert not result.is_valid
        assert any(fragment in error for error in result.errors)
        assert result.errors[0].startswith("Account 1:")

    def test_no_accounts_is_invalid(self):
        result = validate_all_accounts([])
        assert not result.is_valid
        assert "No Dhan accounts configured" in result.errors[0]

    def test_errors_collected_per_account(self, make_policy):
        result = validate_all_accounts([make_policy(1), make_policy(2, leverage=0.5), make_policy(3, available_funds=-1)])
        assert not result.is_valid
        assert set(result.account_errors) == {2, 3}
        assert len(result.errors) == 2


def test_configuration_summary(make_policy):
    summary = get_configuration_summary([
        make_policy(1, available_funds=10000.0, leverage=2.0),
        make_policy(2, available_funds=30000.0, leverage=3.0, is_active=False),
    ])

    assert summary["total_accounts"] == 2
    assert summary["active_accounts"] == 1
    assert summary["total_available_funds"] == 40000.0
    assert summary["total_leveraged_funds"] == 110000.0
    assert all("access_token" not in row for row in summary["accounts"])
