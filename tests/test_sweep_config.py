from decimal import Decimal

import pytest

from funds_sweep.sweep_config import DEFAULT_RPC_ENDPOINTS, load_config

from tests.conftest import TEST_PRIVATE_KEY


def test_defaults_without_file_or_env(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"), environ={})

    assert config.private_key is None
    assert config.port == 3000
    assert config.rpc_endpoints == DEFAULT_RPC_ENDPOINTS
    assert config.fee_reserve_eth == Decimal("0.002")
    assert config.default_amount_eth == Decimal("0.01")
    assert config.probe_timeout_seconds == 5.0


def test_file_values_then_env_overrides(tmp_path):
    path = tmp_path / "sweep_config.yaml"
    path.write_text(
        "port: 8080\n"
        "rpc_endpoints:\n"
        "  - http://a\n"
        "  - http://b\n"
        "fee_reserve_eth: '0.003'\n"
        "unknown_setting: 1\n"
    )

    config = load_config(str(path), environ={
        "PORT": "9000",
        "RPC_ENDPOINTS": "http://c, http://d,",
        "TREASURY_ADDRESS": "0xabc",
    })

    assert config.port == 9000
    assert config.rpc_endpoints == ("http://c", "http://d")
    assert config.fee_reserve_eth == Decimal("0.003")
    assert config.default_destination == "0xabc"
    assert config.extra == {"unknown_setting": 1}


def test_broken_yaml_falls_back_to_defaults(tmp_path):
    path = tmp_path / "sweep_config.yaml"
    path.write_text("port: [unclosed\n")

    config = load_config(str(path), environ={})

    assert config.port == 3000


@pytest.mark.parametrize("env", [
    {"FEE_RESERVE_ETH": "lots"},
    {"FEE_RESERVE_ETH": "-1"},
    {"PROBE_TIMEOUT_SECONDS": "0"},
    {"PORT": "http"},
    {"RPC_ENDPOINTS": " , "},
    {"PRIVATE_KEY": "0xsecret"},
])
def test_invalid_values_rejected(tmp_path, env):
    with pytest.raises(ValueError):
        load_config(str(tmp_path / "missing.yaml"), environ=env)


def test_redacted_hides_private_key(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"), environ={"PRIVATE_KEY": TEST_PRIVATE_KEY})

    assert config.private_key == TEST_PRIVATE_KEY
    assert config.redacted()["private_key"] == "***"
    assert TEST_PRIVATE_KEY not in str(config.redacted())


def test_malformed_private_key_error_names_the_setting_not_the_key(tmp_path):
    with pytest.raises(ValueError) as exc_info:
        load_config(str(tmp_path / "missing.yaml"), environ={"PRIVATE_KEY": "0xdeadbeef"})

    assert "PRIVATE_KEY" in str(exc_info.value)
    assert "deadbeef" not in str(exc_info.value)
