from __future__ import annotations

from pathlib import Path

import pytest

from deployment_orchestrator.config import DAY, MONTH, DeploymentConfig, parse_quantity
from deployment_orchestrator.errors import ConfigError
from deployment_orchestrator.planner import build_plan, lint_plan

EXAMPLE = Path(__file__).resolve().parents[1] / "config" / "deployment.example.yaml"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("4 months", 4 * MONTH),
        ("1 day", DAY),
        ("0.5 ether", 5 * 10**17),
        ("2 gwei", 2 * 10**9),
        (1000000, 1000000),
        ("0x3877188e9e5da25b11fdb7f5e8d4fdddce2d22707ba04878a8e14700dd46fa82", None),
        ("WeightedPoolFactory", None),
    ],
)
def test_parse_quantity(raw, expected):
    assert parse_quantity(raw) == (raw if expected is None else expected)


def test_fractional_base_units_are_rejected():
    with pytest.raises(ConfigError):
        parse_quantity("0.5 wei")


def test_load_applies_environment_overrides(tmp_path, write_config):
    path = write_config()
    config = DeploymentConfig.load(
        path,
        environ={"DEPLOYER_RPC_URL": "http://127.0.0.1:8545", "DEPLOYER_CHAIN_ID": "296", "DEPLOYER_OUTPUT_DIR": "out"},
    )
    assert config.network.rpc_url == "http://127.0.0.1:8545"
    assert config.network.chain_id == 296
    assert config.output_directory() == (tmp_path / "out").resolve()
    assert config.artifact_root() == (tmp_path / "artifacts").resolve()
    assert config.parameter("swapFee") == 5 * 10**17


def test_invalid_configuration_raises_config_error(tmp_path, config_data):
    with pytest.raises(ConfigError):
        DeploymentConfig.from_mapping({"network": {}}, base_path=tmp_path, environ={})
    with pytest.raises(ConfigError):
        DeploymentConfig.from_mapping(config_data(), base_path=tmp_path, environ={"DEPLOYER_CHAIN_ID": "abc"})
    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        DeploymentConfig.load(bad, environ={})


def test_unknown_parameter_is_an_error(make_config):
    with pytest.raises(ConfigError):
        make_config().parameter("missing")


def test_snapshot_leaves_out_connection_details(make_config):
    config = make_config(network={"name": "testnet", "chain_id": 1, "rpc_url": "http://secret"})
    snapshot = config.snapshot()
    assert snapshot["network"] == {"name": "testnet", "chain_id": 1}
    assert "http://secret" not in repr(snapshot)


def test_example_configuration_builds_a_clean_plan():
    config = DeploymentConfig.load(EXAMPLE, environ={})
    assert config.network.chain_id == 296
    assert config.parameter("pauseWindowDuration") == 4 * MONTH
    assert config.parameter("factoryPauseWindow") == 48 * MONTH
    plan = build_plan(config)
    assert plan.step_ids()[:4] == ["deploy-vault-factory", "predict-vault", "deploy-protocol-fee-controller", "create-vault"]
    assert plan.step_ids()[-1] == "register-weighted-pool-factory"
    assert lint_plan(plan) == []
    vault_prediction = plan.steps[1]
    assert vault_prediction.call == "getDeploymentAddress"
    assert vault_prediction.code is None
