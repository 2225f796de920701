from __future__ import annotations

import copy

import pytest
from eth_utils import keccak

from deployment_orchestrator.errors import (
    AddressPredictionMismatch,
    DuplicateComponentName,
    ExecutionReverted,
    ExecutionTimeout,
    FollowUpFailed,
    StepFailed,
    UnresolvedDependency,
)
from deployment_orchestrator.ledger import Ledger
from deployment_orchestrator.planner import build_plan
from deployment_orchestrator.predictor import predict

from conftest import BASE_STEP_IDS, BASE_STEPS, SALT


def test_steps_execute_in_the_given_order(make_config, make_runner, chain):
    config = make_config()
    result = make_runner(config).run(build_plan(config))

    assert result.executed == BASE_STEP_IDS
    assert result.skipped == []
    assert [(entry.operation, entry.label) for entry in chain.journal if entry.operation != "read"] == [
        ("deploy", "Authorizer"),
        ("deploy", "VaultFactory"),
        ("deploy", "ProtocolFeeController"),
        ("create", "Vault"),
        ("invoke", "grantRole"),
        ("invoke", "setProtocolFeeController"),
    ]
    manifest = result.manifest
    assert manifest.status == "complete"
    assert list(manifest.components) == ["Authorizer", "VaultFactory", "ProtocolFeeController", "Vault", "VaultAdmin"]
    assert manifest.completed_steps == BASE_STEP_IDS
    assert manifest.chain_id == chain.chain_id
    assert manifest.deployer == chain.deployer


def test_reversed_independent_steps_are_not_reordered(make_config, make_runner, chain):
    steps = [{"deploy": "Router", "args": ["0x" + "00" * 20, "meta"]}, {"deploy": "Authorizer"}]
    config = make_config(steps)
    make_runner(config).run(build_plan(config))
    assert chain.labels("deploy") == ["Router", "Authorizer"]


def test_prediction_is_confirmed_before_wiring(make_config, make_runner, chain):
    config = make_config()
    result = make_runner(config).run(build_plan(config))
    manifest = result.manifest

    factory = manifest.components["VaultFactory"].address
    expected = predict(factory, SALT, keccak(hexstr="0x6080600303"))
    prediction = manifest.predictions["Vault"]
    assert prediction.address == expected
    assert manifest.components["Vault"].address == expected
    assert manifest.components["Vault"].via == "VaultFactory"

    # The fee controller was built against the prediction, and the grant went to it.
    controller = chain.journal[2]
    assert controller.label == "ProtocolFeeController"
    assert controller.args[0] == expected
    grant = next(entry for entry in chain.journal if entry.label == "grantRole")
    assert grant.address == manifest.components["Authorizer"].address
    assert grant.args[1] == manifest.components["ProtocolFeeController"].address
    configure = next(entry for entry in chain.journal if entry.label == "setProtocolFeeController")
    assert configure.address == expected


def test_prediction_mismatch_halts_before_recording(make_config, make_runner, chain):
    chain.drift("Vault")
    config = make_config()
    with pytest.raises(StepFailed) as excinfo:
        make_runner(config).run(build_plan(config))

    failure = excinfo.value
    assert isinstance(failure.cause, AddressPredictionMismatch)
    assert failure.step_id == "create-vault"
    assert failure.index == 4
    assert "Vault" not in failure.manifest.components
    assert failure.manifest.status == "failed"
    assert chain.labels("invoke") == []


def test_unknown_reference_aborts_with_earlier_entries_only(make_config, make_runner, chain):
    steps = [
        {"deploy": "Authorizer"},
        {"deploy": "VaultFactory", "args": [{"deployed": "Authorizer"}, {"code_hash": "Vault"}]},
        {"deploy": "Router", "args": [{"address": "componentX"}, "meta"]},
        {"deploy": "ProtocolFeeController", "args": ["0x" + "00" * 20, 1]},
    ]
    config = make_config(steps)
    with pytest.raises(StepFailed) as excinfo:
        make_runner(config).run(build_plan(config))

    failure = excinfo.value
    assert isinstance(failure.cause, UnresolvedDependency)
    assert failure.cause.name == "componentX"
    assert failure.index == 2
    assert list(failure.manifest.components) == ["Authorizer", "VaultFactory"]
    assert chain.labels("deploy") == ["Authorizer", "VaultFactory"]


def test_rejected_step_leaves_ledger_unchanged(make_config, make_runner, chain):
    config = make_config()
    runner = make_runner(config)
    ledger = runner.new_ledger("testnet")
    chain.reject("ProtocolFeeController", "fee too high")
    with pytest.raises(StepFailed) as excinfo:
        runner.run(build_plan(config), ledger)

    failure = excinfo.value
    assert isinstance(failure.cause, ExecutionReverted)
    assert failure.index == 3
    assert list(ledger.components) == ["Authorizer", "VaultFactory"]
    assert list(ledger.predictions) == ["Vault"]
    assert ledger.completed_steps == BASE_STEP_IDS[:3]
    assert failure.manifest.addresses() == {name: c.address for name, c in ledger.components.items()}


def test_rejected_factory_call_records_nothing(make_config, make_runner, chain):
    config = make_config()
    runner = make_runner(config)
    ledger = runner.new_ledger("testnet")
    chain.reject("create")
    with pytest.raises(StepFailed) as excinfo:
        runner.run(build_plan(config), ledger)
    assert isinstance(excinfo.value.cause, ExecutionReverted)
    assert "Vault" not in ledger
    assert "VaultAdmin" not in ledger


def test_timeout_is_fatal(make_config, make_runner, chain):
    chain.stall("VaultFactory")
    config = make_config()
    with pytest.raises(StepFailed) as excinfo:
        make_runner(config).run(build_plan(config))
    assert isinstance(excinfo.value.cause, ExecutionTimeout)
    assert excinfo.value.step_id == "deploy-vault-factory"


def test_needs_must_have_completed(make_config, make_runner):
    steps = [{"deploy": "Authorizer", "needs": ["deploy-router"]}, {"deploy": "Router", "args": ["0x" + "00" * 20, "m"]}]
    config = make_config(steps)
    with pytest.raises(StepFailed) as excinfo:
        make_runner(config).run(build_plan(config))
    assert isinstance(excinfo.value.cause, UnresolvedDependency)


def test_recording_a_name_twice_fails_before_touching_the_chain(make_config, make_runner, chain):
    steps = [{"deploy": "Authorizer"}, {"deploy": "Authorizer", "id": "again"}]
    config = make_config(steps)
    with pytest.raises(StepFailed) as excinfo:
        make_runner(config).run(build_plan(config))
    assert isinstance(excinfo.value.cause, DuplicateComponentName)
    assert chain.labels("deploy") == ["Authorizer"]


def test_resume_skips_completed_steps(make_config, make_runner, chain):
    config = make_config()
    chain.reject("Vault")
    with pytest.raises(StepFailed) as excinfo:
        make_runner(config).run(build_plan(config))
    partial = excinfo.value.manifest

    chain.allow("Vault")
    snapshots = []
    runner = make_runner(config, on_step=lambda step, ledger: snapshots.append(step.id))
    result = runner.run(build_plan(config), Ledger.from_manifest(partial))

    assert result.skipped == BASE_STEP_IDS[:4]
    assert result.executed == BASE_STEP_IDS[4:]
    assert snapshots == BASE_STEP_IDS[4:]
    assert chain.labels("deploy") == ["Authorizer", "VaultFactory", "ProtocolFeeController"]
    assert result.manifest.components["Vault"].address == partial.predictions["Vault"].address


def test_deployer_and_metadata_arguments(make_config, make_runner, chain):
    steps = [
        {"deploy": "Authorizer"},
        {"deploy": "Router", "args": [{"deployer": True}, {"json": "router"}]},
    ]
    config = make_config(steps)
    make_runner(config).run(build_plan(config))
    router = chain.journal[-1]
    assert router.args == (chain.deployer, '{"name":"Router","version":2}')


def test_failed_follow_up_read_keeps_the_created_component(make_config, make_runner, chain):
    config = make_config()
    chain.reject("deployedVaultAdmins")
    with pytest.raises(StepFailed) as excinfo:
        make_runner(config).run(build_plan(config))

    failure = excinfo.value
    assert failure.step_id == "create-vault"
    assert isinstance(failure.cause, FollowUpFailed)
    assert isinstance(failure.cause.cause, ExecutionReverted)
    partial = failure.manifest
    vault = partial.components["Vault"]
    assert vault.address == partial.predictions["Vault"].address
    assert vault.step_id == "create-vault"
    assert chain.get_code(vault.address)
    assert "VaultAdmin" not in partial.components
    assert "create-vault" not in partial.completed_steps

    chain.allow("deployedVaultAdmins")
    result = make_runner(config).run(build_plan(config), Ledger.from_manifest(partial))
    assert result.executed == BASE_STEP_IDS[4:]
    assert chain.labels("create") == ["Vault"]
    assert result.manifest.components["Vault"].address == vault.address
    assert "VaultAdmin" in result.manifest.components


def _factory_reported_steps():
    steps = copy.deepcopy(BASE_STEPS)
    steps[2] = {
        "predict": "Vault",
        "factory": {"deployed": "VaultFactory"},
        "salt": {"param": "salt"},
        "call": "getDeploymentAddress",
        "args": [{"param": "salt"}],
    }
    steps[4]["output"] = {"call": "getDeploymentAddress", "args": [{"param": "salt"}]}
    return steps


def test_prediction_reported_by_the_factory(make_config, make_runner, chain):
    config = make_config(_factory_reported_steps())
    manifest = make_runner(config).run(build_plan(config)).manifest

    prediction = manifest.predictions["Vault"]
    assert prediction.scheme == "factory"
    assert prediction.method == "getDeploymentAddress"
    assert prediction.code_hash is None
    factory = manifest.components["VaultFactory"].address
    assert prediction.address != predict(factory, SALT, keccak(hexstr="0x6080600303"))
    assert manifest.components["Vault"].address == prediction.address
    controller = next(entry for entry in chain.journal if entry.label == "ProtocolFeeController")
    assert controller.args[0] == prediction.address


def test_factory_reported_prediction_is_still_checked(make_config, make_runner, chain):
    chain.drift("Vault")
    config = make_config(_factory_reported_steps())
    with pytest.raises(StepFailed) as excinfo:
        make_runner(config).run(build_plan(config))
    assert isinstance(excinfo.value.cause, AddressPredictionMismatch)
    assert "Vault" not in excinfo.value.manifest.components
