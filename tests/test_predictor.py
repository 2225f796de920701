from __future__ import annotations

import random

import pytest
from eth_utils import to_checksum_address

from deployment_orchestrator.predictor import init_code_hash, predict, predict_create, to_bytes32

ZERO = "0x0000000000000000000000000000000000000000"
DEADBEEF = "0xdeadbeef00000000000000000000000000000000"

# Examples published with EIP-1014.
EIP_1014_VECTORS = [
    (ZERO, 0, "0x00", "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38"),
    (DEADBEEF, 0, "0x00", "0xB928f69Bb1D91Cd65274e3c79d8986362984fDA3"),
    (
        DEADBEEF,
        "0x000000000000000000000000feed000000000000000000000000000000000000",
        "0x00",
        "0xD04116cDd17beBE565EB2422F2497E06cC1C9833",
    ),
    (ZERO, 0, "0xdeadbeef", "0x70f2b2914A2a4b783FaEFb75f459A580616Fcb5e"),
    (ZERO, 0, "0x", "0xE33C0C7F7df4809055C3ebA6c09CFe4BaF1BD9e0"),
]


@pytest.mark.parametrize("factory, salt, init_code, expected", EIP_1014_VECTORS)
def test_predict_matches_eip_1014_examples(factory, salt, init_code, expected):
    assert predict(factory, salt, init_code_hash(init_code)) == expected


def test_predict_is_deterministic_for_random_inputs():
    rng = random.Random(1014)
    for _ in range(50):
        factory = to_checksum_address(rng.randbytes(20))
        salt = rng.randbytes(32)
        code_hash = rng.randbytes(32)
        first = predict(factory, salt, code_hash)
        assert predict(factory.lower(), salt.hex(), "0x" + code_hash.hex()) == first
        assert predict(factory, salt, code_hash) == first
        other_salt = bytes([salt[0] ^ 0x01]) + salt[1:]
        assert predict(factory, other_salt, code_hash) != first


def test_predict_rejects_malformed_inputs():
    with pytest.raises(ValueError):
        predict(ZERO, "0x1234", init_code_hash("0x00"))
    with pytest.raises(ValueError):
        predict(ZERO, 0, b"\x00" * 31)
    with pytest.raises(ValueError):
        predict("0x1234", 0, init_code_hash("0x00"))


def test_to_bytes32_normalises_salts():
    assert to_bytes32(1) == b"\x00" * 31 + b"\x01"
    assert to_bytes32("0x" + "ab" * 32) == b"\xab" * 32
    with pytest.raises(TypeError):
        to_bytes32(True)
    with pytest.raises(ValueError):
        to_bytes32(-1)
    with pytest.raises(ValueError):
        to_bytes32("not-hex")


def test_predict_create_follows_sender_nonce():
    sender = "0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0"
    assert predict_create(sender, 0).lower() == "0xcd234a471b72ba2f1ccf0a70fcaba648a5eecd8d"
    assert predict_create(sender, 1).lower() == "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"
    assert predict_create(sender, 2).lower() == "0xf778b86fa74e846c4f0a1fbd1335fe81c00a0c91"
    with pytest.raises(ValueError):
        predict_create(sender, -1)
