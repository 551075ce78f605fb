import hashlib
import json
from pathlib import Path

import pytest

from leaderlog_calculator.io import load_vrf_signing_key
from leaderlog_calculator.nonce import derive_seed
from leaderlog_calculator.vrf import (
    LibsodiumVrf,
    VrfConsumer,
    VrfError,
    leader_value,
    secret_key_from_cbor_hex,
    vrf_max_value,
)


SKEY = bytes(range(64))
SKEY_CBOR_HEX = "5840" + SKEY.hex()
NONCE = bytes.fromhex("53606952e39eadd5eea559be517f9741c9538073e987ec1b7a6c7a05db6195d3")


class RecordingBackend:
    def __init__(self) -> None:
        self.calls: list[tuple[bytes, bytes]] = []

    def prove(self, seed: bytes, secret_key: bytes) -> bytes:
        self.calls.append((seed, secret_key))
        return b"proof:" + seed

    def proof_to_hash(self, proof: bytes) -> bytes:
        return hashlib.blake2b(proof, digest_size=64).digest()


def test_secret_key_from_cbor_hex_strips_header() -> None:
    assert secret_key_from_cbor_hex(SKEY_CBOR_HEX) == SKEY
    assert secret_key_from_cbor_hex(SKEY_CBOR_HEX.upper() + "\n") == SKEY


def test_secret_key_from_cbor_hex_rejects_other_framing() -> None:
    with pytest.raises(VrfError, match="framing"):
        secret_key_from_cbor_hex("5820" + SKEY[:32].hex())
    with pytest.raises(VrfError, match="64 bytes"):
        secret_key_from_cbor_hex("5840" + SKEY[:32].hex())
    with pytest.raises(VrfError, match="hex"):
        secret_key_from_cbor_hex("5840" + "zz" * 64)


def test_leader_value_is_tagged_blake2b() -> None:
    output = bytes([7]) * 64
    digest = hashlib.blake2b(b"\x4c" + output, digest_size=32).digest()
    assert leader_value(output) == int.from_bytes(digest, "big")


def test_leader_value_below_max() -> None:
    for i in range(32):
        output = hashlib.blake2b(bytes([i]), digest_size=64).digest()
        assert 0 <= leader_value(output) < vrf_max_value()
    assert vrf_max_value() == 2**256


def test_leader_value_rejects_wrong_output_size() -> None:
    with pytest.raises(VrfError):
        leader_value(bytes(63))


def test_consumer_composes_seed_prove_and_hash() -> None:
    backend = RecordingBackend()
    consumer = VrfConsumer(backend, SKEY)

    value = consumer.leader_value_for_slot(4492800, NONCE)

    seed, key = backend.calls[0]
    assert seed == derive_seed(4492800, NONCE)
    assert key == SKEY
    assert value == leader_value(backend.proof_to_hash(b"proof:" + seed))
    assert consumer.leader_value_for_slot(4492800, NONCE) == value


def test_consumer_requires_64_byte_key_and_hides_it() -> None:
    with pytest.raises(VrfError):
        VrfConsumer(RecordingBackend(), SKEY[:32])
    assert SKEY.hex() not in repr(VrfConsumer(RecordingBackend(), SKEY))


def test_libsodium_backend_reports_missing_library() -> None:
    with pytest.raises(VrfError):
        LibsodiumVrf("/nonexistent/libsodium-vrf.so")


def test_load_vrf_signing_key_text_envelope(tmp_path: Path) -> None:
    path = tmp_path / "vrf.skey"
    path.write_text(
        json.dumps({"type": "VrfSigningKey_PraosVRF", "description": "VRF Signing Key", "cborHex": SKEY_CBOR_HEX}),
        encoding="utf-8",
    )
    assert load_vrf_signing_key(path) == SKEY


def test_load_vrf_signing_key_bare_hex(tmp_path: Path) -> None:
    path = tmp_path / "vrf.skey"
    path.write_text(SKEY_CBOR_HEX + "\n", encoding="utf-8")
    assert load_vrf_signing_key(path) == SKEY


def test_load_vrf_signing_key_without_cbor_hex(tmp_path: Path) -> None:
    path = tmp_path / "vrf.skey"
    path.write_text('{"type": "VrfSigningKey_PraosVRF"}', encoding="utf-8")
    with pytest.raises(ValueError, match="cborHex"):
        load_vrf_signing_key(path)
    with pytest.raises(FileNotFoundError):
        load_vrf_signing_key(tmp_path / "missing.skey")
