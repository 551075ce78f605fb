from __future__ import annotations

import ctypes
import ctypes.util
import hashlib
import logging
from typing import Protocol

from .nonce import derive_seed

logger = logging.getLogger(__name__)

SECRET_KEY_SIZE = 64
OUTPUT_SIZE = 64

VRF_MAX_VALUE = 2**256
LEADER_VALUE_TAG = b"\x4c"  # "L"

# CBOR major type 2 (byte string) with a one-byte length of 0x40.
_CBOR_SKEY_HEADER = "5840"


class VrfError(RuntimeError):
    pass


class VrfBackend(Protocol):
    def prove(self, seed: bytes, secret_key: bytes) -> bytes: ...

    def proof_to_hash(self, proof: bytes) -> bytes: ...


class LeaderValueSource(Protocol):
    def leader_value_for_slot(self, slot: int, nonce: bytes) -> int: ...


def secret_key_from_cbor_hex(cbor_hex: str) -> bytes:
    text = cbor_hex.strip().lower()
    header, body = text[: len(_CBOR_SKEY_HEADER)], text[len(_CBOR_SKEY_HEADER) :]
    if header != _CBOR_SKEY_HEADER:
        raise VrfError(f"Unexpected VRF signing key framing: {header!r} (expected {_CBOR_SKEY_HEADER!r})")
    try:
        key = bytes.fromhex(body)
    except ValueError as exc:
        raise VrfError("VRF signing key is not valid hex") from exc
    if len(key) != SECRET_KEY_SIZE:
        raise VrfError(f"VRF signing key must be {SECRET_KEY_SIZE} bytes, got {len(key)}")
    return key


def vrf_max_value() -> int:
    return VRF_MAX_VALUE


def leader_value(output: bytes) -> int:
    if len(output) != OUTPUT_SIZE:
        raise VrfError(f"VRF output must be {OUTPUT_SIZE} bytes, got {len(output)}")
    digest = hashlib.blake2b(LEADER_VALUE_TAG + output, digest_size=32).digest()
    return int.from_bytes(digest, byteorder="big", signed=False)


def _ubytes(data: bytes) -> ctypes.Array:
    return (ctypes.c_ubyte * len(data)).from_buffer_copy(data)


class LibsodiumVrf:
    """ECVRF-ED25519-SHA512-Elligator2 (IETF draft 03) through IOG's libsodium fork."""

    def __init__(self, library_path: str | None = None) -> None:
        path = library_path or ctypes.util.find_library("sodium")
        if path is None:
            raise VrfError("libsodium not found; set libsodium_path in the config")
        try:
            lib = ctypes.CDLL(path)
        except OSError as exc:
            raise VrfError(f"Failed to load libsodium from {path}") from exc
        if not hasattr(lib, "crypto_vrf_prove"):
            raise VrfError(f"{path} does not export crypto_vrf_prove (a VRF-enabled libsodium build is required)")

        lib.sodium_init.restype = ctypes.c_int
        if lib.sodium_init() == -1:
            raise VrfError("sodium_init() failed")

        lib.crypto_vrf_ietfdraft03_proofbytes.restype = ctypes.c_size_t
        lib.crypto_vrf_outputbytes.restype = ctypes.c_size_t
        ubyte_p = ctypes.POINTER(ctypes.c_ubyte)
        lib.crypto_vrf_prove.argtypes = [ubyte_p, ubyte_p, ubyte_p, ctypes.c_ulonglong]
        lib.crypto_vrf_prove.restype = ctypes.c_int
        lib.crypto_vrf_proof_to_hash.argtypes = [ubyte_p, ubyte_p]
        lib.crypto_vrf_proof_to_hash.restype = ctypes.c_int

        self._lib = lib
        self.proof_size = int(lib.crypto_vrf_ietfdraft03_proofbytes())
        self.output_size = int(lib.crypto_vrf_outputbytes())
        logger.debug("loaded libsodium VRF from %s (proof=%d output=%d)", path, self.proof_size, self.output_size)

    def prove(self, seed: bytes, secret_key: bytes) -> bytes:
        if len(secret_key) != SECRET_KEY_SIZE:
            raise VrfError(f"VRF signing key must be {SECRET_KEY_SIZE} bytes, got {len(secret_key)}")
        proof = (ctypes.c_ubyte * self.proof_size)()
        rc = self._lib.crypto_vrf_prove(proof, _ubytes(secret_key), _ubytes(seed), len(seed))
        if rc != 0:
            raise VrfError("crypto_vrf_prove failed")
        return bytes(proof)

    def proof_to_hash(self, proof: bytes) -> bytes:
        output = (ctypes.c_ubyte * self.output_size)()
        rc = self._lib.crypto_vrf_proof_to_hash(output, _ubytes(proof))
        if rc != 0:
            raise VrfError("crypto_vrf_proof_to_hash failed")
        return bytes(output)


class VrfConsumer:
    def __init__(self, backend: VrfBackend, secret_key: bytes) -> None:
        if len(secret_key) != SECRET_KEY_SIZE:
            raise VrfError(f"VRF signing key must be {SECRET_KEY_SIZE} bytes, got {len(secret_key)}")
        self._backend = backend
        self._secret_key = bytes(secret_key)

    def __repr__(self) -> str:
        return f"VrfConsumer(backend={self._backend!r})"

    def output_for_slot(self, slot: int, nonce: bytes) -> bytes:
        seed = derive_seed(slot, nonce)
        proof = self._backend.prove(seed, self._secret_key)
        return self._backend.proof_to_hash(proof)

    def leader_value_for_slot(self, slot: int, nonce: bytes) -> int:
        return leader_value(self.output_for_slot(slot, nonce))
