from __future__ import annotations

import hashlib

NONCE_SIZE = 32


def _blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def epoch_nonce_bytes(nonce: bytes | str) -> bytes:
    if isinstance(nonce, str):
        try:
            raw = bytes.fromhex(nonce)
        except ValueError as exc:
            raise ValueError(f"Epoch nonce is not valid hex: {nonce!r}") from exc
    else:
        raw = bytes(nonce)
    if len(raw) != NONCE_SIZE:
        raise ValueError(f"Epoch nonce must be {NONCE_SIZE} bytes, got {len(raw)}")
    return raw


def derive_seed(slot: int, epoch_nonce: bytes | str) -> bytes:
    if slot < 0:
        raise ValueError(f"slot must be non-negative: {slot}")
    return _blake2b_256(slot.to_bytes(8, byteorder="big") + epoch_nonce_bytes(epoch_nonce))


def derive_epoch_nonce(candidate_nonce_hex: str, last_epoch_block_nonce_hex: str) -> str:
    # eta0 of the upcoming epoch: blake2b_256(candidateNonce || lastEpochBlockNonce)
    try:
        data = bytes.fromhex(candidate_nonce_hex) + bytes.fromhex(last_epoch_block_nonce_hex)
    except ValueError as exc:
        raise ValueError("Nonce inputs must be hex encoded") from exc
    return _blake2b_256(data).hex()
