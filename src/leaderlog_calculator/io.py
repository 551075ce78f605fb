from __future__ import annotations

import json
from pathlib import Path

from .vrf import secret_key_from_cbor_hex


def load_vrf_signing_key(path: str | Path) -> bytes:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(path))

    text = p.read_text(encoding="utf-8").strip()
    if not text.startswith("{"):
        return secret_key_from_cbor_hex(text)

    try:
        envelope = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid VRF signing key file: {p}") from exc
    cbor_hex = envelope.get("cborHex") if isinstance(envelope, dict) else None
    if not isinstance(cbor_hex, str):
        raise ValueError(f"VRF signing key file has no cborHex: {p}")
    return secret_key_from_cbor_hex(cbor_hex)
