from __future__ import annotations

import json
import logging
import os
import subprocess
from decimal import Decimal
from typing import Any

import requests
from pydantic import BaseModel, ValidationError

from .nonce import derive_epoch_nonce, epoch_nonce_bytes

logger = logging.getLogger(__name__)

KOIOS_URL = "https://api.koios.rest/api/v1"
NEXT_NONCE_URL = "https://f2lb.bardels.me/api/v0/nonce.next"
SNAPSHOT_LABELS = ("Mark", "Set", "Go")


class ProviderError(RuntimeError):
    pass


class EpochInfo(BaseModel):
    epoch_no: int
    active_stake: Decimal
    block_hash: str | None = None
    nonce: str


class StakeSnapshot(BaseModel):
    snapshot: str
    epoch_no: int
    nonce: str
    pool_stake: Decimal
    active_stake: Decimal


class NodeNonces(BaseModel):
    candidate_nonce: str
    last_epoch_block_nonce: str

    def next_epoch_nonce(self) -> str:
        return derive_epoch_nonce(self.candidate_nonce, self.last_epoch_block_nonce)


def _first_row(rows: Any, what: str) -> dict[str, Any]:
    if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
        raise ProviderError(f"No {what} data returned")
    return rows[0]


class KoiosClient:
    def __init__(
        self,
        base_url: str = KOIOS_URL,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(self, endpoint: str, params: dict[str, Any]) -> Any:
        url = f"{self.base_url}/{endpoint}"
        logger.debug("GET %s %s", url, params)
        response = self.session.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def epoch_info(self, epoch: int) -> EpochInfo:
        info = _first_row(self._get("epoch_info", {"_epoch_no": epoch, "select": "active_stake"}), "epoch_info")
        epoch_params = _first_row(
            self._get("epoch_params", {"_epoch_no": epoch, "select": "block_hash,nonce"}), "epoch_params"
        )
        try:
            return EpochInfo(
                epoch_no=epoch,
                active_stake=info.get("active_stake"),
                block_hash=epoch_params.get("block_hash"),
                nonce=epoch_params.get("nonce"),
            )
        except ValidationError as exc:
            raise ProviderError(f"Invalid epoch data for epoch {epoch}\n{exc}") from exc

    def pool_active_stake(self, pool_id: str, epoch: int) -> Decimal:
        row = _first_row(
            self._get("pool_history", {"_pool_bech32": pool_id, "_epoch_no": epoch, "select": "active_stake"}),
            "pool_history",
        )
        if row.get("active_stake") is None:
            raise ProviderError(f"No active stake for pool {pool_id} in epoch {epoch}")
        return Decimal(str(row["active_stake"]))

    def stake_snapshots(self, pool_id: str) -> dict[str, StakeSnapshot]:
        rows = self._get("pool_stake_snapshot", {"_pool_bech32": pool_id})
        if not isinstance(rows, list):
            raise ProviderError("Invalid pool_stake_snapshot payload")
        try:
            snaps = [StakeSnapshot.model_validate(row) for row in rows]
        except ValidationError as exc:
            raise ProviderError(f"Invalid stake snapshot for pool {pool_id}\n{exc}") from exc
        return {s.snapshot: s for s in snaps if s.snapshot in SNAPSHOT_LABELS}


class NonceService:
    def __init__(
        self,
        url: str = NEXT_NONCE_URL,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def next_nonce(self) -> str | None:
        response = self.session.get(self.url, timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        nonce = response.text.strip()
        try:
            epoch_nonce_bytes(nonce)
        except ValueError as exc:
            raise ProviderError(f"Invalid next nonce from {self.url}: {exc}") from exc
        return nonce


def _contents(state: dict[str, Any], key: str) -> str:
    value = state.get(key)
    if isinstance(value, dict):
        value = value.get("contents")
    if not isinstance(value, str):
        raise ProviderError(f"protocol-state has no usable {key}")
    return value


class NodeStateProvider:
    def __init__(
        self,
        cardano_cli: str = "cardano-cli",
        network_args: tuple[str, ...] = ("--mainnet",),
        socket_path: str | None = None,
    ) -> None:
        self.cardano_cli = cardano_cli
        self.network_args = network_args
        self.socket_path = socket_path if socket_path is not None else os.environ.get("CARDANO_NODE_SOCKET_PATH", "")

    @property
    def available(self) -> bool:
        return bool(self.socket_path)

    def _protocol_state(self) -> dict[str, Any]:
        cmd = [self.cardano_cli, "query", "protocol-state", *self.network_args]
        env = {**os.environ, "CARDANO_NODE_SOCKET_PATH": self.socket_path}
        try:
            out = subprocess.run(cmd, capture_output=True, text=True, check=True, env=env).stdout
        except (OSError, subprocess.CalledProcessError) as exc:
            raise ProviderError(f"{' '.join(cmd)} failed") from exc
        try:
            state = json.loads(out)
        except json.JSONDecodeError as exc:
            raise ProviderError("protocol-state output is not JSON") from exc
        if not isinstance(state, dict):
            raise ProviderError("protocol-state output is not an object")
        return state

    def nonces(self) -> NodeNonces:
        state = self._protocol_state()
        return NodeNonces(
            candidate_nonce=_contents(state, "candidateNonce"),
            last_epoch_block_nonce=_contents(state, "lastEpochBlockNonce"),
        )


def resolve_next_nonce(node: NodeStateProvider, service: NonceService) -> str | None:
    if node.available:
        return node.nonces().next_epoch_nonce()
    logger.info("no local node socket, asking %s for the next nonce", service.url)
    return service.next_nonce()
