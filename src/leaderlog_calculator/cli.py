from __future__ import annotations

import argparse
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel

from .config import ScheduleConfig
from .io import load_vrf_signing_key
from .providers import KoiosClient, NodeStateProvider, NonceService, resolve_next_nonce
from .report import LeaderSchedule
from .scanner import SlotScanEngine
from .timing import TimeModel
from .vrf import LibsodiumVrf, VrfConsumer, secret_key_from_cbor_hex

logger = logging.getLogger(__name__)


class EpochRequest(BaseModel):
    label: str
    epoch: int
    pool_stake: Decimal
    total_stake: Decimal
    nonce: str


def _existing_path(value: str) -> Path:
    path = Path(value)
    if not path.exists():
        raise argparse.ArgumentTypeError(f"File not found: {value}")
    return path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="leaderlog-calculator", add_help=True)
    key = parser.add_mutually_exclusive_group()
    key.add_argument("--vrf-skey", type=_existing_path, default=None, help="Path to the pool's vrf.skey")
    key.add_argument("--vrf-skey-cborhex", default=None, help="VRF signing key as CBOR hex")
    parser.add_argument("--pool-id", default=None, help="Pool id as bech32")
    parser.add_argument("--tz", default=None, help="Time zone for the output (default: UTC)")
    parser.add_argument("--only-nonce", action="store_true", help="Just print the epoch nonce(s)")
    parser.add_argument("--all", action="store_true", help="Compute for previous, current and next epochs")
    parser.add_argument("--prev", action="store_true", help="Compute for the previous epoch")
    parser.add_argument(
        "--current",
        action="store_true",
        default=None,
        help="Compute for the current epoch (default unless --prev/--next)",
    )
    parser.add_argument("--next", action="store_true", help="Compute for the next epoch")
    parser.add_argument("--epoch-no", type=int, default=None, help="Compute for a specific (past) epoch")
    parser.add_argument("--parallel-factor", type=int, default=None, help="Workers per available CPU (default: 30)")
    parser.add_argument("--config", type=_existing_path, default=None, help="Path to a schedule config YAML")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the schedule JSON to this path (default: stdout)",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    return parser


def _load_config(args: argparse.Namespace) -> ScheduleConfig:
    config = ScheduleConfig.from_yaml(args.config) if args.config is not None else ScheduleConfig()
    updates = {}
    if args.tz is not None:
        updates["timezone"] = args.tz
    if args.parallel_factor is not None:
        updates["parallel_factor"] = args.parallel_factor
    if not updates:
        return config
    return ScheduleConfig.model_validate({**config.model_dump(), **updates})


def _load_key(args: argparse.Namespace) -> bytes:
    if args.vrf_skey is not None:
        return load_vrf_signing_key(args.vrf_skey)
    if args.vrf_skey_cborhex:
        return secret_key_from_cbor_hex(args.vrf_skey_cborhex)
    raise ValueError("VRF signing key is required (--vrf-skey or --vrf-skey-cborhex)")


def _collect_requests(
    args: argparse.Namespace,
    koios: KoiosClient,
    time_model: TimeModel,
    node: NodeStateProvider,
    nonce_service: NonceService,
) -> tuple[list[EpochRequest], list[str], int]:
    """Resolve the requested epochs to stake figures and nonces.

    Each epoch's inputs are fetched on their own, so a provider failure drops
    only the epochs that depend on it. Returns the scan requests, the nonces
    to print in ``--only-nonce`` mode and the number of epochs that failed.
    """
    if args.epoch_no is not None:
        try:
            info = koios.epoch_info(args.epoch_no)
            if args.only_nonce:
                return [], [info.nonce], 0
            pool_stake = koios.pool_active_stake(args.pool_id, args.epoch_no)
        except Exception as exc:  # noqa: BLE001
            logger.error("epoch %d: cannot fetch chain data: %s", args.epoch_no, exc)
            return [], [], 1
        return [
            EpochRequest(
                label="epoch",
                epoch=args.epoch_no,
                pool_stake=pool_stake,
                total_stake=info.active_stake,
                nonce=info.nonce,
            )
        ], [], 0

    want_prev = args.all or args.prev
    want_current = args.all or args.current
    want_next = args.all or args.next
    failed = 0

    next_nonce = None
    if want_next:
        if not time_model.next_nonce_available():
            logger.warning("Next epoch nonce not yet computable")
        else:
            try:
                next_nonce = resolve_next_nonce(node, nonce_service)
            except Exception as exc:  # noqa: BLE001
                logger.error("next epoch nonce failed: %s", exc)
                failed += 1
            else:
                if next_nonce is None:
                    logger.warning("Next epoch nonce not yet available")

    if args.only_nonce and not args.pool_id:
        current_epoch = time_model.current_epoch()
        wanted = []
        if want_prev:
            wanted.append(("prev", current_epoch - 1))
        if want_current:
            wanted.append(("current", current_epoch))
        nonces = []
        for label, epoch in wanted:
            try:
                nonces.append(koios.epoch_info(epoch).nonce)
            except Exception as exc:  # noqa: BLE001
                logger.error("%s epoch %d: cannot fetch nonce: %s", label, epoch, exc)
                failed += 1
        if next_nonce is not None:
            nonces.append(next_nonce)
        return [], nonces, failed

    selected: list[tuple[str, str, str | None]] = []
    if want_prev:
        selected.append(("prev", "Go", None))
    if want_current:
        selected.append(("current", "Set", None))
    if want_next and next_nonce is not None:
        selected.append(("next", "Mark", next_nonce))
    if not selected:
        return [], [], failed

    try:
        snaps = koios.stake_snapshots(args.pool_id)
    except Exception as exc:  # noqa: BLE001
        logger.error("cannot fetch stake snapshots for pool %s: %s", args.pool_id, exc)
        return [], [], failed + len(selected)

    out = []
    for label, snapshot, nonce in selected:
        snap = snaps.get(snapshot)
        if snap is None:
            logger.error("%s: no %s stake snapshot for pool %s", label, snapshot, args.pool_id)
            failed += 1
            continue
        out.append(
            EpochRequest(
                label=label,
                epoch=snap.epoch_no,
                pool_stake=snap.pool_stake,
                total_stake=snap.active_stake,
                nonce=nonce or snap.nonce,
            )
        )
    if args.only_nonce:
        return [], [r.nonce for r in out], failed
    return out, [], failed


def _emit(text: str, output: Path | None) -> None:
    if output is None:
        print(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")


def _render(schedules: list[LeaderSchedule]) -> str:
    return "\n".join(json.dumps(s.model_dump(mode="json"), indent=2, sort_keys=True) for s in schedules)


def main(
    argv: list[str] | None = None,
    *,
    koios: KoiosClient | None = None,
    node: NodeStateProvider | None = None,
    nonce_service: NonceService | None = None,
    engine: SlotScanEngine | None = None,
) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.captureWarnings(True)
    if args.current is None:
        args.current = args.all or not (args.next or args.prev)

    try:
        config = _load_config(args)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        return 2
    time_model = TimeModel(config.eras, config.tzinfo)
    koios = koios or KoiosClient()
    node = node or NodeStateProvider()
    nonce_service = nonce_service or NonceService()

    if args.only_nonce:
        _, nonces, failed = _collect_requests(args, koios, time_model, node, nonce_service)
        _emit("\n".join(nonces), args.output)
        return 1 if failed else 0

    try:
        key = _load_key(args)
        if not args.pool_id:
            raise ValueError("--pool-id is required")
        if engine is None:
            engine = SlotScanEngine(VrfConsumer(LibsodiumVrf(config.libsodium_path), key), config, time_model)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        return 2

    jobs, _, failed = _collect_requests(args, koios, time_model, node, nonce_service)
    schedules: list[LeaderSchedule] = []
    for job in jobs:
        try:
            schedule = engine.scan(job.epoch, job.pool_stake, job.total_stake, job.nonce)
        except Exception as exc:  # noqa: BLE001
            logger.error("%s epoch %d failed: %s", job.label, job.epoch, exc)
            failed += 1
            continue
        if schedule is None:
            logger.error("%s epoch %d skipped: sigma unavailable", job.label, job.epoch)
            failed += 1
            continue
        schedules.append(schedule)

    _emit(_render(schedules), args.output)
    return 1 if failed else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
