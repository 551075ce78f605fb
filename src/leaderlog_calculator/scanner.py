from __future__ import annotations

import logging
import math
import os
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from decimal import Decimal

from .config import ScheduleConfig
from .nonce import epoch_nonce_bytes
from .probability import ProbabilityParameters
from .report import AssignedSlot, LeaderSchedule, assemble_schedule
from .timing import TimeModel
from .vrf import LeaderValueSource

logger = logging.getLogger(__name__)


def concurrency_width(parallel_factor: int, cpu_count: int | None = None) -> int:
    cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    return max(1, cpus * parallel_factor)


class SlotCollector:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: list[AssignedSlot] = []
        self._drained = False

    def add(self, slot: AssignedSlot) -> None:
        with self._lock:
            if self._drained:
                raise RuntimeError("collector already drained")
            self._slots.append(slot)

    def drain(self) -> list[AssignedSlot]:
        with self._lock:
            self._drained = True
            slots, self._slots = self._slots, []
        return slots


class SlotScanEngine:
    def __init__(
        self,
        source: LeaderValueSource,
        config: ScheduleConfig | None = None,
        time_model: TimeModel | None = None,
        cpu_count: int | None = None,
    ) -> None:
        self.source = source
        self.config = config or ScheduleConfig()
        self.time_model = time_model or TimeModel(self.config.eras, self.config.tzinfo)
        self.width = concurrency_width(self.config.parallel_factor, cpu_count)

    def probability_parameters(
        self,
        pool_stake: Decimal | int | str,
        total_stake: Decimal | int | str,
    ) -> ProbabilityParameters:
        return ProbabilityParameters.derive(
            pool_stake,
            total_stake,
            active_slot_coeff=self.config.active_slot_coeff,
            epoch_length=self.config.epoch_length,
        )

    def _scan_batch(
        self,
        epoch: int,
        first_slot: int,
        start: int,
        stop: int,
        nonce: bytes,
        params: ProbabilityParameters,
        collector: SlotCollector,
    ) -> None:
        for slot in range(start, stop):
            value = self.source.leader_value_for_slot(slot, nonce)
            if params.accepts(value):
                collector.add(
                    AssignedSlot(
                        epoch=epoch,
                        slot=slot,
                        slot_in_epoch=slot - first_slot,
                        time=self.time_model.slot_time_iso(slot),
                    )
                )

    def scan_slots(self, epoch: int, nonce: str, params: ProbabilityParameters) -> list[AssignedSlot]:
        first_slot = self.time_model.first_slot_of_epoch(epoch)
        end = first_slot + params.epoch_length
        nonce_bytes = epoch_nonce_bytes(nonce)
        batch = max(1, math.ceil(params.epoch_length / self.width))
        collector = SlotCollector()

        with ThreadPoolExecutor(max_workers=self.width, thread_name_prefix="slot-scan") as pool:
            futures = [
                pool.submit(
                    self._scan_batch, epoch, first_slot, start, min(start + batch, end), nonce_bytes, params, collector
                )
                for start in range(first_slot, end, batch)
            ]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            for future in done:
                future.result()
        return collector.drain()

    def scan(
        self,
        epoch: int,
        pool_stake: Decimal | int | str,
        total_stake: Decimal | int | str,
        nonce: str,
    ) -> LeaderSchedule | None:
        params = self.probability_parameters(pool_stake, total_stake)
        if not params.available:
            logger.warning("epoch %d: sigma unavailable, skipping", epoch)
            return None

        started = time.monotonic()
        assigned = self.scan_slots(epoch, nonce, params)
        logger.info(
            "epoch %d: %d slots assigned out of %d (%.1fs, width=%d)",
            epoch,
            len(assigned),
            params.epoch_length,
            time.monotonic() - started,
            self.width,
        )
        return assemble_schedule(epoch, nonce, params, assigned)
