from __future__ import annotations

import math
from datetime import datetime, timezone, tzinfo
from typing import NewType

from .config import MAINNET, EraParameters

Epoch = NewType("Epoch", int)
Slot = NewType("Slot", int)

# Stability window: the next epoch nonce is frozen after 7/10 of the epoch.
NEXT_NONCE_SLOT_IN_EPOCH = Slot(302400)


def _unix(t: datetime) -> int:
    # naive datetimes are UTC, never host-local
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    return math.floor(t.timestamp())


class TimeModel:
    """Slot and epoch arithmetic across the Byron -> Shelley hard fork.

    Epoch-index conversions address post-transition epochs only; Byron
    slots are reachable through the absolute-slot functions.
    """

    def __init__(self, eras: EraParameters = MAINNET, tz: tzinfo | None = None) -> None:
        self.eras = eras
        self.tz = tz if tz is not None else timezone.utc

    def _from_unix(self, secs: int) -> datetime:
        return datetime.fromtimestamp(secs, tz=self.tz)

    def time_to_epoch(self, t: datetime) -> Epoch:
        e = self.eras
        return Epoch(e.transition_epoch + (_unix(t) - e.transition_time) // e.epoch_seconds)

    def epoch_start_time(self, epoch: int) -> datetime:
        e = self.eras
        return self._from_unix(e.transition_time + (epoch - e.transition_epoch) * e.epoch_seconds)

    def epoch_end_time(self, epoch: int) -> datetime:
        e = self.eras
        return self._from_unix(e.transition_time + (epoch + 1 - e.transition_epoch) * e.epoch_seconds - 1)

    def time_to_slot_in_epoch(self, t: datetime) -> Slot:
        e = self.eras
        return Slot(((_unix(t) - e.transition_time) % e.epoch_seconds) // e.slot_length)

    def time_to_absolute_slot(self, t: datetime) -> Slot:
        e = self.eras
        secs = _unix(t)
        if secs < e.transition_time:
            since_genesis = secs - e.system_start
            if since_genesis < 0:
                return Slot(0)
            return Slot(since_genesis // e.byron_slot_length)
        return Slot(e.transition_slot + (secs - e.transition_time) // e.slot_length)

    def absolute_slot_to_time(self, slot: int) -> datetime:
        e = self.eras
        return self._from_unix(e.transition_time + (slot - e.transition_slot) * e.slot_length)

    def slot_time_iso(self, slot: int) -> str:
        return self.absolute_slot_to_time(slot).isoformat()

    def absolute_slot_to_epoch(self, slot: int) -> Epoch:
        e = self.eras
        if slot < e.transition_slot:
            return Epoch(slot // e.byron_epoch_length)
        return Epoch((slot - e.transition_slot) // e.epoch_length + e.transition_epoch)

    def first_slot_of_epoch(self, epoch: int) -> Slot:
        e = self.eras
        if epoch < e.transition_epoch:
            return Slot(0)
        return Slot((epoch - e.transition_epoch) * e.epoch_length + e.transition_slot)

    def first_slot_of_epoch_containing(self, slot: int) -> Slot:
        e = self.eras
        if slot < e.transition_slot:
            return Slot(0)
        return Slot(slot - (slot - e.transition_slot) % e.epoch_length)

    def epoch_and_first_slot(self, slot: int) -> tuple[Epoch, Slot]:
        if slot < self.eras.transition_slot:
            return self.absolute_slot_to_epoch(slot), Slot(slot - slot % self.eras.byron_epoch_length)
        return self.absolute_slot_to_epoch(slot), self.first_slot_of_epoch_containing(slot)

    def current_epoch(self, now: datetime | None = None) -> Epoch:
        return self.time_to_epoch(now or datetime.now(timezone.utc))

    def current_slot(self, now: datetime | None = None) -> Slot:
        return self.time_to_absolute_slot(now or datetime.now(timezone.utc))

    def current_slot_in_epoch(self, now: datetime | None = None) -> Slot:
        return self.time_to_slot_in_epoch(now or datetime.now(timezone.utc))

    def next_nonce_available(self, now: datetime | None = None) -> bool:
        return self.current_slot_in_epoch(now) >= NEXT_NONCE_SLOT_IN_EPOCH
