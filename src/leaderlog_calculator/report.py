from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

from .probability import ProbabilityParameters, performance_ratio


class AssignedSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    epoch: int = Field(..., ge=0)
    slot: int = Field(..., ge=0)
    slot_in_epoch: int = Field(..., ge=0)
    time: str


class LeaderSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    epoch: int = Field(..., ge=0)
    nonce: str
    pool_stake: Decimal
    total_stake: Decimal
    stake_ratio: Decimal
    sigma: float
    f: float
    ideal: Decimal
    performance: Decimal | None = None
    assigned_slots: tuple[AssignedSlot, ...] = ()

    @property
    def slot_count(self) -> int:
        return len(self.assigned_slots)


def assemble_schedule(
    epoch: int,
    nonce: str,
    params: ProbabilityParameters,
    assigned: Iterable[AssignedSlot],
) -> LeaderSchedule:
    if params.sigma is None:
        raise ValueError(f"Cannot assemble a schedule for epoch {epoch} without sigma")
    slots = tuple(sorted(assigned, key=lambda s: s.slot))
    return LeaderSchedule(
        epoch=epoch,
        nonce=nonce,
        pool_stake=params.pool_stake,
        total_stake=params.total_stake,
        stake_ratio=params.stake_ratio,
        sigma=params.sigma,
        f=params.active_slot_coeff,
        ideal=params.ideal_slot_count,
        performance=performance_ratio(len(slots), params.ideal_slot_count),
        assigned_slots=slots,
    )
