from __future__ import annotations

import logging
import math
import sys
import warnings
from decimal import ROUND_HALF_EVEN, Context, Decimal

from pydantic import BaseModel, ConfigDict

from .vrf import VRF_MAX_VALUE

logger = logging.getLogger(__name__)

ACTIVE_SLOT_COEFF = 0.05

WIDE_PRECISION = 34
NARROW_PRECISION = 2

_WIDE = Context(prec=WIDE_PRECISION, rounding=ROUND_HALF_EVEN)
_NARROW = Context(prec=NARROW_PRECISION, rounding=ROUND_HALF_EVEN)
_HALF_ULP = Decimal(sys.float_info.epsilon) / 2
_VRF_MAX = _WIDE.plus(Decimal(VRF_MAX_VALUE))


class PrecisionLossWarning(UserWarning):
    pass


def _as_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


def stake_ratio(pool_stake: Decimal | int | str, total_stake: Decimal | int | str) -> Decimal:
    pool = _as_decimal(pool_stake)
    total = _as_decimal(total_stake)
    if total <= 0:
        raise ValueError(f"total active stake must be > 0, got {total}")
    if pool < 0:
        raise ValueError(f"pool stake must be non-negative, got {pool}")
    return _WIDE.divide(pool, total)


def _narrows_exactly(value: Decimal, narrowed: float) -> bool:
    if not math.isfinite(narrowed):
        return False
    if value == 0:
        return narrowed == 0.0
    if abs(narrowed) < sys.float_info.min:
        return False
    error = abs(_WIDE.subtract(Decimal(narrowed), value))
    return error <= _WIDE.multiply(abs(value), _HALF_ULP)


def sigma(ratio: Decimal, active_slot_coeff: float = ACTIVE_SLOT_COEFF) -> float | None:
    c = Decimal(math.log(1.0 - active_slot_coeff))
    exponent = _WIDE.multiply(_WIDE.minus(ratio), c)
    narrowed = float(exponent)
    if not _narrows_exactly(exponent, narrowed):
        logger.warning("sigma exponent %s does not narrow to a double (got %r)", exponent, narrowed)
        warnings.warn(f"Not accurate {narrowed!r}: {exponent}", PrecisionLossWarning, stacklevel=2)
        return None
    return math.exp(narrowed)


def ideal_slot_count(ratio: Decimal, epoch_length: int, active_slot_coeff: float = ACTIVE_SLOT_COEFF) -> Decimal:
    expected = _WIDE.multiply(ratio, Decimal(epoch_length * active_slot_coeff))
    return _NARROW.plus(expected)


def is_slot_leader(leader_value: int, threshold: float) -> bool:
    if not 0 <= leader_value < VRF_MAX_VALUE:
        raise ValueError(f"leader value out of range: {leader_value}")
    den = _WIDE.plus(Decimal(VRF_MAX_VALUE - leader_value))
    q = _WIDE.divide(_VRF_MAX, den)
    return q <= Decimal(threshold)


def performance_ratio(assigned_slots: int, ideal: Decimal) -> Decimal | None:
    if ideal == 0:
        return None
    per_ideal = _NARROW.divide(Decimal(assigned_slots), _WIDE.multiply(ideal, Decimal(10000)))
    return _NARROW.divide(per_ideal, Decimal(100))


class ProbabilityParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    pool_stake: Decimal
    total_stake: Decimal
    active_slot_coeff: float
    epoch_length: int
    stake_ratio: Decimal
    sigma: float | None
    ideal_slot_count: Decimal

    @classmethod
    def derive(
        cls,
        pool_stake: Decimal | int | str,
        total_stake: Decimal | int | str,
        *,
        active_slot_coeff: float = ACTIVE_SLOT_COEFF,
        epoch_length: int = 432000,
    ) -> "ProbabilityParameters":
        ratio = stake_ratio(pool_stake, total_stake)
        return cls(
            pool_stake=_as_decimal(pool_stake),
            total_stake=_as_decimal(total_stake),
            active_slot_coeff=active_slot_coeff,
            epoch_length=epoch_length,
            stake_ratio=ratio,
            sigma=sigma(ratio, active_slot_coeff),
            ideal_slot_count=ideal_slot_count(ratio, epoch_length, active_slot_coeff),
        )

    @property
    def available(self) -> bool:
        return self.sigma is not None

    def accepts(self, leader_value: int) -> bool:
        if self.sigma is None:
            raise ValueError("sigma unavailable for these stake figures")
        return is_slot_leader(leader_value, self.sigma)
