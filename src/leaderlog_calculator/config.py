from __future__ import annotations

from pathlib import Path
from typing import Any

import pytz
import yaml
from pydantic import ValidationError
from pydantic import BaseModel, ConfigDict, Field, field_validator


class EraParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    # byron-genesis.json startTime, 2017-09-23T21:44:51Z
    system_start: int = 1506203091
    byron_epoch_length: int = Field(10 * 2160, ge=1)
    byron_slot_length: int = Field(20, ge=1)
    transition_epoch: int = Field(208, ge=0)
    epoch_length: int = Field(432000, ge=1)
    slot_length: int = Field(1, ge=1)

    @property
    def transition_slot(self) -> int:
        return self.transition_epoch * self.byron_epoch_length

    @property
    def transition_time(self) -> int:
        return self.system_start + self.transition_slot * self.byron_slot_length

    @property
    def epoch_seconds(self) -> int:
        return self.epoch_length * self.slot_length


MAINNET = EraParameters()


class ScheduleConfig(BaseModel):
    timezone: str = "UTC"
    parallel_factor: int = Field(30, ge=0)
    active_slot_coeff: float = Field(0.05, gt=0.0, lt=1.0)
    eras: EraParameters = MAINNET
    libsodium_path: str | None = None

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    @property
    def tzinfo(self) -> pytz.BaseTzInfo:
        return pytz.timezone(self.timezone)

    @property
    def epoch_length(self) -> int:
        return self.eras.epoch_length

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ScheduleConfig":
        data = _load_yaml(path)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid schedule config: {path}\n{exc}") from exc


def _load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(path))
    try:
        return yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover
        raise ValueError(f"Failed to parse YAML: {p}") from exc
