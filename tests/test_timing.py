import time
from datetime import datetime, timedelta, timezone
from typing import Iterator

import pytest
import pytz

from leaderlog_calculator.config import MAINNET, EraParameters
from leaderlog_calculator.timing import NEXT_NONCE_SLOT_IN_EPOCH, TimeModel


SHELLEY_START = datetime(2020, 7, 29, 21, 44, 51, tzinfo=timezone.utc)


def test_era_constants() -> None:
    assert MAINNET.transition_slot == 4492800
    assert MAINNET.transition_time == 1596059091
    assert MAINNET.transition_time == int(SHELLEY_START.timestamp())


def test_first_slot_of_epoch() -> None:
    tm = TimeModel()
    assert tm.first_slot_of_epoch(208) == 4492800
    assert tm.first_slot_of_epoch(209) == 4492800 + 432000
    assert tm.first_slot_of_epoch(100) == 0


def test_absolute_slot_to_epoch_across_the_hard_fork() -> None:
    tm = TimeModel()
    assert tm.absolute_slot_to_epoch(0) == 0
    assert tm.absolute_slot_to_epoch(21600) == 1
    assert tm.absolute_slot_to_epoch(4492799) == 207
    assert tm.absolute_slot_to_epoch(4492800) == 208
    assert tm.absolute_slot_to_epoch(4492800 + 432000 - 1) == 208
    assert tm.absolute_slot_to_epoch(4492800 + 432000) == 209


@pytest.mark.parametrize("slot", [0, 5, 21599, 21600, 4492799, 4492800, 4924805, 150_000_000])
def test_slot_epoch_round_trip(slot: int) -> None:
    tm = TimeModel()
    epoch = tm.absolute_slot_to_epoch(slot)
    if epoch >= MAINNET.transition_epoch:
        assert tm.absolute_slot_to_epoch(tm.first_slot_of_epoch(epoch)) == epoch
    e, first = tm.epoch_and_first_slot(slot)
    assert e == epoch
    assert first <= slot
    assert tm.absolute_slot_to_epoch(first) == epoch


def test_first_slot_of_epoch_containing() -> None:
    tm = TimeModel()
    assert tm.first_slot_of_epoch_containing(4492800 + 432000 + 5) == 4492800 + 432000
    assert tm.first_slot_of_epoch_containing(4492800) == 4492800
    assert tm.first_slot_of_epoch_containing(1234) == 0


def test_epoch_and_first_slot_in_byron() -> None:
    assert TimeModel().epoch_and_first_slot(21605) == (1, 21600)


def test_time_before_genesis_is_slot_zero() -> None:
    tm = TimeModel()
    assert tm.time_to_absolute_slot(datetime(2017, 1, 1, tzinfo=timezone.utc)) == 0
    assert tm.time_to_absolute_slot(datetime(1970, 1, 1, tzinfo=timezone.utc)) == 0


def test_time_to_absolute_slot_uses_byron_slot_length_before_transition() -> None:
    tm = TimeModel()
    genesis = datetime.fromtimestamp(MAINNET.system_start, tz=timezone.utc)
    assert tm.time_to_absolute_slot(genesis + timedelta(seconds=41)) == 2
    assert tm.time_to_absolute_slot(SHELLEY_START) == 4492800
    assert tm.time_to_absolute_slot(SHELLEY_START + timedelta(seconds=10)) == 4492810


@pytest.fixture
def host_in_new_york(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_naive_datetimes_are_read_as_utc(host_in_new_york: None) -> None:
    tm = TimeModel()
    naive = SHELLEY_START.replace(tzinfo=None)
    assert tm.time_to_absolute_slot(naive) == 4492800
    assert tm.time_to_epoch(naive + timedelta(days=5)) == tm.time_to_epoch(SHELLEY_START + timedelta(days=5))
    assert tm.time_to_slot_in_epoch(naive + timedelta(seconds=7)) == 7


def test_absolute_slot_to_time_inverts_shelley_branch() -> None:
    tm = TimeModel()
    assert tm.absolute_slot_to_time(4492800) == SHELLEY_START
    t = SHELLEY_START + timedelta(days=3, seconds=17)
    assert tm.absolute_slot_to_time(tm.time_to_absolute_slot(t)) == t


def test_epoch_start_and_end_time() -> None:
    tm = TimeModel()
    assert tm.epoch_start_time(208) == SHELLEY_START
    assert tm.epoch_end_time(208) == SHELLEY_START + timedelta(seconds=431999)
    assert tm.time_to_epoch(tm.epoch_start_time(300)) == 300
    assert tm.time_to_epoch(tm.epoch_end_time(300)) == 300
    assert tm.time_to_epoch(tm.epoch_end_time(300) + timedelta(seconds=1)) == 301


def test_slot_time_iso_uses_configured_timezone() -> None:
    tm = TimeModel(tz=pytz.timezone("Europe/Rome"))
    assert tm.slot_time_iso(4492800) == "2020-07-29T23:44:51+02:00"
    assert TimeModel().slot_time_iso(4492800) == "2020-07-29T21:44:51+00:00"


def test_current_helpers_accept_now() -> None:
    tm = TimeModel()
    start = tm.epoch_start_time(300)
    assert tm.current_epoch(start) == 300
    assert tm.current_slot(start) == tm.first_slot_of_epoch(300)
    assert tm.current_slot_in_epoch(start + timedelta(seconds=10)) == 10
    assert not tm.next_nonce_available(start + timedelta(seconds=NEXT_NONCE_SLOT_IN_EPOCH - 1))
    assert tm.next_nonce_available(start + timedelta(seconds=NEXT_NONCE_SLOT_IN_EPOCH))


def test_synthetic_eras() -> None:
    tm = TimeModel(EraParameters(transition_epoch=0, epoch_length=10))
    assert tm.first_slot_of_epoch(3) == 30
    assert tm.absolute_slot_to_epoch(39) == 3
    assert tm.first_slot_of_epoch_containing(37) == 30
