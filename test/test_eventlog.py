# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

from pathlib import Path

import pytest

from pytcb import eventlog
from pytcb.errors import InvalidEventLog
from pytcb.eventlog import EventLog


@pytest.mark.parametrize("n", [0, 1, 2, 7])
def test_indexed_round_trip(n: int):
    log = EventLog.of([f"event {i}".encode() for i in range(n)])
    indexed = log.to_indexed()

    assert sorted(indexed) == list(range(n))
    assert EventLog.from_indexed(indexed, strict=True) == log


def test_empty_log_is_valid():
    log = EventLog()
    eventlog.validate(log.events)
    assert len(log) == 0
    assert EventLog.from_indexed({}) == log


def test_events_are_opaque():
    log = EventLog.of([b"", b"\x00\xff", bytearray(b"abc")])
    assert log.events == (b"", b"\x00\xff", b"abc")
    assert log[2] == b"abc"
    assert list(log) == [b"", b"\x00\xff", b"abc"]


@pytest.mark.parametrize(
    "events",
    [
        b"not a list",
        "not a list",
        [b"ok", "not bytes"],
        [b"ok", None],
        [1, 2],
    ],
)
def test_validate_rejects_non_bytes(events):
    with pytest.raises(InvalidEventLog):
        eventlog.validate(events)


def test_reader_stops_at_first_hole():
    indexed = {0: b"a", 1: b"b", 3: b"d"}
    assert EventLog.from_indexed(indexed).events == (b"a", b"b")


def test_strict_reader_rejects_hole():
    with pytest.raises(InvalidEventLog, match="hole at index 2"):
        EventLog.from_indexed({0: b"a", 1: b"b", 3: b"d"}, strict=True)


def test_strict_reader_rejects_missing_first_index():
    assert len(EventLog.from_indexed({1: b"b"})) == 0
    with pytest.raises(InvalidEventLog, match="hole at index 0"):
        EventLog.from_indexed({1: b"b"}, strict=True)


def test_strict_reader_rejects_non_integer_keys():
    with pytest.raises(InvalidEventLog, match="'x'"):
        EventLog.from_indexed({0: b"a", "x": b"b"}, strict=True)


def test_fw_cfg_names():
    log = EventLog.of([b"first", b"second"])
    assert eventlog.to_fw_cfg(log) == {
        "opt/org.tianocode/sp800155evt/0": b"first",
        "opt/org.tianocode/sp800155evt/1": b"second",
    }
    assert eventlog.from_fw_cfg(eventlog.to_fw_cfg(log)) == log


def test_fw_cfg_directory(tmp_path: Path):
    log = EventLog.of([b"first", b"second", b"third"])
    eventlog.write_fw_cfg(log, tmp_path)

    assert (tmp_path / "opt/org.tianocode/sp800155evt/2").read_bytes() == b"third"
    assert eventlog.read_fw_cfg(tmp_path) == log


def test_fw_cfg_directory_hole(tmp_path: Path):
    eventlog.write_fw_cfg(EventLog.of([b"a", b"b", b"c"]), tmp_path)
    (tmp_path / eventlog.fw_cfg_name(1)).unlink()

    # Event 2 is still on disk, but firmware never gets to see it.
    assert eventlog.read_fw_cfg(tmp_path).events == (b"a",)


def test_fw_cfg_empty_directory(tmp_path: Path):
    assert eventlog.read_fw_cfg(tmp_path) == EventLog()


def test_fw_cfg_directory_overwrite(tmp_path: Path):
    eventlog.write_fw_cfg(EventLog.of([b"old 0", b"old 1", b"old 2"]), tmp_path)
    eventlog.write_fw_cfg(EventLog.of([b"new 0"]), tmp_path)

    assert eventlog.read_fw_cfg(tmp_path).events == (b"new 0",)
    assert not (tmp_path / eventlog.fw_cfg_name(1)).exists()


def test_fw_cfg_directory_overwrite_with_empty_log(tmp_path: Path):
    eventlog.write_fw_cfg(EventLog.of([b"old 0"]), tmp_path)
    eventlog.write_fw_cfg(EventLog(), tmp_path)

    assert eventlog.read_fw_cfg(tmp_path) == EventLog()


def test_generator_events():
    log = EventLog.of(e for e in [b"a", b"b"])
    assert log.events == (b"a", b"b")
