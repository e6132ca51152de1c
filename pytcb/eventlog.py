# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

from dataclasses import dataclass
from itertools import count
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Sequence, Tuple

from .errors import InvalidEventLog

# The VMM exposes each SP 800-155 event as a QEMU fw_cfg file with a 0-indexed
# suffix. Indices are contiguous: the first missing index terminates the
# firmware's registration loop, there is no count anywhere.
FW_CFG_EVENT_PREFIX = "opt/org.tianocode/sp800155evt"


def fw_cfg_name(index: int) -> str:
    return f"{FW_CFG_EVENT_PREFIX}/{index}"


def validate(events: Sequence[Any]) -> None:
    """
    Check that `events` is an ordered sequence of byte strings.

    Events are opaque, so any sequence of byte strings is a valid event log,
    including an empty one.
    """
    if isinstance(events, (bytes, bytearray, str)):
        raise InvalidEventLog("event log must be a sequence of events")
    for i, event in enumerate(events):
        if not isinstance(event, (bytes, bytearray)):
            raise InvalidEventLog(
                f"event {i} is a {type(event).__name__}, expected bytes"
            )


@dataclass(frozen=True)
class EventLog:
    events: Tuple[bytes, ...] = ()

    def __post_init__(self):
        events = self.events
        # events may be a one-shot iterable.
        if not isinstance(events, (bytes, bytearray, str)):
            events = tuple(events)
        validate(events)
        object.__setattr__(self, "events", tuple(bytes(e) for e in events))

    @classmethod
    def of(cls, events: Iterable[bytes]) -> "EventLog":
        return cls(events)  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self):
        return iter(self.events)

    def __getitem__(self, index: int) -> bytes:
        return self.events[index]

    def to_indexed(self) -> Dict[int, bytes]:
        return dict(enumerate(self.events))

    @classmethod
    def from_indexed(
        cls, indexed: Mapping[Any, bytes], *, strict: bool = False
    ) -> "EventLog":
        """
        Read an index-addressed event log the way the firmware does: enumerate
        0, 1, 2, ... and stop at the first missing index.

        With strict=True, entries that such a reader would never see (anything
        past a hole, or keys that are not non-negative integers) are an error
        rather than being dropped.
        """
        events = []
        for i in count():
            if i not in indexed:
                break
            events.append(indexed[i])

        if strict and len(events) != len(indexed):
            unreachable = sorted(
                repr(k) for k in indexed if not _is_index(k) or k >= len(events)
            )
            raise InvalidEventLog(
                f"event log has a hole at index {len(events)}; "
                f"unreachable entries: {', '.join(unreachable)}"
            )

        return cls(tuple(events))


def _is_index(key: Any) -> bool:
    return isinstance(key, int) and not isinstance(key, bool) and key >= 0


def to_fw_cfg(log: EventLog) -> Dict[str, bytes]:
    return {fw_cfg_name(i): event for i, event in enumerate(log.events)}


def from_fw_cfg(files: Mapping[str, bytes]) -> EventLog:
    events = []
    for i in count():
        name = fw_cfg_name(i)
        if name not in files:
            break
        events.append(files[name])
    return EventLog(tuple(events))


def write_fw_cfg(log: EventLog, root: Path) -> None:
    """
    Write one file per event under `root`, named after its fw_cfg path.

    Event files already under `root` are removed first: the firmware reads
    until the first missing index, so a stale file at index N or above would
    be read as part of this log.
    """
    events_dir = root / FW_CFG_EVENT_PREFIX
    if events_dir.is_dir():
        for path in events_dir.iterdir():
            if path.name.isdigit() and not path.is_dir():
                path.unlink()

    for name, event in to_fw_cfg(log).items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(event)


def read_fw_cfg(root: Path) -> EventLog:
    events = []
    for i in count():
        path = root / fw_cfg_name(i)
        if not path.is_file():
            break
        events.append(path.read_bytes())
    return EventLog(tuple(events))
