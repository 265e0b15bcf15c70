from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from uuid import UUID


@dataclass
class ProcessIdentity:
    subject_uuid: UUID | None = None
    exec_event_uuid: UUID | None = None


class ProcessIdentityCache:
    """pid -> last-known process subject and execute event.

    One entry per pid; each field is overwritten when a newer subject or
    execute event arrives. The cache keeps at most `max_entries` pids and
    evicts the least recently active one. A pid reused by the OS simply
    overwrites the previous process's fields.
    """

    def __init__(self, max_entries: int = 65536):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, ProcessIdentity] = OrderedDict()
        self._lock = threading.Lock()

    def _touch(self, pid: str) -> ProcessIdentity:
        entry = self._entries.get(pid)
        if entry is None:
            entry = self._entries[pid] = ProcessIdentity()
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        else:
            self._entries.move_to_end(pid)
        return entry

    def put_subject(self, pid: str, subject_uuid: UUID) -> None:
        with self._lock:
            self._touch(pid).subject_uuid = subject_uuid

    def put_exec_event(self, pid: str, event_uuid: UUID) -> None:
        with self._lock:
            self._touch(pid).exec_event_uuid = event_uuid

    def _get(self, pid: str | None) -> ProcessIdentity | None:
        if pid is None:
            return None
        with self._lock:
            entry = self._entries.get(pid)
            if entry is not None:
                self._entries.move_to_end(pid)
            return entry

    def subject(self, pid: str | None) -> UUID | None:
        entry = self._get(pid)
        return entry.subject_uuid if entry else None

    def exec_event(self, pid: str | None) -> UUID | None:
        entry = self._get(pid)
        return entry.exec_event_uuid if entry else None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, pid: object) -> bool:
        return pid in self._entries
