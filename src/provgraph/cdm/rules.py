"""Edge mapping table.

Every (edge type, operation) pair the translator understands has exactly one
`EdgeRule`. Anything missing from `EDGE_RULES` is rejected.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from .records import EdgeType, EventType


class Handling(Enum):
    PLAIN = "plain"
    # Encoded by the matching WasDerivedFrom edge; emitting it too would duplicate provenance.
    SUPPRESS = "suppress"
    # Links the loaded file to the cached execute event of the process.
    LOAD = "load"
    # Also emits a reverse object->event edge; the subject comes from the process cache.
    DERIVATION = "derivation"


class Endpoint(Enum):
    SOURCE = "source"
    DESTINATION = "destination"
    EDGE = "edge"  # the edge's own "pid" annotation


@dataclass(frozen=True)
class EdgeTypeRule:
    """Where an edge type keeps its process, its affected vertex and its pid."""

    process: Endpoint
    affected: Endpoint
    pid_from: Endpoint


EDGE_TYPES: Mapping[str, EdgeTypeRule] = MappingProxyType(
    {
        "WasTriggeredBy": EdgeTypeRule(Endpoint.DESTINATION, Endpoint.SOURCE, Endpoint.DESTINATION),
        "WasGeneratedBy": EdgeTypeRule(Endpoint.DESTINATION, Endpoint.SOURCE, Endpoint.DESTINATION),
        "Used": EdgeTypeRule(Endpoint.SOURCE, Endpoint.DESTINATION, Endpoint.SOURCE),
        "WasDerivedFrom": EdgeTypeRule(Endpoint.EDGE, Endpoint.SOURCE, Endpoint.EDGE),
    }
)


@dataclass(frozen=True)
class EdgeRule:
    event: EventType | None = None
    affects: EdgeType | None = None
    # affects-edge kind chosen by the affected vertex's subtype
    by_subtype: Mapping[str, EdgeType] = field(default_factory=dict)
    handling: Handling = Handling.PLAIN
    carries_size: bool = False
    permissions: bool = False

    def affects_for(self, subtype: str | None) -> EdgeType | None:
        if self.affects is not None:
            return self.affects
        return self.by_subtype.get(subtype or "")


_SUPPRESS = EdgeRule(handling=Handling.SUPPRESS)

_WRITE_TARGETS = MappingProxyType(
    {
        "memory": EdgeType.EVENT_AFFECTS_MEMORY,
        "file": EdgeType.EVENT_AFFECTS_FILE,
        "unknown": EdgeType.EVENT_AFFECTS_SRCSINK,
    }
)
_READ_SOURCES = MappingProxyType(
    {
        "memory": EdgeType.MEMORY_AFFECTS_EVENT,
        "file": EdgeType.FILE_AFFECTS_EVENT,
        "unknown": EdgeType.SRCSINK_AFFECTS_EVENT,
    }
)


def _subject(event: EventType) -> EdgeRule:
    return EdgeRule(event=event, affects=EdgeType.EVENT_AFFECTS_SUBJECT)


def _derived(event: EventType, affects: EdgeType) -> EdgeRule:
    return EdgeRule(event=event, affects=affects, handling=Handling.DERIVATION)


EDGE_RULES: Mapping[tuple[str, str], EdgeRule] = MappingProxyType(
    {
        ("WasTriggeredBy", "fork"): _subject(EventType.FORK),
        ("WasTriggeredBy", "clone"): _subject(EventType.CLONE),
        ("WasTriggeredBy", "execve"): _subject(EventType.EXECUTE),
        ("WasTriggeredBy", "setuid"): _subject(EventType.CHANGE_PRINCIPAL),
        ("WasTriggeredBy", "unit"): _subject(EventType.UNIT),
        ("WasGeneratedBy", "open"): EdgeRule(EventType.OPEN, EdgeType.EVENT_AFFECTS_FILE),
        ("WasGeneratedBy", "write"): EdgeRule(EventType.WRITE, by_subtype=_WRITE_TARGETS, carries_size=True),
        ("WasGeneratedBy", "send"): EdgeRule(EventType.WRITE, EdgeType.EVENT_AFFECTS_NETFLOW, carries_size=True),
        ("WasGeneratedBy", "sendto"): EdgeRule(EventType.WRITE, EdgeType.EVENT_AFFECTS_NETFLOW, carries_size=True),
        ("WasGeneratedBy", "mprotect"): EdgeRule(EventType.MPROTECT, EdgeType.EVENT_AFFECTS_MEMORY),
        ("WasGeneratedBy", "connect"): EdgeRule(EventType.CONNECT, EdgeType.EVENT_AFFECTS_NETFLOW),
        ("WasGeneratedBy", "truncate"): EdgeRule(EventType.TRUNCATE, EdgeType.EVENT_AFFECTS_FILE),
        ("WasGeneratedBy", "ftruncate"): EdgeRule(EventType.TRUNCATE, EdgeType.EVENT_AFFECTS_FILE),
        ("WasGeneratedBy", "chmod"): EdgeRule(
            EventType.MODIFY_FILE_ATTRIBUTES, EdgeType.EVENT_AFFECTS_FILE, permissions=True
        ),
        ("WasGeneratedBy", "rename_write"): _SUPPRESS,
        ("WasGeneratedBy", "link_write"): _SUPPRESS,
        ("WasGeneratedBy", "mmap_write"): _SUPPRESS,
        ("Used", "load"): EdgeRule(affects=EdgeType.FILE_AFFECTS_EVENT, handling=Handling.LOAD),
        ("Used", "open"): EdgeRule(EventType.OPEN, EdgeType.FILE_AFFECTS_EVENT),
        ("Used", "read"): EdgeRule(EventType.READ, by_subtype=_READ_SOURCES, carries_size=True),
        ("Used", "recv"): EdgeRule(EventType.READ, EdgeType.NETFLOW_AFFECTS_EVENT, carries_size=True),
        ("Used", "recvfrom"): EdgeRule(EventType.READ, EdgeType.NETFLOW_AFFECTS_EVENT, carries_size=True),
        ("Used", "accept"): EdgeRule(EventType.ACCEPT, EdgeType.NETFLOW_AFFECTS_EVENT),
        ("Used", "rename_read"): _SUPPRESS,
        ("Used", "link_read"): _SUPPRESS,
        ("Used", "mmap_read"): _SUPPRESS,
        ("WasDerivedFrom", "mmap"): _derived(EventType.MMAP, EdgeType.EVENT_AFFECTS_MEMORY),
        ("WasDerivedFrom", "mmap2"): _derived(EventType.MMAP, EdgeType.EVENT_AFFECTS_MEMORY),
        ("WasDerivedFrom", "update"): _derived(EventType.UPDATE, EdgeType.EVENT_AFFECTS_FILE),
        ("WasDerivedFrom", "rename"): _derived(EventType.RENAME, EdgeType.EVENT_AFFECTS_FILE),
        ("WasDerivedFrom", "link"): _derived(EventType.LINK, EdgeType.EVENT_AFFECTS_FILE),
    }
)


def operations(edge_type: str) -> list[str]:
    return sorted(op for (t, op) in EDGE_RULES if t == edge_type)
