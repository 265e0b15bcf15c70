"""Normalized causality-model records (subjects, objects, principals, events, edges).

Field names follow the wire schema in camelCase through aliases; Python code
uses the snake_case attribute names.
"""

from __future__ import annotations

from enum import Enum
from typing import Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class InstrumentationSource(str, Enum):
    LINUX_AUDIT_TRACE = "SOURCE_LINUX_AUDIT_TRACE"
    LINUX_PROC_TRACE = "SOURCE_LINUX_PROC_TRACE"
    LINUX_BEEP_TRACE = "SOURCE_LINUX_BEEP_TRACE"


# audit "source" annotation -> instrumentation source
SOURCES = {
    "/dev/audit": InstrumentationSource.LINUX_AUDIT_TRACE,
    "/proc": InstrumentationSource.LINUX_PROC_TRACE,
    "beep": InstrumentationSource.LINUX_BEEP_TRACE,
}


class SubjectType(str, Enum):
    PROCESS = "SUBJECT_PROCESS"


class PrincipalType(str, Enum):
    LOCAL = "PRINCIPAL_LOCAL"


class SrcSinkType(str, Enum):
    UNKNOWN = "SOURCE_UNKNOWN"


class EventType(str, Enum):
    ACCEPT = "EVENT_ACCEPT"
    CHANGE_PRINCIPAL = "EVENT_CHANGE_PRINCIPAL"
    CLONE = "EVENT_CLONE"
    CONNECT = "EVENT_CONNECT"
    EXECUTE = "EVENT_EXECUTE"
    FORK = "EVENT_FORK"
    LINK = "EVENT_LINK"
    MMAP = "EVENT_MMAP"
    MODIFY_FILE_ATTRIBUTES = "EVENT_MODIFY_FILE_ATTRIBUTES"
    MPROTECT = "EVENT_MPROTECT"
    OPEN = "EVENT_OPEN"
    READ = "EVENT_READ"
    RENAME = "EVENT_RENAME"
    TRUNCATE = "EVENT_TRUNCATE"
    UNIT = "EVENT_UNIT"
    UPDATE = "EVENT_UPDATE"
    WRITE = "EVENT_WRITE"


class EdgeType(str, Enum):
    EVENT_AFFECTS_MEMORY = "EDGE_EVENT_AFFECTS_MEMORY"
    EVENT_AFFECTS_FILE = "EDGE_EVENT_AFFECTS_FILE"
    EVENT_AFFECTS_NETFLOW = "EDGE_EVENT_AFFECTS_NETFLOW"
    EVENT_AFFECTS_SUBJECT = "EDGE_EVENT_AFFECTS_SUBJECT"
    EVENT_AFFECTS_SRCSINK = "EDGE_EVENT_AFFECTS_SRCSINK"
    EVENT_ISGENERATEDBY_SUBJECT = "EDGE_EVENT_ISGENERATEDBY_SUBJECT"
    FILE_AFFECTS_EVENT = "EDGE_FILE_AFFECTS_EVENT"
    MEMORY_AFFECTS_EVENT = "EDGE_MEMORY_AFFECTS_EVENT"
    NETFLOW_AFFECTS_EVENT = "EDGE_NETFLOW_AFFECTS_EVENT"
    SRCSINK_AFFECTS_EVENT = "EDGE_SRCSINK_AFFECTS_EVENT"
    SUBJECT_HASLOCALPRINCIPAL = "EDGE_SUBJECT_HASLOCALPRINCIPAL"


class CDMRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AbstractObject(CDMRecord):
    source: InstrumentationSource | None = None
    properties: dict[str, str] | None = None


class Subject(CDMRecord):
    uuid: UUID
    type: SubjectType = SubjectType.PROCESS
    source: InstrumentationSource
    start_timestamp_micros: int | None = None
    pid: int
    ppid: int
    unit_id: int | None = None
    cmd_line: str | None = None
    properties: dict[str, str] = Field(default_factory=dict)


class Principal(CDMRecord):
    uuid: UUID
    user_id: int
    group_ids: list[int] = Field(default_factory=list)
    properties: dict[str, str] = Field(default_factory=dict)
    type: PrincipalType = PrincipalType.LOCAL
    source: InstrumentationSource


class FileObject(CDMRecord):
    uuid: UUID
    base_object: AbstractObject
    url: str
    version: int
    is_pipe: bool = False


class NetFlowObject(CDMRecord):
    uuid: UUID
    base_object: AbstractObject
    src_address: str
    src_port: int
    dest_address: str
    dest_port: int


class MemoryObject(CDMRecord):
    uuid: UUID
    base_object: AbstractObject
    memory_address: int


class SrcSinkObject(CDMRecord):
    uuid: UUID
    base_object: AbstractObject
    type: SrcSinkType = SrcSinkType.UNKNOWN


class Event(CDMRecord):
    uuid: UUID
    timestamp_micros: int
    sequence: int = 0
    source: InstrumentationSource | None = None
    type: EventType
    thread_id: int
    size: int | None = None
    properties: dict[str, str] = Field(default_factory=dict)


class SimpleEdge(CDMRecord):
    from_uuid: UUID
    to_uuid: UUID
    type: EdgeType
    timestamp: int = 0


Record = Union[
    Subject,
    Principal,
    FileObject,
    NetFlowObject,
    MemoryObject,
    SrcSinkObject,
    Event,
    SimpleEdge,
]


def record_type(record: Record) -> str:
    return type(record).__name__


def to_wire(record: Record) -> dict:
    return record.model_dump(mode="json", by_alias=True, exclude_none=True)
