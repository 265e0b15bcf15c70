"""
Translate provenance vertices and edges into causality-model records.

Processes become subjects (plus a principal), artifacts become file, netflow,
memory or src/sink objects, and every edge becomes an event together with the
edges that tie it to the affected object and the acting subject. Cross-record
references that are not present on the edge itself (the subject of a
derivation, the execute event a library load belongs to) are resolved through
a `ProcessIdentityCache`.
"""

from __future__ import annotations

import logging
from uuid import UUID

from provgraph.core.identity import content_uuid
from provgraph.core.models import Edge, Vertex
from provgraph.errors import MappingError

from .process_cache import ProcessIdentityCache
from .records import (
    SOURCES,
    AbstractObject,
    EdgeType,
    Event,
    EventType,
    FileObject,
    InstrumentationSource,
    MemoryObject,
    NetFlowObject,
    Principal,
    Record,
    SimpleEdge,
    SrcSinkObject,
    Subject,
)
from .rules import EDGE_RULES, EDGE_TYPES, EdgeRule, Endpoint, Handling

logger = logging.getLogger(__name__)

PRINCIPAL_KEYS = ("uid", "euid", "gid", "egid", "source")


def vertex_uuid(vertex: Vertex) -> UUID:
    return content_uuid(vertex.content_hash)


def edge_uuid(edge: Edge) -> UUID:
    return content_uuid(edge.content_hash)


def instrumentation_source(value: str | None) -> InstrumentationSource | None:
    return SOURCES.get(value or "")


def parse_time_micros(value: str | None, default: int | None = 0) -> int | None:
    """Decimal seconds text -> int(value * 1000); unparsable text yields `default`."""
    if value is None:
        return default
    try:
        return int(float(value) * 1000)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Time is not a decimal number: %r", value)
        return default


def _int(value: str | None, name: str, *, base: int = 10) -> int:
    if value is None:
        raise MappingError(f"missing {name!r}")
    try:
        return int(value, base)
    except (TypeError, ValueError) as e:
        raise MappingError(f"{name!r} is not an integer: {value!r}") from e


def _props(**values: str | None) -> dict[str, str]:
    return {k: v for k, v in values.items() if v is not None}


class CDMTranslator:
    def __init__(self, cache: ProcessIdentityCache | None = None):
        self.cache = cache if cache is not None else ProcessIdentityCache()

    # ---- vertices ----

    def map_vertex(self, vertex: Vertex) -> list[Record]:
        """Return the records for one vertex; an empty list means it was rejected."""
        try:
            if vertex.type == "Process":
                return self.map_process(vertex)
            if vertex.type == "Artifact":
                return self.map_artifact(vertex)
            raise MappingError(f"unexpected vertex type {vertex.type!r}")
        except MappingError as e:
            logger.warning("Cannot map %s vertex: %s", vertex.type, e)
            return []

    def map_process(self, vertex: Vertex) -> list[Record]:
        source = instrumentation_source(vertex.get("source"))
        if source is None:
            raise MappingError(f"unexpected activity source {vertex.get('source')!r}")

        subject_uuid = vertex_uuid(vertex)
        pid = vertex.get("pid")
        unit = vertex.get("unit")
        start = parse_time_micros(vertex.get("start time"), default=None)
        subject = Subject(
            uuid=subject_uuid,
            source=source,
            start_timestamp_micros=start,
            pid=_int(pid, "pid"),
            ppid=_int(vertex.get("ppid"), "ppid"),
            unit_id=_int(unit, "unit") if unit is not None else None,
            cmd_line=vertex.get("commandline"),
            properties=_props(
                programName=vertex.get("name"),
                uid=vertex.get("uid"),
                group=vertex.get("gid"),
                currentDirectory=vertex.get("cwd"),
            ),
        )
        self.cache.put_subject(pid, subject_uuid)
        records: list[Record] = [subject]

        principal_vertex = Vertex(
            type="Principal", annotations={k: vertex.get(k) for k in PRINCIPAL_KEYS}
        )
        try:
            principal = Principal(
                uuid=vertex_uuid(principal_vertex),
                user_id=_int(vertex.get("uid"), "uid"),
                group_ids=[_int(vertex.get("gid"), "gid")],
                properties=_props(euid=vertex.get("euid"), egid=vertex.get("egid")),
                source=source,
            )
        except MappingError as e:
            logger.warning("No principal for pid %s: %s", pid, e)
            return records

        records.append(principal)
        records.append(
            SimpleEdge(
                from_uuid=subject_uuid,
                to_uuid=principal.uuid,
                type=EdgeType.SUBJECT_HASLOCALPRINCIPAL,
                timestamp=start or 0,
            )
        )
        return records

    def map_artifact(self, vertex: Vertex) -> list[Record]:
        source = instrumentation_source(vertex.get("source"))
        if source is None:
            logger.warning("Unexpected entity source: %r", vertex.get("source"))
        base = AbstractObject(source=source)
        uid = vertex_uuid(vertex)
        subtype = vertex.subtype

        if subtype in ("file", "pipe"):
            return [
                FileObject(
                    uuid=uid,
                    base_object=base,
                    url="file://" + (vertex.get("path") or ""),
                    version=_int(vertex.get("version"), "version"),
                    is_pipe=subtype == "pipe",
                )
            ]

        if subtype == "network":
            # both endpoints are required by the schema; unset ones become ""/0
            src_host = vertex.get("source host")
            dst_host = vertex.get("destination host")
            return [
                NetFlowObject(
                    uuid=uid,
                    base_object=base,
                    src_address=src_host or "",
                    src_port=_int(vertex.get("source port"), "source port") if src_host is not None else 0,
                    dest_address=dst_host or "",
                    dest_port=_int(vertex.get("destination port"), "destination port")
                    if dst_host is not None
                    else 0,
                )
            ]

        if subtype == "memory":
            props = _props(size=vertex.get("size"), protection=vertex.get("protection"))
            if props:
                base.properties = props
            return [
                MemoryObject(
                    uuid=uid,
                    base_object=base,
                    memory_address=_int(vertex.get("memory address"), "memory address", base=16),
                )
            ]

        if subtype == "unknown":
            # path looks like /<pid>/fd/<fd>
            tokens = (vertex.get("path") or "").split("/")
            if len(tokens) < 4:
                raise MappingError(f"cannot recover pid and fd from path {vertex.get('path')!r}")
            base.properties = _props(pid=tokens[1], fd=tokens[3], version=vertex.get("version"))
            return [SrcSinkObject(uuid=uid, base_object=base)]

        logger.warning("Unexpected artifact subtype: %r", subtype)
        return []

    # ---- edges ----

    def map_edge(self, edge: Edge) -> list[Record]:
        """Return the records for one edge; an empty list means it was rejected or suppressed."""
        try:
            return self._map_edge(edge)
        except MappingError as e:
            logger.warning("Cannot map %s edge: %s", edge.type, e)
            return []

    def _endpoint(self, edge: Edge, which: Endpoint) -> Vertex:
        return edge.source if which is Endpoint.SOURCE else edge.destination

    def _pid(self, edge: Edge, which: Endpoint) -> str | None:
        if which is Endpoint.EDGE:
            return edge.get("pid")
        return self._endpoint(edge, which).get("pid")

    def _rule(self, edge: Edge) -> EdgeRule:
        if edge.type not in EDGE_TYPES:
            raise MappingError(f"unexpected edge type {edge.type!r}")
        operation = edge.get("operation")
        if operation is None:
            raise MappingError("missing operation")
        rule = EDGE_RULES.get((edge.type, operation))
        if rule is None:
            raise MappingError(f"unexpected operation {operation!r}")
        return rule

    def _map_edge(self, edge: Edge) -> list[Record]:
        rule = self._rule(edge)
        kind = EDGE_TYPES[edge.type]
        timestamp = parse_time_micros(edge.get("time"), default=0)

        if rule.handling is Handling.SUPPRESS:
            logger.debug("Skipping %s/%s, carried by the derivation edge", edge.type, edge.get("operation"))
            return []

        if rule.handling is Handling.LOAD:
            pid = self._pid(edge, kind.pid_from)
            exec_uuid = self.cache.exec_event(pid)
            if exec_uuid is None:
                raise MappingError(f"no execute event cached for pid {pid}")
            return [
                SimpleEdge(
                    from_uuid=exec_uuid,
                    to_uuid=vertex_uuid(edge.destination),
                    type=rule.affects,
                    timestamp=timestamp,
                )
            ]

        pid = self._pid(edge, kind.pid_from)
        thread_id = _int(pid, "pid")
        affected = self._endpoint(edge, kind.affected)
        affects = rule.affects_for(affected.subtype)
        if affects is None:
            raise MappingError(f"invalid {kind.affected.value} vertex subtype {affected.subtype!r}")

        event_id = edge.get("event id")
        try:
            sequence = int(event_id) if event_id is not None else 0
        except ValueError:
            sequence = 0

        source = instrumentation_source(edge.get("source"))
        if source is None:
            logger.warning("Unexpected edge source: %r", edge.get("source"))

        size = None
        if rule.carries_size and edge.get("size") is not None:
            try:
                size = int(edge.get("size"))
            except ValueError:
                size = 0

        properties = {"eventId": str(sequence)}
        if rule.permissions and edge.get("mode") is not None:
            properties["permissions"] = edge.get("mode")

        event_uuid = edge_uuid(edge)
        affected_uuid = vertex_uuid(affected)
        records: list[Record] = [
            Event(
                uuid=event_uuid,
                timestamp_micros=timestamp,
                sequence=sequence,
                source=source,
                type=rule.event,
                thread_id=thread_id,
                size=size,
                properties=properties,
            ),
            SimpleEdge(from_uuid=event_uuid, to_uuid=affected_uuid, type=affects, timestamp=timestamp),
        ]

        if rule.handling is Handling.DERIVATION:
            records.append(
                SimpleEdge(
                    from_uuid=vertex_uuid(edge.destination),
                    to_uuid=event_uuid,
                    type=EdgeType.FILE_AFFECTS_EVENT,
                    timestamp=timestamp,
                )
            )

        subject_uuid = self._acting_subject(edge, kind.process, pid)
        if subject_uuid is not None:
            records.append(
                SimpleEdge(
                    from_uuid=event_uuid,
                    to_uuid=subject_uuid,
                    type=EdgeType.EVENT_ISGENERATEDBY_SUBJECT,
                    timestamp=timestamp,
                )
            )
        else:
            logger.warning("No process subject cached for pid %s", thread_id)

        if rule.event is EventType.EXECUTE and edge.source.get("pid") is not None:
            self.cache.put_exec_event(edge.source.get("pid"), event_uuid)

        return records

    def _acting_subject(self, edge: Edge, which: Endpoint, pid: str | None) -> UUID | None:
        if which is not Endpoint.EDGE:
            process = self._endpoint(edge, which)
            if process.type == "Process":
                return vertex_uuid(process)
        return self.cache.subject(pid)
