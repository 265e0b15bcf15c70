import logging

import pytest
from factories import artifact, edge, process

from provgraph.cdm.records import (
    EdgeType,
    Event,
    EventType,
    FileObject,
    InstrumentationSource,
    MemoryObject,
    NetFlowObject,
    Principal,
    SimpleEdge,
    SrcSinkObject,
    Subject,
)
from provgraph.cdm.rules import EDGE_RULES, Handling
from provgraph.cdm.translator import edge_uuid, parse_time_micros, vertex_uuid
from provgraph.core.models import Vertex


def _edges(records, type_=None):
    out = [r for r in records if isinstance(r, SimpleEdge)]
    if type_ is not None:
        out = [r for r in out if r.type is type_]
    return out


# ---- vertices ----


def test_process_becomes_subject_principal_and_link(translator):
    p = process(commandline="/sbin/init splash", cwd="/", **{"start time": "12.5"})
    subject, principal, link = translator.map_vertex(p)

    assert isinstance(subject, Subject)
    assert subject.uuid == vertex_uuid(p)
    assert subject.source is InstrumentationSource.LINUX_AUDIT_TRACE
    assert (subject.pid, subject.ppid) == (100, 1)
    assert subject.start_timestamp_micros == 12500
    assert subject.cmd_line == "/sbin/init splash"
    assert subject.properties == {"programName": "init", "uid": "0", "group": "0", "currentDirectory": "/"}

    assert isinstance(principal, Principal)
    assert principal.user_id == 0 and principal.group_ids == [0]
    assert link.type is EdgeType.SUBJECT_HASLOCALPRINCIPAL
    assert (link.from_uuid, link.to_uuid) == (subject.uuid, principal.uuid)

    assert translator.cache.subject("100") == subject.uuid


def test_processes_with_the_same_user_share_a_principal(translator):
    a = translator.map_vertex(process(pid="1"))[1]
    b = translator.map_vertex(process(pid="2", name="bash"))[1]
    assert a.uuid == b.uuid


def test_process_with_unknown_source_is_rejected(translator, caplog):
    with caplog.at_level(logging.WARNING):
        assert translator.map_vertex(process(source="/dev/kmsg")) == []
    assert "activity source" in caplog.text
    assert "100" not in translator.cache


def test_process_without_pid_is_rejected(translator):
    p = process()
    del p.annotations["pid"]
    assert translator.map_vertex(p) == []


def test_file_and_pipe_artifacts(translator):
    (f,) = translator.map_vertex(artifact())
    assert isinstance(f, FileObject)
    assert f.url == "file:///etc/passwd"
    assert f.version == 0 and f.is_pipe is False
    (pipe,) = translator.map_vertex(artifact("pipe", path="pipe:[1234]"))
    assert pipe.is_pipe is True


def test_network_artifact_fills_missing_endpoint(translator):
    (n,) = translator.map_vertex(artifact("network", **{"source host": "10.0.0.1", "source port": "5000"}))
    assert isinstance(n, NetFlowObject)
    assert (n.src_address, n.src_port) == ("10.0.0.1", 5000)
    assert (n.dest_address, n.dest_port) == ("", 0)


def test_memory_artifact_parses_hex_address(translator):
    (m,) = translator.map_vertex(artifact("memory", size="4096", **{"memory address": "7f00"}))
    assert isinstance(m, MemoryObject)
    assert m.memory_address == 0x7F00
    assert m.base_object.properties == {"size": "4096"}


def test_unknown_artifact_recovers_pid_and_fd_from_path(translator):
    (s,) = translator.map_vertex(artifact("unknown", path="/100/fd/3", version="1"))
    assert isinstance(s, SrcSinkObject)
    assert s.base_object.properties == {"pid": "100", "fd": "3", "version": "1"}
    assert translator.map_vertex(artifact("unknown", path="/100")) == []


def test_unexpected_vertices_are_rejected(translator):
    assert translator.map_vertex(artifact("socketpair")) == []
    assert translator.map_vertex(Vertex(type="Agent", annotations={})) == []


# ---- edges ----


def test_used_open_emits_event_affects_and_generated_by(translator):
    p, f = process(), artifact()
    translator.map_vertex(p)
    e = edge("Used", p, f, "open", source="/dev/audit", **{"event id": "42"})
    event, affects, generated = translator.map_edge(e)

    assert isinstance(event, Event)
    assert event.uuid == edge_uuid(e)
    assert event.type is EventType.OPEN
    assert event.thread_id == 100
    assert event.timestamp_micros == 1000000
    assert event.sequence == 42
    assert event.properties == {"eventId": "42"}
    assert event.source is InstrumentationSource.LINUX_AUDIT_TRACE

    assert affects.type is EdgeType.FILE_AFFECTS_EVENT
    assert (affects.from_uuid, affects.to_uuid) == (event.uuid, vertex_uuid(f))
    assert generated.type is EdgeType.EVENT_ISGENERATEDBY_SUBJECT
    assert (generated.from_uuid, generated.to_uuid) == (event.uuid, vertex_uuid(p))


def test_unparsable_time_falls_back_to_zero(translator, caplog):
    p = process()
    with caplog.at_level(logging.WARNING):
        records = translator.map_edge(edge("Used", p, artifact(), "open", time="abc"))
    assert records[0].timestamp_micros == 0
    assert all(r.timestamp == 0 for r in _edges(records))
    assert "not a decimal number" in caplog.text


def test_parse_time_micros():
    assert parse_time_micros("1.5") == 1500
    assert parse_time_micros(None) == 0
    assert parse_time_micros("x", default=None) is None


@pytest.mark.parametrize(
    "type_, operation",
    [
        ("WasGeneratedBy", "rename_write"),
        ("WasGeneratedBy", "link_write"),
        ("WasGeneratedBy", "mmap_write"),
        ("Used", "rename_read"),
        ("Used", "link_read"),
        ("Used", "mmap_read"),
    ],
)
def test_halves_of_derivations_are_suppressed(translator, type_, operation):
    p, f = process(), artifact()
    if type_ == "Used":
        e = edge(type_, p, f, operation)
    else:
        e = edge(type_, f, p, operation)
    assert translator.map_edge(e) == []


def test_fork_affects_the_child_subject(translator):
    parent, child = process(pid="1"), process(pid="2", ppid="1")
    event, affects, generated = translator.map_edge(edge("WasTriggeredBy", child, parent, "fork"))
    assert event.type is EventType.FORK
    assert event.thread_id == 1
    assert affects.type is EdgeType.EVENT_AFFECTS_SUBJECT
    assert affects.to_uuid == vertex_uuid(child)
    assert generated.to_uuid == vertex_uuid(parent)


def test_write_picks_affects_edge_by_subtype(translator):
    p = process()
    mem = artifact("memory", **{"memory address": "10"})
    records = translator.map_edge(edge("WasGeneratedBy", mem, p, "write", size="8"))
    assert records[0].size == 8
    assert _edges(records, EdgeType.EVENT_AFFECTS_MEMORY)[0].to_uuid == vertex_uuid(mem)

    sock = artifact("network")
    assert translator.map_edge(edge("WasGeneratedBy", sock, p, "write")) == []


def test_chmod_carries_permissions(translator):
    p, f = process(), artifact()
    event = translator.map_edge(edge("WasGeneratedBy", f, p, "chmod", mode="0644"))[0]
    assert event.type is EventType.MODIFY_FILE_ATTRIBUTES
    assert event.properties["permissions"] == "0644"


def test_unknown_operations_and_types_are_rejected(translator, caplog):
    p, f = process(), artifact()
    with caplog.at_level(logging.WARNING):
        assert translator.map_edge(edge("Used", p, f, "ioctl")) == []
        assert translator.map_edge(edge("WasInformedBy", p, p, "fork")) == []
    assert "unexpected operation" in caplog.text
    assert "unexpected edge type" in caplog.text


def test_derivation_adds_reverse_edge_and_cached_subject(translator):
    p = process()
    translator.map_vertex(p)
    mem = artifact("memory", **{"memory address": "1000"})
    f = artifact()
    records = translator.map_edge(edge("WasDerivedFrom", mem, f, "mmap", pid="100"))

    event = records[0]
    assert event.type is EventType.MMAP
    assert _edges(records, EdgeType.EVENT_AFFECTS_MEMORY)[0].to_uuid == vertex_uuid(mem)
    (reverse,) = _edges(records, EdgeType.FILE_AFFECTS_EVENT)
    assert (reverse.from_uuid, reverse.to_uuid) == (vertex_uuid(f), event.uuid)
    (generated,) = _edges(records, EdgeType.EVENT_ISGENERATEDBY_SUBJECT)
    assert generated.to_uuid == vertex_uuid(p)


def test_derivation_without_cached_subject_omits_generated_by(translator, caplog):
    old, new = artifact(path="/tmp/a"), artifact(path="/tmp/b")
    with caplog.at_level(logging.WARNING):
        records = translator.map_edge(edge("WasDerivedFrom", new, old, "rename", pid="555"))
    assert [r.type for r in _edges(records)] == [EdgeType.EVENT_AFFECTS_FILE, EdgeType.FILE_AFFECTS_EVENT]
    assert "No process subject cached for pid 555" in caplog.text


def test_load_needs_a_prior_execve(translator, caplog):
    parent, child = process(pid="1"), process(pid="200", name="ls")
    lib = artifact(path="/lib/libc.so.6")

    with caplog.at_level(logging.WARNING):
        assert translator.map_edge(edge("Used", child, lib, "load")) == []
    assert "no execute event cached for pid 200" in caplog.text

    execve = translator.map_edge(edge("WasTriggeredBy", child, parent, "execve"))
    assert execve[0].type is EventType.EXECUTE
    assert translator.cache.exec_event("200") == execve[0].uuid

    (load,) = translator.map_edge(edge("Used", child, lib, "load"))
    assert load.type is EdgeType.FILE_AFFECTS_EVENT
    assert (load.from_uuid, load.to_uuid) == (execve[0].uuid, vertex_uuid(lib))


def test_missing_operation_is_rejected(translator):
    p, f = process(), artifact()
    e = edge("Used", p, f, "open")
    del e.annotations["operation"]
    assert translator.map_edge(e) == []


# ---- every emitting rule, end to end ----

ET, EV = EdgeType, EventType

EMITTING_CASES = [
    ("WasTriggeredBy", "fork", None, EV.FORK, ET.EVENT_AFFECTS_SUBJECT),
    ("WasTriggeredBy", "clone", None, EV.CLONE, ET.EVENT_AFFECTS_SUBJECT),
    ("WasTriggeredBy", "execve", None, EV.EXECUTE, ET.EVENT_AFFECTS_SUBJECT),
    ("WasTriggeredBy", "setuid", None, EV.CHANGE_PRINCIPAL, ET.EVENT_AFFECTS_SUBJECT),
    ("WasTriggeredBy", "unit", None, EV.UNIT, ET.EVENT_AFFECTS_SUBJECT),
    ("WasGeneratedBy", "open", "file", EV.OPEN, ET.EVENT_AFFECTS_FILE),
    ("WasGeneratedBy", "write", "file", EV.WRITE, ET.EVENT_AFFECTS_FILE),
    ("WasGeneratedBy", "write", "memory", EV.WRITE, ET.EVENT_AFFECTS_MEMORY),
    ("WasGeneratedBy", "write", "unknown", EV.WRITE, ET.EVENT_AFFECTS_SRCSINK),
    ("WasGeneratedBy", "send", "network", EV.WRITE, ET.EVENT_AFFECTS_NETFLOW),
    ("WasGeneratedBy", "sendto", "network", EV.WRITE, ET.EVENT_AFFECTS_NETFLOW),
    ("WasGeneratedBy", "mprotect", "memory", EV.MPROTECT, ET.EVENT_AFFECTS_MEMORY),
    ("WasGeneratedBy", "connect", "network", EV.CONNECT, ET.EVENT_AFFECTS_NETFLOW),
    ("WasGeneratedBy", "truncate", "file", EV.TRUNCATE, ET.EVENT_AFFECTS_FILE),
    ("WasGeneratedBy", "ftruncate", "file", EV.TRUNCATE, ET.EVENT_AFFECTS_FILE),
    ("WasGeneratedBy", "chmod", "file", EV.MODIFY_FILE_ATTRIBUTES, ET.EVENT_AFFECTS_FILE),
    ("Used", "open", "file", EV.OPEN, ET.FILE_AFFECTS_EVENT),
    ("Used", "read", "file", EV.READ, ET.FILE_AFFECTS_EVENT),
    ("Used", "read", "memory", EV.READ, ET.MEMORY_AFFECTS_EVENT),
    ("Used", "read", "unknown", EV.READ, ET.SRCSINK_AFFECTS_EVENT),
    ("Used", "recv", "network", EV.READ, ET.NETFLOW_AFFECTS_EVENT),
    ("Used", "recvfrom", "network", EV.READ, ET.NETFLOW_AFFECTS_EVENT),
    ("Used", "accept", "network", EV.ACCEPT, ET.NETFLOW_AFFECTS_EVENT),
    ("WasDerivedFrom", "mmap", "memory", EV.MMAP, ET.EVENT_AFFECTS_MEMORY),
    ("WasDerivedFrom", "mmap2", "memory", EV.MMAP, ET.EVENT_AFFECTS_MEMORY),
    ("WasDerivedFrom", "update", "file", EV.UPDATE, ET.EVENT_AFFECTS_FILE),
    ("WasDerivedFrom", "rename", "file", EV.RENAME, ET.EVENT_AFFECTS_FILE),
    ("WasDerivedFrom", "link", "file", EV.LINK, ET.EVENT_AFFECTS_FILE),
]

_SUBTYPE_EXTRA = {"memory": {"memory address": "1000"}, "unknown": {"path": "/100/fd/3"}}


def _affected(subtype):
    if subtype is None:
        return process(pid="300", ppid="100", name="child")
    return artifact(subtype, **_SUBTYPE_EXTRA.get(subtype, {}))


def _edge_for(type_, operation, actor, affected, **extra):
    if type_ == "Used":
        return edge(type_, actor, affected, operation, **extra)
    if type_ == "WasDerivedFrom":
        return edge(type_, affected, artifact(path="/tmp/origin"), operation, pid=actor.get("pid"), **extra)
    return edge(type_, affected, actor, operation, **extra)


def test_emitting_cases_cover_the_rule_table():
    emitting = {k for k, r in EDGE_RULES.items() if r.handling in (Handling.PLAIN, Handling.DERIVATION)}
    assert {(t, op) for t, op, *_ in EMITTING_CASES} == emitting


@pytest.mark.parametrize("type_, operation, subtype, event_type, affects_type", EMITTING_CASES)
def test_map_edge_for_every_rule(translator, type_, operation, subtype, event_type, affects_type):
    actor = process()
    translator.map_vertex(actor)
    affected = _affected(subtype)

    records = translator.map_edge(_edge_for(type_, operation, actor, affected))

    event, affects = records[0], records[1]
    assert isinstance(event, Event)
    assert event.type is event_type
    assert event.thread_id == 100
    assert affects.type is affects_type
    assert (affects.from_uuid, affects.to_uuid) == (event.uuid, vertex_uuid(affected))
    (generated,) = _edges(records, EdgeType.EVENT_ISGENERATEDBY_SUBJECT)
    assert generated.to_uuid == vertex_uuid(actor)


# ---- thread id ----


@pytest.mark.parametrize("type_", ["Used", "WasGeneratedBy", "WasTriggeredBy"])
@pytest.mark.parametrize("pid", ["abc", None])
def test_bad_process_pid_fails_the_edge(translator, caplog, type_, pid):
    actor = process()
    if pid is None:
        del actor.annotations["pid"]
    else:
        actor.annotations["pid"] = pid
    affected = _affected(None if type_ == "WasTriggeredBy" else "file")
    operation = "fork" if type_ == "WasTriggeredBy" else "open"

    with caplog.at_level(logging.WARNING):
        assert translator.map_edge(_edge_for(type_, operation, actor, affected)) == []
    assert "'pid'" in caplog.text


@pytest.mark.parametrize("pid", ["abc", "", None])
def test_bad_derivation_pid_fails_the_edge(translator, pid):
    new, old = artifact(path="/tmp/b"), artifact(path="/tmp/a")
    extra = {} if pid is None else {"pid": pid}
    assert translator.map_edge(edge("WasDerivedFrom", new, old, "rename", **extra)) == []
