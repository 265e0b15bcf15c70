from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from .identity import edge_hash, vertex_hash


def _clean(annotations: Mapping[str, Any] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in (annotations or {}).items():
        if v is None:
            continue
        out[str(k)] = str(v)
    return out


@dataclass(slots=True)
class Vertex:
    """A provenance vertex (Process, Artifact, Agent, ...).

    `type` is kept out of `annotations`; identity covers both.
    """

    type: str
    annotations: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.annotations = _clean(self.annotations)
        self.annotations.pop("type", None)

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.annotations.get(key, default)

    @property
    def subtype(self) -> str | None:
        return self.annotations.get("subtype")

    @property
    def content_hash(self) -> str:
        return vertex_hash(self.type, self.annotations)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "annotations": dict(self.annotations)}


@dataclass(slots=True)
class Edge:
    """A directed provenance edge from `source` to `destination`.

    In OPM terms the source is the effect and the destination the cause,
    e.g. an artifact WasGeneratedBy a process.
    """

    type: str
    source: Vertex
    destination: Vertex
    annotations: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.annotations = _clean(self.annotations)
        self.annotations.pop("type", None)

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.annotations.get(key, default)

    @property
    def content_hash(self) -> str:
        return edge_hash(
            self.type,
            self.annotations,
            source_hash=self.source.content_hash,
            destination_hash=self.destination.content_hash,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "source": self.source.content_hash,
            "destination": self.destination.content_hash,
            "annotations": dict(self.annotations),
        }


@dataclass
class Graph:
    """In-memory container for query results.

    Vertices and edges are keyed by identity, so adding the same record twice
    keeps one copy. Callers that rebuild records from storage pass the stored
    hash as the key.
    """

    vertices: dict[str, Vertex] = field(default_factory=dict)
    edges: dict[str, Edge] = field(default_factory=dict)

    def add_vertex(self, vertex: Vertex, key: str | None = None) -> None:
        self.vertices.setdefault(key or vertex.content_hash, vertex)

    def add_edge(self, edge: Edge, key: str | None = None) -> None:
        self.edges.setdefault(key or edge.content_hash, edge)

    def vertex_set(self) -> list[Vertex]:
        return list(self.vertices.values())

    def edge_set(self) -> list[Edge]:
        return list(self.edges.values())

    def __len__(self) -> int:
        return len(self.vertices)

    def __iter__(self) -> Iterator[Vertex]:
        return iter(self.vertices.values())

    def to_dict(self) -> dict[str, Any]:
        # endpoints are reported by the key they are stored under in this graph
        keys = {id(v): k for k, v in self.vertices.items()}
        edges = []
        for k, e in self.edges.items():
            d = e.to_dict()
            d["source"] = keys.get(id(e.source), d["source"])
            d["destination"] = keys.get(id(e.destination), d["destination"])
            edges.append({"key": k, **d})
        return {
            "vertices": [{"key": k, **v.to_dict()} for k, v in self.vertices.items()],
            "edges": edges,
        }
