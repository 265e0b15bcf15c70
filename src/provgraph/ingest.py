"""Replay a recorded provenance stream into a storage backend.

The stream is JSON lines, one record per line:

    {"kind": "vertex", "id": "p1", "type": "Process", "annotations": {...}}
    {"kind": "edge", "type": "Used", "source": "p1", "destination": "f1", "annotations": {...}}

Edges refer to vertices by the `id` given earlier in the same stream.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from provgraph.core.models import Edge, Vertex
from provgraph.core.storage import AbstractStorage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestStats:
    vertices: int = 0
    edges: int = 0
    accepted: int = 0
    rejected: int = 0
    malformed: int = 0


def iter_stream(lines: Iterable[str], stats: IngestStats | None = None) -> Iterator[Vertex | Edge]:
    stats = stats if stats is not None else IngestStats()
    vertices: dict[str, Vertex] = {}
    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
            kind = obj.get("kind")
            if kind == "vertex":
                v = Vertex(type=obj["type"], annotations=obj.get("annotations") or {})
                vertices[str(obj.get("id", lineno))] = v
                yield v
            elif kind == "edge":
                yield Edge(
                    type=obj["type"],
                    source=vertices[str(obj["source"])],
                    destination=vertices[str(obj["destination"])],
                    annotations=obj.get("annotations") or {},
                )
            else:
                raise ValueError(f"unknown kind {kind!r}")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            stats.malformed += 1
            logger.warning("Line %d skipped: %s", lineno, e)


def ingest_file(path: str | Path, storage: AbstractStorage) -> IngestStats:
    stats = IngestStats()
    with open(path, encoding="utf-8") as f:
        for item in iter_stream(f, stats):
            if isinstance(item, Vertex):
                stats.vertices += 1
                ok = storage.put_vertex(item)
            else:
                stats.edges += 1
                ok = storage.put_edge(item)
            if ok:
                stats.accepted += 1
            else:
                stats.rejected += 1
    return stats
