"""Content-addressed identity for vertices and edges.

A record's identity is an MD5 digest over a canonical JSON encoding of its
type and annotations (plus both endpoint identities for edges). The same
digest is the `hash` column of the lineage store and, rendered as a UUID, the
uuid of every translated causality record.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from collections.abc import Mapping


def _digest(payload: dict) -> str:
    s = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.md5(s.encode("utf-8")).hexdigest()  # stable across runs


def vertex_hash(type_: str, annotations: Mapping[str, str]) -> str:
    return _digest({"type": type_, "annotations": dict(annotations)})


def edge_hash(
    type_: str, annotations: Mapping[str, str], *, source_hash: str, destination_hash: str
) -> str:
    return _digest(
        {
            "type": type_,
            "annotations": dict(annotations),
            "source": source_hash,
            "destination": destination_hash,
        }
    )


def content_uuid(digest: str) -> uuid.UUID:
    return uuid.UUID(hex=digest)
