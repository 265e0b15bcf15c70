"""Provenance data model and the storage contract shared by every backend."""

from .identity import content_uuid, edge_hash, vertex_hash
from .models import Edge, Graph, Vertex
from .storage import AbstractStorage

__all__ = ["Vertex", "Edge", "Graph", "AbstractStorage", "vertex_hash", "edge_hash", "content_uuid"]
