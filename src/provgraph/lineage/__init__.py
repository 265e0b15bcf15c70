"""Relational lineage store: dynamic-schema persistence and lineage traversal."""

from .config import ConnectionArgs
from .schema import DynamicSchema, sanitize_column
from .store import SQLLineageStore, parse_predicate

__all__ = ["ConnectionArgs", "DynamicSchema", "SQLLineageStore", "parse_predicate", "sanitize_column"]
