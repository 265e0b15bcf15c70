from __future__ import annotations

from abc import ABC, abstractmethod

from .models import Edge, Vertex


class AbstractStorage(ABC):
    """Contract between the audit pipeline and a storage backend.

    Every method reports success as a bool and logs the reason for a
    failure; no exception crosses this boundary.
    """

    @abstractmethod
    def initialize(self, arguments: str = "") -> bool:
        """Open the backend using a whitespace-separated argument string."""

    @abstractmethod
    def put_vertex(self, vertex: Vertex) -> bool:
        """Persist or forward one vertex."""

    @abstractmethod
    def put_edge(self, edge: Edge) -> bool:
        """Persist or forward one edge."""

    @abstractmethod
    def shutdown(self) -> bool:
        """Flush outstanding work and release resources."""
