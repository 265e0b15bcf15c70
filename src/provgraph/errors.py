from __future__ import annotations


class ProvGraphError(Exception):
    """Base class for provgraph errors. Never raised across a storage boundary."""


class ConfigurationError(ProvGraphError):
    """Malformed storage arguments or an unavailable driver."""


class MappingError(ProvGraphError):
    """A vertex or edge could not be expressed in the causality model."""
