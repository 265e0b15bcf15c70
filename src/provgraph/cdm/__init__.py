"""Causality-model export: translation of the provenance stream and its publication."""

from .process_cache import ProcessIdentityCache
from .sinks import MemorySink, PublicationSink, RedisSink, build_sink
from .storage import CDMStorage
from .translator import CDMTranslator

__all__ = [
    "CDMStorage",
    "CDMTranslator",
    "MemorySink",
    "ProcessIdentityCache",
    "PublicationSink",
    "RedisSink",
    "build_sink",
]
