from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from provgraph.core.models import Edge, Vertex
from provgraph.core.storage import AbstractStorage
from provgraph.errors import ConfigurationError
from provgraph.settings import settings

from .process_cache import ProcessIdentityCache
from .records import Record
from .sinks import PublicationSink, build_sink
from .translator import CDMTranslator

logger = logging.getLogger(__name__)

# initialize() accepts `key=value` overrides for these options
OPTION_KEYS = frozenset({"sink", "url", "topic", "producer", "schema", "serializer", "cache"})


def parse_options(arguments: str | None) -> dict[str, str]:
    opts = {
        "sink": settings.sink,
        "url": settings.bus_url,
        "topic": settings.bus_topic,
        "producer": settings.producer_id,
        "schema": settings.schema_descriptor,
        "serializer": settings.serializer,
        "cache": str(settings.process_cache_size),
    }
    for token in (arguments or "").split():
        key, sep, value = token.partition("=")
        if not sep or key not in OPTION_KEYS:
            raise ConfigurationError(f"unexpected argument {token!r}; expected key=value with key in {sorted(OPTION_KEYS)}")
        opts[key] = value
    return opts


class CDMStorage(AbstractStorage):
    """Translates the provenance stream and publishes it.

    Tracks how many records the sink accepted so shutdown can report the
    volume.
    """

    def __init__(self, sink: PublicationSink | None = None, translator: CDMTranslator | None = None):
        self.sink = sink
        self.translator = translator
        self.record_count = 0
        self.start_time = 0.0

    def initialize(self, arguments: str = "") -> bool:
        try:
            opts = parse_options(arguments)
            if self.translator is None:
                self.translator = CDMTranslator(ProcessIdentityCache(max_entries=int(opts["cache"])))
            if self.sink is None:
                self.sink = build_sink(
                    opts["sink"],
                    url=opts["url"],
                    topic=opts["topic"],
                    producer_id=opts["producer"],
                    schema=opts["schema"],
                    serializer=opts["serializer"],
                )
        except (ConfigurationError, ValueError) as e:
            logger.error("Invalid causality export configuration: %s", e)
            return False
        except Exception:
            logger.exception("Failed to initialize causality export")
            return False

        # Not the first reported event, but close enough for volume stats.
        self.start_time = time.time()
        self.record_count = 0
        return True

    def _publish(self, records: Sequence[Record]) -> bool:
        if not records:
            return False
        self.record_count += self.sink.publish(records)
        return True

    def put_vertex(self, vertex: Vertex) -> bool:
        try:
            return self._publish(self.translator.map_vertex(vertex))
        except Exception:
            logger.exception("Failed to export %s vertex", vertex.type)
            return False

    def put_edge(self, edge: Edge) -> bool:
        try:
            return self._publish(self.translator.map_edge(edge))
        except Exception:
            logger.exception("Failed to export %s edge", edge.type)
            return False

    def shutdown(self) -> bool:
        try:
            logger.info("%d records", self.record_count)
            run_time = time.time() - self.start_time
            if run_time > 0:
                logger.info("Reporter runtime: %.3f secs", run_time)
                logger.info("Record volume: %.2f records/sec", self.record_count / run_time)
            if self.translator is not None:
                self.translator.cache.clear()
            if self.sink is not None:
                self.sink.close()
            return True
        except Exception:
            logger.exception("Failed to shut down causality export")
            return False
