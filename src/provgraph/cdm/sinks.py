from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from provgraph.errors import ConfigurationError

from .records import Record, record_type, to_wire

logger = logging.getLogger(__name__)

SERIALIZERS = ("json",)


class PublicationSink(Protocol):
    """Delivers batches of causality records to a message bus."""

    def publish(self, records: Sequence[Record]) -> int: ...

    def close(self) -> None: ...


def envelope(record: Record, *, schema: str, producer: str) -> dict[str, Any]:
    return {
        "schema": schema,
        "producer": producer,
        "recordType": record_type(record),
        "datum": to_wire(record),
    }


class MemorySink:
    """Keeps published records in a list. Used for dry runs and tests."""

    def __init__(self) -> None:
        self.records: list[Record] = []
        self.closed = False

    def publish(self, records: Sequence[Record]) -> int:
        self.records.extend(records)
        return len(records)

    def close(self) -> None:
        self.closed = True


class RedisSink:
    """Pushes JSON envelopes onto a Redis list named after the topic.

    One pipeline per batch; no retry or buffering beyond the batch.
    """

    def __init__(
        self,
        *,
        url: str,
        topic: str,
        producer_id: str,
        schema: str,
        serializer: str = "json",
        client: Any = None,
    ):
        if serializer not in SERIALIZERS:
            raise ConfigurationError(f"unsupported serializer {serializer!r}")
        self.topic = topic
        self.producer_id = producer_id
        self.schema = schema
        if client is None:
            import redis

            client = redis.Redis.from_url(url)
        self._r = client

    def serialize(self, record: Record) -> bytes:
        payload = envelope(record, schema=self.schema, producer=self.producer_id)
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")

    def publish(self, records: Sequence[Record]) -> int:
        if not records:
            return 0
        pipe = self._r.pipeline()
        for rec in records:
            pipe.rpush(self.topic, self.serialize(rec))
        results = pipe.execute(raise_on_error=False)
        accepted = sum(1 for r in results if r and not isinstance(r, Exception))
        if accepted < len(records):
            logger.warning("Redis accepted %d of %d records on %s", accepted, len(records), self.topic)
        return accepted

    def close(self) -> None:
        self._r.close()


def build_sink(
    kind: str,
    *,
    url: str,
    topic: str,
    producer_id: str,
    schema: str,
    serializer: str = "json",
) -> PublicationSink:
    kind = (kind or "").lower()
    if kind == "memory":
        return MemorySink()
    if kind == "redis":
        return RedisSink(url=url, topic=topic, producer_id=producer_id, schema=schema, serializer=serializer)
    raise ConfigurationError(f"unknown sink {kind!r}; expected redis|memory")
