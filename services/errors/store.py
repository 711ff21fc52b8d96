"""Storage backends for tracked errors and processing records.

InMemoryErrorStore is the default for the API process. RedisErrorStore keeps
records in Redis lists so analytics survive restarts and are shared between
the API and queue workers.
"""

from collections import deque
from datetime import datetime
from typing import Any, Protocol

from services.errors.models import AIErrorRecord, ProcessingRecord

RECORD_TTL_SECONDS = 31 * 24 * 60 * 60  # Longest analytics window plus a day


class ErrorStore(Protocol):
    """Protocol for error stores."""

    async def add_error(self, record: AIErrorRecord) -> None: ...

    async def add_processing_record(self, record: ProcessingRecord) -> None: ...

    async def errors_since(self, start: datetime) -> list[AIErrorRecord]: ...

    async def processing_records_since(self, start: datetime) -> list[ProcessingRecord]: ...

    async def mark_resolved(self, error_id: str, resolution: str) -> bool: ...


class InMemoryErrorStore:
    """Bounded in-process store; oldest records are dropped first."""

    def __init__(self, max_entries: int = 10_000) -> None:
        self._errors: deque[AIErrorRecord] = deque(maxlen=max_entries)
        self._processing: deque[ProcessingRecord] = deque(maxlen=max_entries)

    async def add_error(self, record: AIErrorRecord) -> None:
        self._errors.append(record)

    async def add_processing_record(self, record: ProcessingRecord) -> None:
        self._processing.append(record)

    async def errors_since(self, start: datetime) -> list[AIErrorRecord]:
        return [r for r in self._errors if r.timestamp >= start]

    async def processing_records_since(self, start: datetime) -> list[ProcessingRecord]:
        return [r for r in self._processing if r.processed_at >= start]

    async def mark_resolved(self, error_id: str, resolution: str) -> bool:
        for record in self._errors:
            if record.id == error_id:
                record.resolved = True
                record.resolution = resolution
                return True
        return False


class RedisErrorStore:
    """Redis-backed store using capped lists of JSON records.

    Args:
        redis: Async Redis connection (e.g. the arq pool from ctx["redis"])
        key_prefix: Namespace for the list keys
        max_entries: Maximum records kept per list
    """

    def __init__(self, redis: Any, key_prefix: str = "vat:errors", max_entries: int = 10_000):
        self.redis = redis
        self.errors_key = f"{key_prefix}:records"
        self.processing_key = f"{key_prefix}:processing"
        self.max_entries = max_entries

    async def _push(self, key: str, payload: str) -> None:
        await self.redis.lpush(key, payload)
        await self.redis.ltrim(key, 0, self.max_entries - 1)
        await self.redis.expire(key, RECORD_TTL_SECONDS)

    async def add_error(self, record: AIErrorRecord) -> None:
        await self._push(self.errors_key, record.model_dump_json())

    async def add_processing_record(self, record: ProcessingRecord) -> None:
        await self._push(self.processing_key, record.model_dump_json())

    async def errors_since(self, start: datetime) -> list[AIErrorRecord]:
        raw = await self.redis.lrange(self.errors_key, 0, -1)
        records = [AIErrorRecord.model_validate_json(item) for item in raw]
        return [r for r in records if r.timestamp >= start]

    async def processing_records_since(self, start: datetime) -> list[ProcessingRecord]:
        raw = await self.redis.lrange(self.processing_key, 0, -1)
        records = [ProcessingRecord.model_validate_json(item) for item in raw]
        return [r for r in records if r.processed_at >= start]

    async def mark_resolved(self, error_id: str, resolution: str) -> bool:
        raw = await self.redis.lrange(self.errors_key, 0, -1)
        for index, item in enumerate(raw):
            record = AIErrorRecord.model_validate_json(item)
            if record.id == error_id:
                record.resolved = True
                record.resolution = resolution
                await self.redis.lset(self.errors_key, index, record.model_dump_json())
                return True
        return False
