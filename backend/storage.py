from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, delete, func, insert, select
from sqlalchemy.engine import Engine

metadata = MetaData()

kv_entries = Table(
    "kv_entries",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)


class KeyValueStore(Protocol):
    def load(self, key: str) -> Any | None:
        ...

    def save(self, key: str, value: Any) -> None:
        ...


@dataclass
class InMemoryKeyValueStore:
    """JSON blobs kept in a dict; values are copied through JSON on save."""

    _data: dict[str, str] = field(default_factory=dict)

    def load(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)


@dataclass
class SqlKeyValueStore:
    engine: Engine

    def init_schema(self) -> None:
        metadata.create_all(self.engine)

    def load(self, key: str) -> Any | None:
        with self.engine.begin() as conn:
            raw = conn.execute(
                select(kv_entries.c.value).where(kv_entries.c.key == key)
            ).scalar_one_or_none()
        if raw is None:
            return None
        return json.loads(raw)

    def save(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self.engine.begin() as conn:
            conn.execute(delete(kv_entries).where(kv_entries.c.key == key))
            conn.execute(insert(kv_entries).values(key=key, value=encoded))
