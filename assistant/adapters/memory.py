"""Process-local adapters used for development, demos and tests."""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Mapping

from assistant.adapters.base import Adapter, AdapterResult, Candidate
from assistant.core.errors import AdapterError

logger = logging.getLogger("assistant.adapters")

_TEXT_FIELDS = ("text", "summary", "item", "subject")


def _display(record: Mapping[str, Any]) -> str:
    for key in _TEXT_FIELDS:
        value = record.get(key)
        if value:
            return str(value)
    return str(record.get("id", ""))


class InMemoryAdapter(Adapter):
    """Dictionary-backed store keyed by entity type."""

    def __init__(self, name: str = "memory") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._records: dict[str, dict[str, dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self.calls: list[dict[str, Any]] = []

    def seed(self, entity_type: str, **fields: Any) -> str:
        """Insert a record directly and return its id."""

        with self._lock:
            record_id = f"{entity_type}-{next(self._ids)}"
            self._records.setdefault(entity_type, {})[record_id] = {"id": record_id, **fields}
        return record_id

    def records(self, entity_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(record) for record in self._records.get(entity_type, {}).values()]

    def find(self, entity_type: str, query: str) -> list[Candidate]:
        needle = query.casefold().strip()
        if not needle:
            return []
        with self._lock:
            records = list(self._records.get(entity_type, {}).values())
        return [
            Candidate(id=record["id"], display=_display(record))
            for record in records
            if needle in _display(record).casefold() or _display(record).casefold() in needle
        ]

    async def execute(self, args: Mapping[str, Any]) -> AdapterResult:
        self.calls.append(dict(args))
        action = str(args.get("action", ""))
        if not action:
            raise AdapterError(f"{self.name} received an operation without an action")
        entity = str(args.get("entity", "item"))
        verb = action.split("_", 1)[0]
        fields = {key: value for key, value in args.items() if key not in {"action", "entity", "target_id"}}

        with self._lock:
            bucket = self._records.setdefault(entity, {})

            if verb in {"create", "add", "store", "save", "send", "reply"}:
                record_id = f"{entity}-{next(self._ids)}"
                bucket[record_id] = {"id": record_id, **fields}
                logger.debug("Created %s %s", entity, record_id)
                return AdapterResult(success=True, data={"id": record_id, "action": action})

            if action.startswith("delete_all") or action.endswith("_by_window"):
                removed = list(bucket)
                if verb == "delete":
                    bucket.clear()
                else:
                    for record in bucket.values():
                        record.update(fields)
                return AdapterResult(success=True, data={"count": len(removed), "action": action})

            if verb in {"update", "complete", "toggle", "mark", "delete"}:
                target = self._target(bucket, args)
                if target is None:
                    return AdapterResult(success=False, error=f"No matching {entity} found")
                if verb == "delete":
                    del bucket[target["id"]]
                elif verb == "complete":
                    target["status"] = "done"
                elif verb == "toggle":
                    target["checked"] = not target.get("checked", False)
                elif verb == "mark":
                    target["read"] = action.endswith("_read")
                else:
                    target.update({key: value for key, value in fields.items() if key != "text"})
                return AdapterResult(success=True, data={"id": target["id"], "action": action})

            query = str(fields.get("text") or "").casefold()
            items = [
                dict(record)
                for record in bucket.values()
                if not query or query in _display(record).casefold()
            ]
            return AdapterResult(success=True, data={"items": items, "count": len(items), "action": action})

    @staticmethod
    def _target(bucket: dict[str, dict[str, Any]], args: Mapping[str, Any]) -> dict[str, Any] | None:
        target_id = args.get("target_id")
        if target_id and target_id in bucket:
            return bucket[target_id]
        text = str(args.get("text") or "").casefold()
        if not text:
            return None
        for record in bucket.values():
            if text in _display(record).casefold():
                return record
        return None


class EchoAdapter(Adapter):
    """Conversational backend: echoes the prepared reply for general chat and meta help."""

    def __init__(self, name: str = "echo") -> None:
        self.name = name
        self.calls: list[dict[str, Any]] = []

    async def execute(self, args: Mapping[str, Any]) -> AdapterResult:
        self.calls.append(dict(args))
        reply = args.get("reply") or args.get("text") or ""
        return AdapterResult(success=True, data={"reply": str(reply), "action": args.get("action")})
