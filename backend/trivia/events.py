from __future__ import annotations

from typing import Any, List

from pymongo import ReturnDocument

from .db import db
from .utils import now_ts


class EventStore:
    """Per-session change log clients poll to learn when to re-fetch views."""

    def __init__(self, database: Any = None, clock=now_ts):
        database = database if database is not None else db
        self.counters_collection = database.session_event_counters
        self.events_collection = database.session_events
        self._clock = clock

    async def append(self, session_id: str, payload: dict[str, Any]) -> int:
        """Store a new event for a session and return its sequence number."""

        counter_doc = await self.counters_collection.find_one_and_update(
            {"_id": session_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

        if not counter_doc:
            # Some Mongo-compatible providers complete the upsert but return
            # None instead of the updated document.
            counter_doc = await self.counters_collection.find_one({"_id": session_id})

        seq = int((counter_doc or {}).get("seq", 1))

        await self.events_collection.insert_one(
            {
                "session_id": session_id,
                "seq": seq,
                "timestamp": self._clock(),
                "payload": payload,
            }
        )
        return seq

    async def list(self, session_id: str, after: int | None = None, limit: int = 200) -> List[dict[str, Any]]:
        """Return events for a session that occur after the given sequence."""

        query: dict[str, Any] = {"session_id": session_id}
        if after is not None:
            query["seq"] = {"$gt": after}

        cursor = (
            self.events_collection.find(query)
            .sort("seq", 1)
            .limit(limit)
        )

        events: List[dict[str, Any]] = []
        async for doc in cursor:
            events.append(
                {
                    "seq": doc["seq"],
                    "timestamp": doc.get("timestamp"),
                    "payload": doc.get("payload", {}),
                }
            )
        return events

    async def latest_seq(self, session_id: str) -> int:
        counter_doc = await self.counters_collection.find_one({"_id": session_id})
        return int((counter_doc or {}).get("seq", 0))

    async def clear(self, session_id: str) -> None:
        """Drop a session's log, keeping the counter so sequence numbers keep increasing."""

        await self.events_collection.delete_many({"session_id": session_id})


event_store = EventStore()
