from __future__ import annotations

import asyncio
import copy
from functools import lru_cache
from typing import Any, Dict, Iterable, Iterator, List, Literal, Optional, Sequence, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None
    LOG_LEVEL: str = "INFO"

    DEFAULT_TIME_LIMIT: int = 30
    PRESENCE_TIMEOUT_SECONDS: float = 15.0
    ALLOW_LATE_JOIN: bool = True
    MAX_NAME_LENGTH: int = 50

    # Reward curve for a correct answer. "flat" always pays CORRECT_ELEVATION,
    # "speed" decays linearly to MIN_CORRECT_ELEVATION over SPEED_WINDOW_SECONDS,
    # "original" prices speed plus a minority bonus at reveal, under a catch-up cap.
    ELEVATION_CURVE: Literal["flat", "speed", "original"] = "speed"
    CORRECT_ELEVATION: int = 100
    MIN_CORRECT_ELEVATION: int = 50
    SPEED_WINDOW_SECONDS: float = 10.0
    SUMMIT_ELEVATION: int = 1000
    # "original" curve only: shrink gains so a perfect player summits after 55% of the questions.
    SCALE_ELEVATION_TO_QUESTIONS: bool = False

    DEFAULT_ELEVATION_RANGE: int = 150
    DEFAULT_LEADERBOARD_LIMIT: int = 10


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


class InMemoryCursor:
    def __init__(self, collection: "InMemoryCollection", query: Dict[str, Any]):
        self._collection = collection
        self._query = query or {}
        self._sort_key: Optional[str] = None
        self._sort_direction: int = 1
        self._limit: Optional[int] = None
        self._materialised: Optional[Iterator[Dict[str, Any]]] = None

    def sort(self, key: str, direction: int):
        self._sort_key = key
        self._sort_direction = direction
        return self

    def limit(self, limit: int):
        self._limit = limit
        return self

    async def _load(self) -> List[Dict[str, Any]]:
        docs = await self._collection._find_all(self._query)

        if self._sort_key is not None:
            reverse = self._sort_direction < 0
            docs.sort(key=lambda d: d.get(self._sort_key), reverse=reverse)

        if self._limit is not None:
            docs = docs[: self._limit]
        return docs

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        docs = await self._load()
        return docs if length is None else docs[:length]

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._materialised is None:
            self._materialised = iter(await self._load())
        try:
            return next(self._materialised)
        except StopIteration as exc:
            raise StopAsyncIteration from exc


class InMemoryCollection:
    def __init__(self, name: str, unique_indexes: Iterable[Sequence[str]] = ()):
        self.name = name
        self._docs: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()
        self._unique_indexes: List[Tuple[str, ...]] = [tuple(keys) for keys in unique_indexes]

    async def _find_all(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if self._matches(doc, query)]

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for doc in self._docs:
                if self._matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None):
        return InMemoryCursor(self, query or {})

    async def count_documents(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            return sum(1 for doc in self._docs if self._matches(doc, query))

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    updated = self._apply_update(copy.deepcopy(doc), update)
                    self._docs[idx] = updated
                    return

            if upsert:
                new_doc = copy.deepcopy(query)
                new_doc = self._apply_update(new_doc, update)
                self._check_unique(new_doc)
                self._docs.append(new_doc)

    async def update_many(self, query: Dict[str, Any], update: Dict[str, Any]) -> int:
        async with self._lock:
            modified = 0
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    self._docs[idx] = self._apply_update(copy.deepcopy(doc), update)
                    modified += 1
            return modified

    async def insert_one(self, document: Dict[str, Any]):
        async with self._lock:
            self._check_unique(document)
            self._docs.append(copy.deepcopy(document))

    async def insert_many(self, documents: Iterable[Dict[str, Any]]):
        async with self._lock:
            staged: List[Dict[str, Any]] = []
            for document in documents:
                self._check_unique(document, extra=staged)
                staged.append(copy.deepcopy(document))
            self._docs.extend(staged)

    async def delete_one(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    del self._docs[idx]
                    return 1
        return 0

    async def delete_many(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            before = len(self._docs)
            self._docs = [doc for doc in self._docs if not self._matches(doc, query)]
            return before - len(self._docs)

    async def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        *,
        upsert: bool = False,
        return_document: ReturnDocument = ReturnDocument.BEFORE,
    ) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    original = copy.deepcopy(doc)
                    updated = self._apply_update(copy.deepcopy(doc), update)
                    self._docs[idx] = updated
                    return copy.deepcopy(updated if return_document == ReturnDocument.AFTER else original)

            if upsert:
                new_doc = copy.deepcopy(query)
                new_doc = self._apply_update(new_doc, update)
                self._check_unique(new_doc)
                self._docs.append(new_doc)
                if return_document == ReturnDocument.AFTER:
                    return copy.deepcopy(new_doc)
                return None

        return None

    def _check_unique(self, document: Dict[str, Any], extra: Sequence[Dict[str, Any]] = ()) -> None:
        for keys in self._unique_indexes:
            key = tuple(document.get(k) for k in keys)
            for existing in [*self._docs, *extra]:
                if tuple(existing.get(k) for k in keys) == key:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {self.name} "
                        f"index: {'_'.join(keys)} dup key: {key}"
                    )

    def _apply_update(self, doc: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        for op, payload in update.items():
            if op == "$set":
                for key, value in payload.items():
                    doc[key] = copy.deepcopy(value)
            elif op == "$inc":
                for key, value in payload.items():
                    current = doc.get(key, 0)
                    doc[key] = current + value
            elif op == "$max":
                for key, value in payload.items():
                    current = doc.get(key)
                    if current is None or value > current:
                        doc[key] = value
            else:  # pragma: no cover - only the above operators are used today
                raise ValueError(f"Unsupported update operator: {op}")
        return doc

    def _matches(self, doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
        for key, expected in (query or {}).items():
            actual = doc.get(key)
            if isinstance(expected, dict):
                for op, operand in expected.items():
                    if op == "$gt":
                        if actual is None or actual <= operand:
                            return False
                    elif op == "$lte":
                        if actual is None or actual > operand:
                            return False
                    elif op == "$ne":
                        if actual == operand:
                            return False
                    elif op == "$in":
                        if actual not in operand:
                            return False
                    else:  # pragma: no cover - extend as new operators are required
                        raise ValueError(f"Unsupported query operator(s): {expected}")
            else:
                if actual != expected:
                    return False
        return True


class InMemoryDatabase:
    def __init__(self):
        self.sessions = InMemoryCollection("sessions", unique_indexes=[("id",), ("code",)])
        self.questions = InMemoryCollection("questions", unique_indexes=[("id",)])
        self.players = InMemoryCollection("players", unique_indexes=[("id",)])
        # One answer per player per question: this index is what makes the
        # answer ledger at-most-once under concurrent submissions.
        self.answers = InMemoryCollection(
            "answers",
            unique_indexes=[("id",), ("session_id", "question_index", "player_id")],
        )
        self.session_event_counters = InMemoryCollection("session_event_counters")
        self.session_events = InMemoryCollection("session_events")


db: Any = InMemoryDatabase()
