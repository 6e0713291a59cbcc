from __future__ import annotations

import asyncio
from unittest import IsolatedAsyncioTestCase

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .db import InMemoryCollection, InMemoryDatabase


class InMemoryCollectionTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.collection = InMemoryCollection("things", unique_indexes=[("id",), ("group", "slot")])

    async def test_unique_index_rejects_duplicates(self):
        await self.collection.insert_one({"id": "a", "group": "g", "slot": 1})

        with self.assertRaises(DuplicateKeyError):
            await self.collection.insert_one({"id": "b", "group": "g", "slot": 1})

        await self.collection.insert_one({"id": "c", "group": "g", "slot": 2})
        self.assertEqual(await self.collection.count_documents({}), 2)

    async def test_insert_many_is_all_or_nothing(self):
        with self.assertRaises(DuplicateKeyError):
            await self.collection.insert_many([{"id": "a"}, {"id": "a"}])

        self.assertEqual(await self.collection.count_documents({}), 0)

    async def test_concurrent_inserts_keep_one(self):
        results = await asyncio.gather(
            *(self.collection.insert_one({"id": str(i), "group": "g", "slot": 0}) for i in range(5)),
            return_exceptions=True,
        )

        self.assertEqual(sum(isinstance(r, DuplicateKeyError) for r in results), 4)
        self.assertEqual(await self.collection.count_documents({"group": "g"}), 1)

    async def test_update_operators(self):
        await self.collection.insert_one({"id": "a", "score": 10, "hits": 0})

        await self.collection.update_one({"id": "a"}, {"$max": {"score": 5}, "$inc": {"hits": 1}})
        doc = await self.collection.find_one({"id": "a"})
        self.assertEqual((doc["score"], doc["hits"]), (10, 1))

        await self.collection.update_one({"id": "a"}, {"$max": {"score": 15}, "$set": {"name": "x"}})
        doc = await self.collection.find_one({"id": "a"})
        self.assertEqual((doc["score"], doc["name"]), (15, "x"))

    async def test_query_operators_sort_and_limit(self):
        numbers = InMemoryCollection("numbers", unique_indexes=[("id",)])
        for i in range(5):
            await numbers.insert_one({"id": str(i), "n": i})

        docs = await numbers.find({"n": {"$gt": 1, "$lte": 3}}).sort("n", -1).to_list()
        self.assertEqual([d["n"] for d in docs], [3, 2])

        docs = await numbers.find({"id": {"$in": ["0", "4"]}}).to_list()
        self.assertEqual(len(docs), 2)

        docs = await numbers.find({"n": {"$ne": 0}}).sort("n", 1).limit(2).to_list()
        self.assertEqual([d["n"] for d in docs], [1, 2])

    async def test_find_one_and_update_upserts_counter(self):
        first = await self.collection.find_one_and_update(
            {"_id": "counter"}, {"$inc": {"seq": 1}}, upsert=True, return_document=ReturnDocument.AFTER
        )
        second = await self.collection.find_one_and_update(
            {"_id": "counter"}, {"$inc": {"seq": 1}}, upsert=True, return_document=ReturnDocument.AFTER
        )

        self.assertEqual(first["seq"], 1)
        self.assertEqual(second["seq"], 2)

    async def test_returned_documents_are_copies(self):
        await self.collection.insert_one({"id": "a", "tags": ["x"]})
        doc = await self.collection.find_one({"id": "a"})
        doc["tags"].append("y")

        self.assertEqual((await self.collection.find_one({"id": "a"}))["tags"], ["x"])


class InMemoryDatabaseTests(IsolatedAsyncioTestCase):
    async def test_answer_ledger_is_unique_per_player_and_question(self):
        database = InMemoryDatabase()
        answer = {"id": "1", "session_id": "s", "question_index": 0, "player_id": "p"}
        await database.answers.insert_one(answer)

        with self.assertRaises(DuplicateKeyError):
            await database.answers.insert_one({**answer, "id": "2"})

    async def test_join_codes_are_unique(self):
        database = InMemoryDatabase()
        await database.sessions.insert_one({"id": "1", "code": "ABCD"})

        with self.assertRaises(DuplicateKeyError):
            await database.sessions.insert_one({"id": "2", "code": "ABCD"})
