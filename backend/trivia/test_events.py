from __future__ import annotations

from unittest import IsolatedAsyncioTestCase

from .db import InMemoryDatabase
from .events import EventStore


class EventStoreTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = EventStore(InMemoryDatabase(), clock=lambda: 123.0)

    async def test_sequence_numbers_are_per_session(self):
        self.assertEqual(await self.store.append("s1", {"type": "a"}), 1)
        self.assertEqual(await self.store.append("s1", {"type": "b"}), 2)
        self.assertEqual(await self.store.append("s2", {"type": "a"}), 1)

        self.assertEqual(await self.store.latest_seq("s1"), 2)
        self.assertEqual(await self.store.latest_seq("missing"), 0)

    async def test_list_after_and_limit(self):
        for i in range(5):
            await self.store.append("s1", {"type": "tick", "i": i})

        events = await self.store.list("s1", after=2)
        self.assertEqual([e["seq"] for e in events], [3, 4, 5])
        self.assertEqual(events[0]["payload"], {"type": "tick", "i": 2})
        self.assertEqual(events[0]["timestamp"], 123.0)

        self.assertEqual(len(await self.store.list("s1", limit=2)), 2)

    async def test_clear_keeps_sequence_increasing(self):
        await self.store.append("s1", {"type": "a"})
        await self.store.clear("s1")

        self.assertEqual(await self.store.list("s1"), [])
        self.assertEqual(await self.store.append("s1", {"type": "b"}), 2)
