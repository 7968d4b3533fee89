import asyncio
import unittest

from aeo_schema.layers.persistence import (
    InMemoryCreditLedger,
    InMemoryGenerationStore,
    InMemoryUrlLibrary,
    InMemoryUsageTracker,
    RecordNotFoundError,
)
from aeo_schema.models.schema import GenerationStatus


class CreditLedgerTests(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_consumption_never_overdraws(self):
        ledger = InMemoryCreditLedger(balances={"u1": 3})

        outcomes = await asyncio.gather(*(
            ledger.consume_credits_atomic("u1", 1, f"generation {i}") for i in range(10)
        ))

        self.assertEqual(outcomes.count(True), 3)
        self.assertEqual(await ledger.get_balance("u1"), 0)
        self.assertEqual([t.amount for t in ledger.transactions], [-1, -1, -1])

    async def test_lock_timeout_reports_failure(self):
        ledger = InMemoryCreditLedger(balances={"u1": 5}, lock_timeout=0.01)
        lock = ledger._lock_for("u1")
        await lock.acquire()
        try:
            self.assertFalse(await ledger.consume_credits_atomic("u1", 1, "blocked"))
        finally:
            lock.release()
        self.assertEqual(await ledger.get_balance("u1"), 5)

    async def test_refund_restores_balance(self):
        ledger = InMemoryCreditLedger(balances={"u1": 1})
        self.assertTrue(await ledger.consume_credits_atomic("u1", 1, "generation"))
        await ledger.refund_credits("u1", 1, "refund")

        self.assertEqual(await ledger.get_balance("u1"), 1)
        self.assertEqual([t.amount for t in ledger.transactions], [-1, 1])

    async def test_default_balance(self):
        ledger = InMemoryCreditLedger(default_balance=2)
        self.assertEqual(await ledger.get_balance("new-user"), 2)
        await ledger.set_balance("new-user", 7)
        self.assertEqual(await ledger.get_balance("new-user"), 7)


class GenerationStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_create_update_and_copies(self):
        store = InMemoryGenerationStore()
        record = await store.create("u1", "https://brew.test/", credits_cost=1)

        record.schemas.append({"@type": "Mutated"})
        stored = await store.get(record.id)
        self.assertEqual(stored.schemas, [])
        self.assertEqual(stored.status, GenerationStatus.PROCESSING)

        updated = await store.update(record.id, status=GenerationStatus.SUCCESS, schemas=[{"@type": "WebPage"}])
        self.assertEqual(updated.status, GenerationStatus.SUCCESS)
        self.assertEqual((await store.get(record.id)).schemas, [{"@type": "WebPage"}])

    async def test_record_failure(self):
        store = InMemoryGenerationStore()
        record = await store.create("u1", "https://brew.test/")

        failed = await store.record_failure(
            record.id,
            error_message="We couldn't load that page.",
            failure_reason="scrape_failure",
            failure_stage="scraping",
            processing_time_ms=42,
        )

        self.assertEqual(failed.status, GenerationStatus.FAILED)
        self.assertEqual(failed.failure_stage, "scraping")
        self.assertEqual(failed.credits_cost, 0)
        self.assertIsNone(failed.stack_trace)

    async def test_refinement_counter(self):
        store = InMemoryGenerationStore()
        record = await store.create("u1", "https://brew.test/")
        self.assertEqual(await store.increment_refinement_count(record.id), 1)
        self.assertEqual(await store.increment_refinement_count(record.id), 2)
        self.assertEqual((await store.get(record.id)).refinement_count, 2)

    async def test_unknown_id(self):
        store = InMemoryGenerationStore()
        self.assertIsNone(await store.get("missing"))
        with self.assertRaises(RecordNotFoundError):
            await store.update("missing", status=GenerationStatus.FAILED)


class UrlLibraryTests(unittest.IsolatedAsyncioTestCase):
    async def test_save_is_idempotent_per_user(self):
        library = InMemoryUrlLibrary()
        first = await library.save_url("u1", "https://brew.test/")
        again = await library.save_url("u1", "https://brew.test/")
        other = await library.save_url("u2", "https://brew.test/")

        self.assertEqual(first.id, again.id)
        self.assertNotEqual(first.id, other.id)

        await library.link_generation(first.id, "gen-1")
        self.assertEqual(library.get(first.id).generation_id, "gen-1")
        with self.assertRaises(KeyError):
            await library.link_generation("missing", "gen-1")

    async def test_usage_tracker(self):
        tracker = InMemoryUsageTracker()
        await tracker.track("u1", "schema_generation_started", url="https://brew.test/")
        self.assertEqual(tracker.events[0].details, {"url": "https://brew.test/"})


if __name__ == "__main__":
    unittest.main()
