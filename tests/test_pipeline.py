import asyncio
import unittest

from pipeline_fakes import (
    PAGE_URL,
    VALID_SCHEMA,
    BrokenLibrary,
    FakeAIClient,
    FakeScraper,
    FlakyStore,
    build_pipeline,
    make_analysis,
    make_request,
)

from aeo_schema.errors import ScrapeError
from aeo_schema.layers.persistence import InMemoryGenerationStore
from aeo_schema.layers.pipeline import UNEXPECTED_ERROR_MESSAGE, GenerationPolicy, primary_type
from aeo_schema.models.schema import (
    GenerationStage,
    GenerationStatus,
    RefinementRequest,
    RemovalCode,
)


class GenerateSuccessTests(unittest.IsolatedAsyncioTestCase):
    async def test_successful_generation(self):
        pipeline = build_pipeline()

        result = await pipeline.generate(make_request())

        self.assertTrue(result.success)
        self.assertEqual(result.credits_used, 1)
        self.assertEqual(await pipeline.ledger.get_balance("u1"), 4)
        self.assertNotIn("articleSection", result.schemas[0])
        self.assertEqual(result.sanitization[0].code, RemovalCode.INVALID_PROPERTY_FOR_TYPE)
        self.assertTrue(result.html_output.startswith('<script type="application/ld+json">'))
        self.assertGreater(result.score.overall_score, 0)
        self.assertEqual(
            result.content_quality_suggestions,
            ["Add a publication date to improve temporal relevance signals."],
        )

        record = await pipeline.store.get(result.generation_id)
        self.assertEqual(record.status, GenerationStatus.SUCCESS)
        self.assertEqual(record.schemas, result.schemas)
        self.assertEqual(record.schema_type, "WebPage")
        self.assertEqual(record.schema_score, result.score.overall_score)
        self.assertEqual(record.credits_cost, 1)
        self.assertIsNotNone(record.original_metadata)

        entry = pipeline.url_library.get(record.discovered_url_id)
        self.assertEqual(entry.url, PAGE_URL)
        self.assertEqual(entry.generation_id, result.generation_id)
        self.assertEqual(
            [e.action for e in pipeline.usage.events],
            ["schema_generation_started", "schema_generation_completed"],
        )

    async def test_invalid_candidates_are_dropped(self):
        ai = FakeAIClient(schemas=[{"name": "no context or type"}, dict(VALID_SCHEMA)])
        pipeline = build_pipeline(ai_client=ai)

        result = await pipeline.generate(make_request())

        self.assertTrue(result.success)
        self.assertEqual(len(result.schemas), 1)
        self.assertEqual(len(result.validation_results), 2)
        self.assertFalse(result.validation_results[0].is_valid)

    async def test_library_failure_does_not_fail_generation(self):
        pipeline = build_pipeline(url_library=BrokenLibrary())

        result = await pipeline.generate(make_request())

        self.assertTrue(result.success)
        record = await pipeline.store.get(result.generation_id)
        self.assertEqual(record.status, GenerationStatus.SUCCESS)
        self.assertIsNone(record.discovered_url_id)


class GenerateFailureTests(unittest.IsolatedAsyncioTestCase):
    async def test_unreachable_url_records_nothing(self):
        scraper = FakeScraper(unreachable={PAGE_URL})
        pipeline = build_pipeline(scraper=scraper)

        result = await pipeline.generate(make_request())

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, "url_unreachable")
        self.assertIsNone(result.generation_id)
        self.assertEqual(pipeline.store.all(), [])
        self.assertEqual(scraper.scraped, [])

    async def test_insufficient_credits(self):
        ai = FakeAIClient()
        pipeline = build_pipeline(ai_client=ai, balances={"u1": 0})

        result = await pipeline.generate(make_request())

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, "insufficient_credits")
        self.assertIn("enough credits", result.error_message)
        self.assertEqual(ai.generate_calls, 0)
        self.assertEqual(pipeline.store.all(), [])

    async def test_scrape_failure_is_recorded_without_charge(self):
        pipeline = build_pipeline(scraper=FakeScraper(error=ScrapeError("Failed to scrape URL: timeout")))

        result = await pipeline.generate(make_request())

        self.assertFalse(result.success)
        self.assertEqual(result.failure_stage, GenerationStage.SCRAPING)
        self.assertEqual(result.error_kind, "scrape_failure")
        self.assertEqual(result.credits_used, 0)
        self.assertEqual(await pipeline.ledger.get_balance("u1"), 5)

        record = await pipeline.store.get(result.generation_id)
        self.assertEqual(record.status, GenerationStatus.FAILED)
        self.assertEqual(record.failure_stage, "scraping")
        self.assertEqual(record.failure_reason, "scrape_failure")
        self.assertEqual(record.credits_cost, 0)
        self.assertEqual(record.ai_model_provider, "fake-ai")
        self.assertIn("ScrapeError", record.stack_trace)
        self.assertEqual(record.request_context["options"]["multi_attempt"], False)

    async def test_empty_ai_output(self):
        pipeline = build_pipeline(ai_client=FakeAIClient(schemas=[]))

        result = await pipeline.generate(make_request())

        self.assertEqual(result.error_kind, "no_schemas_generated")
        self.assertEqual(result.failure_stage, GenerationStage.GENERATING)
        self.assertTrue(result.retryable)
        self.assertEqual(await pipeline.ledger.get_balance("u1"), 5)

    async def test_all_invalid_fails_validation_without_charge(self):
        pipeline = build_pipeline(ai_client=FakeAIClient(schemas=[{"name": "orphan"}]))

        result = await pipeline.generate(make_request())

        self.assertEqual(result.error_kind, "validation_failure")
        self.assertEqual(result.failure_stage, GenerationStage.VALIDATING)
        self.assertEqual(await pipeline.ledger.get_balance("u1"), 5)
        self.assertEqual(result.schemas, [])

    async def test_unexpected_error_is_wrapped(self):
        pipeline = build_pipeline(ai_client=FakeAIClient(error=RuntimeError("KeyError deep in a client")))

        result = await pipeline.generate(make_request())

        self.assertEqual(result.error_message, UNEXPECTED_ERROR_MESSAGE)
        self.assertEqual(result.error_kind, "pipeline_error")
        self.assertNotIn("KeyError", result.error_message)
        record = await pipeline.store.get(result.generation_id)
        self.assertIn("RuntimeError", record.stack_trace)

    async def test_persistence_failure_refunds_and_returns_schemas(self):
        pipeline = build_pipeline(store=FlakyStore())

        result = await pipeline.generate(make_request())

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, "persistence_failure")
        self.assertEqual(result.failure_stage, GenerationStage.SCORED)
        self.assertEqual(result.credits_used, 0)
        self.assertEqual(len(result.schemas), 1)
        self.assertIn("application/ld+json", result.html_output)
        self.assertEqual(await pipeline.ledger.get_balance("u1"), 5)
        self.assertEqual([t.amount for t in pipeline.ledger.transactions], [-1, 1])

        record = await pipeline.store.get(result.generation_id)
        self.assertEqual(record.status, GenerationStatus.FAILED)
        self.assertEqual(record.credits_cost, 0)


class PolicyTests(unittest.IsolatedAsyncioTestCase):
    async def test_relaxed_policy_skips_credits_and_validation(self):
        pipeline = build_pipeline(
            ai_client=FakeAIClient(schemas=[{"name": "orphan"}]),
            balances={"u1": 0},
            policy=GenerationPolicy.relaxed(),
        )

        result = await pipeline.generate(make_request())

        self.assertTrue(result.success)
        self.assertEqual(result.schemas, [{"name": "orphan"}])
        self.assertEqual(result.credits_used, 0)
        self.assertEqual(await pipeline.ledger.get_balance("u1"), 0)

    def test_default_policy_is_strict(self):
        policy = build_pipeline().policy
        self.assertTrue(policy.enforce_credits)
        self.assertTrue(policy.require_valid_schemas)

    async def test_concurrent_generations_respect_balance(self):
        pipeline = build_pipeline(balances={"u1": 2})

        results = await asyncio.gather(*(
            pipeline.generate(make_request(url=f"https://brew.test/page-{i}")) for i in range(5)
        ))

        self.assertEqual(sum(1 for r in results if r.success), 2)
        self.assertTrue(all(r.error_kind == "insufficient_credits" for r in results if not r.success))
        self.assertEqual(await pipeline.ledger.get_balance("u1"), 0)


class RefineTests(unittest.IsolatedAsyncioTestCase):
    async def _generated(self, **kwargs):
        pipeline = build_pipeline(**kwargs)
        result = await pipeline.generate(make_request())
        self.assertTrue(result.success)
        return pipeline, result

    async def test_refine_updates_record_without_charge(self):
        pipeline, generated = await self._generated()

        result = await pipeline.refine(RefinementRequest(
            url=PAGE_URL, user_id="u1", schemas=generated.schemas, generation_id=generated.generation_id,
        ))

        self.assertTrue(result.success)
        self.assertEqual(result.schemas[0]["keywords"], ["coffee", "roasting"])
        self.assertEqual(result.refinement_count, 1)
        self.assertEqual(result.credits_used, 0)
        self.assertEqual(await pipeline.ledger.get_balance("u1"), 4)

        record = await pipeline.store.get(generated.generation_id)
        self.assertEqual(record.refinement_count, 1)
        self.assertEqual(record.schemas, result.schemas)
        self.assertIsNotNone(pipeline.ai_client.refine_calls[0]["metadata"])

    async def test_refine_strips_invented_author(self):
        refined = {**VALID_SCHEMA, "author": {"@type": "Person", "name": "Invented Person"}, "speakable": {}}
        refined.pop("articleSection")
        pipeline, generated = await self._generated(ai_client=FakeAIClient(refined=refined))

        result = await pipeline.refine(RefinementRequest(
            url=PAGE_URL, user_id="u1", schemas=generated.schemas, generation_id=generated.generation_id,
        ))

        self.assertNotIn("author", result.schemas[0])
        self.assertNotIn("speakable", result.schemas[0])
        self.assertIn("Removed unverified property: author", result.changes)
        self.assertEqual(result.sanitization[0].code, RemovalCode.SPEAKABLE_REMOVED)

    async def test_author_from_page_metadata_survives(self):
        refined = {**VALID_SCHEMA, "author": {"@type": "Person", "name": "Casey Moreno"}}
        pipeline, generated = await self._generated(
            scraper=FakeScraper(analysis=make_analysis(author="Casey Moreno")),
            ai_client=FakeAIClient(refined=refined),
        )

        result = await pipeline.refine(RefinementRequest(
            url=PAGE_URL, user_id="u1", schemas=generated.schemas, generation_id=generated.generation_id,
        ))

        self.assertEqual(result.schemas[0]["author"]["name"], "Casey Moreno")

    async def test_refinement_limit(self):
        pipeline, generated = await self._generated(max_refinements=1)
        request = RefinementRequest(
            url=PAGE_URL, user_id="u1", schemas=generated.schemas, generation_id=generated.generation_id,
        )

        first = await pipeline.refine(request)
        second = await pipeline.refine(request)

        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertEqual(second.error_kind, "refinement_limit_reached")
        self.assertEqual(second.schemas, generated.schemas)
        self.assertEqual(len(pipeline.ai_client.refine_calls), 1)

    async def test_other_users_generation_is_not_found(self):
        pipeline, generated = await self._generated()

        result = await pipeline.refine(RefinementRequest(
            url=PAGE_URL, user_id="intruder", schemas=generated.schemas, generation_id=generated.generation_id,
        ))

        self.assertFalse(result.success)
        self.assertEqual(result.error_kind, "generation_not_found")

    async def test_refine_without_stored_generation(self):
        pipeline = build_pipeline()

        result = await pipeline.refine(RefinementRequest(url=PAGE_URL, user_id="u1", schemas=[dict(VALID_SCHEMA)]))

        self.assertTrue(result.success)
        self.assertEqual(result.refinement_count, 1)
        self.assertIsNone(result.generation_id)


class BatchAndEvaluateTests(unittest.IsolatedAsyncioTestCase):
    async def test_batch_reports_each_outcome(self):
        pipeline = build_pipeline(scraper=FakeScraper(unreachable={"https://brew.test/gone"}))

        results = await pipeline.generate_batch([
            make_request(url="https://brew.test/a"),
            make_request(url="https://brew.test/gone"),
            make_request(url="https://brew.test/b"),
        ])

        self.assertEqual([r.success for r in results], [True, False, True])
        self.assertEqual(results[1].error_kind, "url_unreachable")
        self.assertEqual(await pipeline.ledger.get_balance("u1"), 3)

    def test_evaluate(self):
        pipeline = build_pipeline(store=InMemoryGenerationStore())

        evaluation = pipeline.evaluate([
            {**VALID_SCHEMA, "speakable": {"cssSelector": ["h1"]}},
            {"name": "orphan"},
        ])

        self.assertEqual(evaluation.summary.total_schemas, 2)
        self.assertEqual(evaluation.summary.valid_schemas, 1)
        self.assertEqual(
            [r.property for r in evaluation.sanitization],
            ["[0].articleSection", "[0].speakable"],
        )
        self.assertNotIn("speakable", evaluation.schemas[0])
        self.assertGreater(evaluation.score.overall_score, 0)
        self.assertEqual(pipeline.store.all(), [])

    def test_primary_type(self):
        self.assertEqual(primary_type([{"@type": ["Article", "WebPage"]}]), "Article")
        self.assertIsNone(primary_type([]))


if __name__ == "__main__":
    unittest.main()
