import json
import unittest
from types import SimpleNamespace
from unittest.mock import patch

import anthropic
import httpx

from aeo_schema.adapters.claude_client import (
    ClaudeClient,
    build_generation_prompt,
    is_retryable_provider_error,
    parse_json_response,
    prioritize_content,
    user_message_for,
)
from aeo_schema.config import config
from aeo_schema.errors import NoSchemasGeneratedError, SchemaGenerationError
from aeo_schema.models.content import AuthorInfo, ContentAnalysis, PageMetadata
from aeo_schema.models.schema import GenerationOptions
from aeo_schema.utils.retry import RetryPolicy

API_URL = "https://api.anthropic.com/v1/messages"


def _status_error(cls, status, error_type):
    response = httpx.Response(status, request=httpx.Request("POST", API_URL))
    return cls(
        f"Error code: {status}",
        response=response,
        body={"type": "error", "error": {"type": error_type, "message": "provider detail"}},
    )


class FakeMessages:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=reply)],
            usage=SimpleNamespace(input_tokens=100, output_tokens=50),
        )


def _client(*replies):
    messages = FakeMessages(replies)
    client = ClaudeClient(
        client=SimpleNamespace(messages=messages),
        model="test-model",
        retry_policy=RetryPolicy(max_attempts=2, initial_delay=0),
    )
    return client, messages


def _analysis(**metadata):
    return ContentAnalysis(
        url="https://brew.test/blog/roasting",
        title="Roasting at home",
        description="How to roast coffee.",
        content="# Roasting\n\nP: Roast in small batches.",
        metadata=PageMetadata(**metadata),
    )


class ParseJsonResponseTests(unittest.TestCase):
    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"schemas": [{"@type": "WebPage"}]}\n```\nThanks'
        self.assertEqual(parse_json_response(text), {"schemas": [{"@type": "WebPage"}]})

    def test_outermost_braces(self):
        text = 'Result: {"schema": {"@type": "Article"}, "changes": []} done'
        self.assertEqual(parse_json_response(text)["schema"], {"@type": "Article"})

    def test_bare_array(self):
        self.assertEqual(parse_json_response("[1, 2]"), [1, 2])

    def test_unparseable(self):
        with self.assertRaises(ValueError):
            parse_json_response("I could not find any schema on this page.")


class ProviderErrorTests(unittest.TestCase):
    def test_user_messages(self):
        rate_limited = _status_error(anthropic.RateLimitError, 429, "rate_limit_error")
        overloaded = _status_error(anthropic.InternalServerError, 529, "overloaded_error")
        unknown = _status_error(anthropic.BadRequestError, 400, "invalid_request_error")

        self.assertIn("faster than expected", user_message_for(rate_limited))
        self.assertIn("high demand", user_message_for(overloaded))
        self.assertIn("Unable to generate", user_message_for(unknown))
        self.assertNotIn("provider detail", user_message_for(unknown))

    def test_retryable_classification(self):
        self.assertTrue(is_retryable_provider_error(_status_error(anthropic.RateLimitError, 429, "rate_limit_error")))
        self.assertTrue(is_retryable_provider_error(_status_error(anthropic.InternalServerError, 529, "overloaded_error")))
        self.assertFalse(is_retryable_provider_error(_status_error(anthropic.AuthenticationError, 401, "authentication_error")))
        self.assertTrue(is_retryable_provider_error(
            anthropic.APIConnectionError(request=httpx.Request("POST", API_URL))
        ))
        self.assertFalse(is_retryable_provider_error(ValueError("nope")))


class PromptTests(unittest.TestCase):
    def test_prioritize_content_orders_blocks(self):
        content = "P: first paragraph\n\n## Heading\n\nLIST: UL with 1 items\n  - a\n\nIMAGE: Image: x\n\n# Title"
        self.assertEqual(
            prioritize_content(content).split("\n\n"),
            ["## Heading", "# Title", "P: first paragraph", "LIST: UL with 1 items\n  - a", "IMAGE: Image: x"],
        )

    def test_generation_prompt_marks_missing_data(self):
        prompt = build_generation_prompt(_analysis(), GenerationOptions(requested_schema_types=["Product"]))
        self.assertIn("Author: [NOT FOUND]", prompt)
        self.assertIn("Date Published: [NOT FOUND] - OMIT", prompt)
        self.assertIn("Organization: brew.test", prompt)
        self.assertIn("Generate ONLY these types: Product", prompt)

    def test_generation_prompt_uses_metadata(self):
        prompt = build_generation_prompt(
            _analysis(author=AuthorInfo(name="Casey Moreno"), publish_date="2024-03-01", keywords=["coffee"]),
            GenerationOptions(),
        )
        self.assertIn("Author: Casey Moreno", prompt)
        self.assertIn("Date Published: 2024-03-01", prompt)
        self.assertIn('Keywords: ["coffee"]', prompt)
        self.assertNotIn("Generate ONLY", prompt)


class ClaudeClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_generate_schemas(self):
        reply = "```json\n" + json.dumps({"schemas": [{"@type": "BlogPosting", "headline": "Roasting"}, "junk"]}) + "\n```"
        client, messages = _client(reply)

        schemas = await client.generate_schemas(_analysis(), GenerationOptions(requested_schema_types=["BlogPosting"]))

        self.assertEqual(schemas, [{"@type": "BlogPosting", "headline": "Roasting"}])
        call = messages.calls[0]
        self.assertEqual(call["model"], "test-model")
        self.assertEqual(call["temperature"], 0)
        self.assertIn("Generate ONLY these schema types: BlogPosting", call["system"])

    async def test_generate_accepts_bare_list_and_empty(self):
        client, _ = _client('[{"@type": "WebPage"}]')
        self.assertEqual(await client.generate_schemas(_analysis()), [{"@type": "WebPage"}])

        client, _ = _client('{"schemas": []}')
        self.assertEqual(await client.generate_schemas(_analysis()), [])

    async def test_unparseable_reply(self):
        client, _ = _client("Sorry, I can't help with that.")
        with self.assertRaises(NoSchemasGeneratedError) as ctx:
            await client.generate_schemas(_analysis())
        self.assertTrue(ctx.exception.retryable)

    async def test_rate_limit_is_retried_then_reported(self):
        error = _status_error(anthropic.RateLimitError, 429, "rate_limit_error")
        client, messages = _client(error)

        with self.assertRaises(SchemaGenerationError) as ctx:
            await client.generate_schemas(_analysis())

        self.assertEqual(len(messages.calls), 2)
        self.assertEqual(ctx.exception.status, 429)
        self.assertEqual(ctx.exception.error_type, "rate_limit_error")
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.details["provider"], "anthropic")

    async def test_transient_error_recovers(self):
        error = _status_error(anthropic.InternalServerError, 529, "overloaded_error")
        client, messages = _client(error, '{"schemas": [{"@type": "WebPage"}]}')

        self.assertEqual(await client.generate_schemas(_analysis()), [{"@type": "WebPage"}])
        self.assertEqual(len(messages.calls), 2)

    async def test_auth_error_not_retried(self):
        client, messages = _client(_status_error(anthropic.AuthenticationError, 401, "authentication_error"))

        with self.assertRaises(SchemaGenerationError) as ctx:
            await client.generate_schemas(_analysis())

        self.assertEqual(len(messages.calls), 1)
        self.assertFalse(ctx.exception.retryable)
        self.assertIn("credentials", ctx.exception.user_message)

    async def test_missing_api_key(self):
        with patch.object(config, "ANTHROPIC_API_KEY", None):
            client = ClaudeClient()
        self.assertFalse(client.is_available())
        with self.assertRaises(SchemaGenerationError) as ctx:
            await client.generate_schemas(_analysis())
        self.assertEqual(ctx.exception.error_type, "configuration")

    async def test_refine_schemas(self):
        reply = json.dumps({
            "schema": {"@type": "Article", "headline": "Roasting", "keywords": ["coffee"], "changes": ["leak"]},
            "changes": ["Added keywords"],
        })
        client, _ = _client(reply)
        secondary = {"@type": "BreadcrumbList"}

        schemas, changes = await client.refine_schemas(
            [{"@type": "Article", "headline": "Roasting"}, secondary], "https://brew.test/blog/roasting",
        )

        self.assertEqual(schemas, [{"@type": "Article", "headline": "Roasting", "keywords": ["coffee"]}, secondary])
        self.assertEqual(changes, ["Added keywords"])

    async def test_refine_default_change(self):
        client, _ = _client('{"@type": "Article", "headline": "Roasting"}')
        schemas, changes = await client.refine_schemas([{"@type": "Article"}], "https://brew.test/")
        self.assertEqual(schemas, [{"@type": "Article", "headline": "Roasting"}])
        self.assertEqual(changes, ["Schema enhanced with AI improvements"])


if __name__ == "__main__":
    unittest.main()
