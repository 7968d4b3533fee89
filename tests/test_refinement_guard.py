import unittest

from aeo_schema.generators.refinement_guard import (
    guard_refined_schema,
    looks_like_placeholder,
    summarize_removed,
)
from aeo_schema.models.content import AuthorInfo, PageMetadata


ORIGINAL = {
    "@context": "https://schema.org",
    "@type": "Article",
    "headline": "Roasting at home",
    "publisher": {"@type": "Organization", "name": "Brew Lab"},
}


class RefinementGuardTests(unittest.TestCase):
    def test_unverified_author_removed(self):
        refined = {**ORIGINAL, "author": {"@type": "Person", "name": "Casey Moreno"}}

        guarded = guard_refined_schema(ORIGINAL, refined, PageMetadata())

        self.assertNotIn("author", guarded)
        self.assertIn("author", refined)

    def test_author_backed_by_metadata_is_kept(self):
        refined = {**ORIGINAL, "author": {"@type": "Person", "name": "Casey Moreno"}}
        metadata = PageMetadata(author=AuthorInfo(name="Casey Moreno"))

        guarded = guard_refined_schema(ORIGINAL, refined, metadata)

        self.assertEqual(guarded["author"]["name"], "Casey Moreno")

    def test_first_refinement_drops_new_publisher_details(self):
        refined = {
            **ORIGINAL,
            "publisher": {"@type": "Organization", "name": "Brew Lab", "telephone": "+1 555 0100", "url": "https://brewlab.test"},
        }

        guarded = guard_refined_schema(ORIGINAL, refined, refinement_count=1)

        self.assertNotIn("telephone", guarded["publisher"])
        self.assertEqual(guarded["publisher"]["url"], "https://brewlab.test")
        self.assertEqual(
            summarize_removed(refined, guarded),
            ["Removed unverified publisher property: telephone"],
        )

    def test_later_refinements_keep_publisher_details(self):
        refined = {**ORIGINAL, "publisher": {"@type": "Organization", "name": "Brew Lab", "telephone": "+1 555 0100"}}
        guarded = guard_refined_schema(ORIGINAL, refined, refinement_count=2)
        self.assertEqual(guarded["publisher"]["telephone"], "+1 555 0100")

    def test_provider_details_are_guarded(self):
        original = {**ORIGINAL, "mainEntity": {"@type": "Service", "provider": {"@type": "Organization", "name": "Brew Lab"}}}
        refined = {
            **original,
            "mainEntity": {
                "@type": "Service",
                "provider": {"@type": "Organization", "name": "Brew Lab", "address": "1 Main St"},
            },
        }
        guarded = guard_refined_schema(original, refined)
        self.assertNotIn("address", guarded["mainEntity"]["provider"])

    def test_placeholders_are_stripped(self):
        original = {**ORIGINAL, "author": {"@type": "Person", "name": "John Doe"}}
        refined = {
            **original,
            "publisher": {"@type": "Organization", "name": "[Company Name]"},
        }

        guarded = guard_refined_schema(original, refined)

        self.assertNotIn("author", guarded)
        self.assertNotIn("name", guarded["publisher"])
        self.assertEqual(summarize_removed(refined, guarded), [
            "Removed unverified property: author",
            "Removed unverified publisher property: name",
        ])

    def test_fake_same_as_link_removes_author(self):
        original = {**ORIGINAL, "author": {"@type": "Person", "name": "Casey", "sameAs": ["https://example.com/casey"]}}
        guarded = guard_refined_schema(original, original)
        self.assertNotIn("author", guarded)

    def test_looks_like_placeholder(self):
        self.assertTrue(looks_like_placeholder("Lorem ipsum dolor"))
        self.assertTrue(looks_like_placeholder("{your business}"))
        self.assertFalse(looks_like_placeholder("Brew Lab"))
        self.assertFalse(looks_like_placeholder(None))


if __name__ == "__main__":
    unittest.main()
