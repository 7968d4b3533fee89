import unittest

from aeo_schema.generators.quality_score import (
    calculate_score,
    round_half_up,
    score_content_quality,
    score_required,
)


def _full_article():
    return {
        "@context": "https://schema.org",
        "@type": "Article",
        "headline": "How to brew better coffee at home",
        "description": "A practical guide to grind size, water temperature and brew time for better coffee.",
        "url": "https://example.org/blog/better-coffee",
        "image": {"@type": "ImageObject", "url": "https://example.org/img/coffee.jpg"},
        "author": {
            "@type": "Person",
            "name": "Sam Rivera",
            "sameAs": ["https://social.example.org/samrivera"],
        },
        "publisher": {
            "@type": "Organization",
            "name": "Brew Lab",
            "logo": {"@type": "ImageObject", "url": "https://example.org/logo.png"},
        },
        "datePublished": "2024-03-01",
        "keywords": ["coffee", "brewing"],
    }


class QualityScoreTests(unittest.TestCase):
    def test_empty_list_scores_zero(self):
        score = calculate_score([])
        self.assertEqual(score.overall_score, 0)
        self.assertEqual(score.breakdown.required_properties, 0)
        self.assertEqual(score.breakdown.content_quality, 0)

    def test_full_article_breakdown(self):
        score = calculate_score([_full_article()])

        self.assertEqual(score.breakdown.required_properties, 100)
        self.assertEqual(score.breakdown.recommended_properties, 86)
        self.assertEqual(score.breakdown.advanced_aeo_features, 8)
        self.assertEqual(score.breakdown.content_quality, 100)
        self.assertEqual(score.overall_score, 74)

    def test_only_first_schema_is_scored(self):
        weak = {"@type": "Thing"}
        self.assertEqual(
            calculate_score([weak, _full_article()]).overall_score,
            calculate_score([weak]).overall_score,
        )

    def test_scores_stay_in_bounds(self):
        samples = [
            {},
            {"@context": "https://schema.org"},
            _full_article(),
            {**_full_article(), "description": "x" * 500, "keywords": "a, b", "author": "Someone"},
        ]
        for schema in samples:
            with self.subTest(schema=schema):
                score = calculate_score([schema])
                self.assertGreaterEqual(score.overall_score, 0)
                self.assertLessEqual(score.overall_score, 100)
                for value in score.breakdown.model_dump().values():
                    self.assertGreaterEqual(value, 0)
                    self.assertLessEqual(value, 100)

    def test_adding_properties_never_lowers_score(self):
        full = _full_article()
        schema = {}
        previous = calculate_score([schema]).overall_score
        for key, value in full.items():
            schema[key] = value
            current = calculate_score([schema]).overall_score
            self.assertGreaterEqual(current, previous, key)
            previous = current

    def test_required_split(self):
        self.assertEqual(score_required({"@context": "https://schema.org"}), 33)
        self.assertEqual(score_required({"@context": "https://schema.org", "@type": "Thing"}), 66)
        self.assertEqual(score_required({"@context": "x", "@type": "Thing", "name": "n"}), 100)
        self.assertEqual(score_required({"headline": "h"}), 34)

    def test_content_quality_partial_credit(self):
        schema = {"description": "short", "author": "Sam", "image": "https://example.org/a.jpg", "keywords": "a,b"}
        self.assertEqual(score_content_quality(schema), 10 + 10 + 10 + 5)

    def test_author_list_counts_as_structured(self):
        self.assertEqual(score_content_quality({"author": [{"@type": "Person", "name": "A"}]}), 15)
        linked = {"author": [{"@type": "Person", "name": "A", "sameAs": ["https://example.org/a"]}, "B"]}
        self.assertEqual(score_content_quality(linked), 25)
        self.assertEqual(score_content_quality({"author": []}), 0)

    def test_round_half_up(self):
        self.assertEqual(round_half_up(0.5), 1)
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(2.49), 2)


if __name__ == "__main__":
    unittest.main()
