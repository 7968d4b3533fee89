import unittest

from aeo_schema.adapters.content_quality import (
    MAX_BOILERPLATE_PENALTY,
    StructureSignals,
    boilerplate_penalty,
    collect_structure_signals,
    score_content,
    score_page_content,
)

COOKIE_TEXT = (
    "We use cookies to improve your experience. Please accept our cookie policy to continue. "
    "Manage consent and tracking preferences in settings below today right now."
)

ARTICLE_TEXT = " ".join(
    f"Paragraph {i} explains step {i} of roasting beans evenly with airflow, heat and patience."
    for i in range(40)
)

RICH_STRUCTURE = StructureSignals(headings=1, paragraphs=3, images=1, links=3)


class FakePage:
    def __init__(self, counts=None, error=None):
        self.counts = counts or {}
        self.error = error

    async def evaluate(self, script):
        if self.error:
            raise self.error
        return self.counts


class ScoreContentTests(unittest.TestCase):
    def test_short_content_scores_zero(self):
        self.assertEqual(score_content("too short", RICH_STRUCTURE), 0.0)
        self.assertEqual(score_content("", RICH_STRUCTURE), 0.0)

    def test_cookie_banner_is_penalized(self):
        self.assertEqual(boilerplate_penalty(COOKIE_TEXT), MAX_BOILERPLATE_PENALTY)
        score = score_content(COOKIE_TEXT, RICH_STRUCTURE)
        self.assertGreater(score, 0.0)
        self.assertLess(score, 0.5)

    def test_article_beats_cookie_banner(self):
        self.assertGreater(
            score_content(ARTICLE_TEXT, RICH_STRUCTURE),
            score_content(COOKIE_TEXT, RICH_STRUCTURE),
        )

    def test_score_is_bounded(self):
        for text in (COOKIE_TEXT, ARTICLE_TEXT, "unique " * 2000):
            score = score_content(text, RICH_STRUCTURE)
            self.assertGreaterEqual(score, 0.0)
            self.assertLessEqual(score, 1.0)

    def test_structure_signals(self):
        self.assertEqual(StructureSignals().score(), 0.0)
        self.assertAlmostEqual(RICH_STRUCTURE.score(), 0.4)
        self.assertAlmostEqual(StructureSignals(paragraphs=2, links=2).score(), 0.0)


class PageSignalTests(unittest.IsolatedAsyncioTestCase):
    async def test_collect_structure_signals(self):
        page = FakePage({"headings": 2, "paragraphs": 5, "images": 0, "links": 7})
        signals = await collect_structure_signals(page)
        self.assertEqual(signals, StructureSignals(headings=2, paragraphs=5, images=0, links=7))

    async def test_dom_failure_falls_back_to_text_only(self):
        page = FakePage(error=RuntimeError("page closed"))
        score = await score_page_content(ARTICLE_TEXT, page)
        self.assertEqual(score, score_content(ARTICLE_TEXT, StructureSignals()))


if __name__ == "__main__":
    unittest.main()
