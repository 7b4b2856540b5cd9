from __future__ import annotations

import unittest

from ragchat.rag.filtering import DynamicFilter, strict_pass_count
from ragchat.rag.mmr import calculate_similarity, mmr_rerank
from ragchat.rag.models.candidate import Candidate, ScoredCandidate


def _scored(key: str, combined: float, raw: float = 0.9, kw: float = 0.5, text: str | None = None) -> ScoredCandidate:
    candidate = Candidate.from_hit(raw, {"source_key": key, "text": text or f"passage {key}"})
    return ScoredCandidate(candidate=candidate, combined_score=combined, keyword_overlap=kw)


class DynamicFilterTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.filter = DynamicFilter()

    def test_relative_cutoff_scenario(self) -> None:
        pool = [_scored(k, s) for k, s in zip("abcde", [0.90, 0.86, 0.70, 0.40, 0.10])]

        result = self.filter.apply(pool, requested_top_k=5, similarity_floor=0.10)

        self.assertAlmostEqual(result.relative_cutoff, 0.765)
        self.assertEqual([c.identifier for c in result.passed], ["a", "b"])
        self.assertEqual(result.selected, result.passed)
        self.assertFalse(result.fallback_used)
        self.assertEqual([c.used_in_context for c in pool], [True, True, False, False, False])

    def test_floor_and_keyword_gates(self) -> None:
        pool = [
            _scored("a", 0.90, raw=0.9, kw=0.5),
            _scored("b", 0.89, raw=0.3, kw=0.5),  # raw 低于阈值
            _scored("c", 0.88, raw=0.9, kw=0.0),  # 没有关键词重合
        ]
        result = self.filter.apply(pool, requested_top_k=5, similarity_floor=0.5)
        self.assertEqual([c.identifier for c in result.passed], ["a"])

    def test_hybrid_raises_keyword_floor(self) -> None:
        pool = [_scored("a", 0.9, kw=0.5), _scored("b", 0.88, kw=0.1)]
        normal = self.filter.apply(pool, requested_top_k=5, similarity_floor=0.1)
        hybrid = self.filter.apply(pool, requested_top_k=5, similarity_floor=0.1, hybrid=True)
        self.assertEqual(len(normal.passed), 2)
        self.assertEqual(len(hybrid.passed), 1)
        self.assertAlmostEqual(hybrid.keyword_floor, 0.15)

    def test_absolute_floor_is_applied(self) -> None:
        pool = [_scored("a", 0.9, raw=0.05)]
        result = self.filter.apply(pool, requested_top_k=5, similarity_floor=0.0)
        self.assertAlmostEqual(result.similarity_floor, 0.10)
        self.assertEqual(result.passed, [])

    def test_minimal_context_fallback(self) -> None:
        pool = [_scored("a", 0.5, raw=0.4), _scored("b", 0.6, raw=0.6), _scored("c", 0.4, raw=0.5)]

        result = self.filter.apply(pool, requested_top_k=5, similarity_floor=0.95)

        self.assertTrue(result.fallback_used)
        self.assertEqual(result.passed, [])
        self.assertEqual([c.identifier for c in result.selected], ["b", "c", "a"])
        for c in result.selected:
            self.assertFalse(c.used_in_context)
            self.assertTrue(c.below_threshold)

    def test_fallback_respects_cap(self) -> None:
        pool = [_scored(k, 0.5, raw=0.3) for k in "abc"]
        result = self.filter.apply(pool, requested_top_k=2, similarity_floor=0.95)
        self.assertEqual(len(result.selected), 2)

    def test_empty_pool(self) -> None:
        result = self.filter.apply([], requested_top_k=5, similarity_floor=0.7)
        self.assertEqual(result.selected, [])
        self.assertFalse(result.fallback_used)

    def test_cap_invariant(self) -> None:
        pool = [_scored(str(i), 0.9, kw=1.0) for i in range(15)]
        for top_k in (1, 3, 8, 10, 20, 50):
            result = self.filter.apply(pool, requested_top_k=top_k, similarity_floor=0.1)
            self.assertLessEqual(len(result.selected), min(10, top_k))
            self.assertEqual(len(result.passed), min(10, top_k))

    def test_non_empty_pool_never_selects_nothing(self) -> None:
        pool = [_scored(str(i), 0.1 * i, raw=0.05 * i, kw=0.0) for i in range(1, 6)]
        for floor in (0.0, 0.3, 0.7, 1.0):
            self.assertTrue(self.filter.apply(pool, requested_top_k=5, similarity_floor=floor).selected)

    def test_raising_threshold_never_grows_passing_set(self) -> None:
        pool = [_scored(str(i), 0.9 - i * 0.01, raw=0.95 - i * 0.08) for i in range(10)]
        counts = [strict_pass_count(pool, 10, floor) for floor in (0.0, 0.2, 0.4, 0.6, 0.8, 0.9, 1.0)]
        self.assertEqual(counts, sorted(counts, reverse=True))

    def test_mmr_reorders_before_cap(self) -> None:
        pool = [
            _scored("a", 0.90, text="lung function test spirometry"),
            _scored("b", 0.89, text="lung function test spirometry"),
            _scored("c", 0.80, text="blood pressure monitoring at home"),
        ]
        result = self.filter.apply(pool, requested_top_k=5, similarity_floor=0.1, mmr=True)
        self.assertEqual([c.identifier for c in result.passed], ["a", "c", "b"])
        self.assertEqual([c.combined_score for c in pool], [0.90, 0.89, 0.80])


class MMRTestCase(unittest.TestCase):
    def test_similarity(self) -> None:
        a = _scored("a", 0.9, text="alpha beta")
        b = _scored("b", 0.9, text="beta gamma")
        self.assertAlmostEqual(calculate_similarity(a, b), 1 / 3)
        self.assertEqual(calculate_similarity(a, _scored("c", 0.9, text="!!!")), 0.0)

    def test_lambda_one_keeps_relevance_order(self) -> None:
        items = [_scored(k, s, text="same text") for k, s in zip("abc", [0.9, 0.8, 0.7])]
        self.assertEqual([i.identifier for i in mmr_rerank(items, lambda_param=1.0, top_n=3)], ["a", "b", "c"])

    def test_top_n(self) -> None:
        items = [_scored(str(i), 0.9 - i * 0.1) for i in range(5)]
        self.assertEqual(len(mmr_rerank(items, top_n=2)), 2)
        self.assertEqual(mmr_rerank([], top_n=2), [])


if __name__ == "__main__":
    unittest.main()
