from __future__ import annotations

import json
import unittest

import httpx

from ragchat.rag.models.candidate import Candidate, ScoredCandidate
from ragchat.rag.rerank import CrossEncoderReranker


def _scored(key: str, combined: float) -> ScoredCandidate:
    return ScoredCandidate(candidate=Candidate.from_hit(0.9, {"source_key": key, "text": f"text {key}"}), combined_score=combined)


def _reranker(handler) -> CrossEncoderReranker:
    return CrossEncoderReranker("http://reranker:8080/", transport=httpx.MockTransport(handler))


class CrossEncoderRerankerTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_reorders_by_tei_scores(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=[{"index": 1, "score": 0.9}, {"index": 0, "score": 0.1}, {"index": 2, "score": 0.5}])

        items = [_scored("a", 0.9), _scored("b", 0.8), _scored("c", 0.7)]
        result = await _reranker(handler).rerank("copd", items)

        self.assertEqual([i.identifier for i in result], ["b", "c", "a"])
        self.assertEqual([i.combined_score for i in result], [0.8, 0.7, 0.9])
        self.assertEqual(seen["url"], "http://reranker:8080/rerank")
        self.assertEqual(seen["body"], {"query": "copd", "texts": ["text a", "text b", "text c"]})

    async def test_failure_keeps_order(self) -> None:
        items = [_scored("a", 0.9), _scored("b", 0.8)]
        responses = [
            lambda request: httpx.Response(503),
            lambda request: httpx.Response(200, json=[{"index": 0, "score": 0.3}]),
            lambda request: httpx.Response(200, json={"unexpected": True}),
        ]
        for handler in responses:
            result = await _reranker(handler).rerank("q", items)
            self.assertEqual([i.identifier for i in result], ["a", "b"])

    async def test_single_item_skips_call(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("should not be called")

        items = [_scored("a", 0.9)]
        self.assertEqual(await _reranker(handler).rerank("q", items), items)


if __name__ == "__main__":
    unittest.main()
