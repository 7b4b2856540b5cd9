from __future__ import annotations

import unittest

from ragchat.core.config import PipelineConfig
from ragchat.core.errors import RetrievalError
from ragchat.rag.context import BELOW_THRESHOLD_MARKER, LANGUAGE_NOTE
from ragchat.rag.models.retrieval import ExpansionFlags, RetrievalRequest
from ragchat.rag.pipeline import RetrievalPipeline
from tests.fakes import HYDE, JUDGE, REFINE, REWRITE, FakeEmbedder, FakeGenerator, FakeStore, hit

HITS = [
    hit("guide.pdf#1", 0.90, "COPD treatment options include inhalers and pulmonary rehabilitation.", source="docs/guide.pdf"),
    hit("guide.pdf#2", 0.85, "COPD treatment guidelines recommend bronchodilators.", source="docs/guide.pdf"),
    hit("weather#1", 0.50, "Tomorrow will be sunny with light wind."),
]


class _RecordingReranker:
    def __init__(self):
        self.calls = 0

    async def rerank(self, query, items):
        self.calls += 1
        return list(reversed(items))


def _pipeline(store, generator=None, embedder=None, reranker=None) -> RetrievalPipeline:
    return RetrievalPipeline(
        embedder=embedder or FakeEmbedder(),
        generator=generator or FakeGenerator(),
        store=store,
        config=PipelineConfig(collection="test_docs"),
        reranker=reranker,
    )


class RetrievalPipelineTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_selects_relevant_passages(self) -> None:
        store = FakeStore(HITS)
        outcome = await _pipeline(store).run(RetrievalRequest(query="COPD treatment", top_k=5, similarity_floor=0.7))

        self.assertEqual([c.identifier for c in outcome.selected], ["guide.pdf#1", "guide.pdf#2"])
        self.assertFalse(outcome.fallback_used)
        self.assertIn("inhalers", outcome.context)
        self.assertIn("bronchodilators", outcome.context)
        self.assertNotIn("sunny", outcome.context)
        self.assertEqual(store.calls[0]["collection"], "test_docs")
        self.assertEqual(store.calls[0]["limit"], 5)

        sources = outcome.sources()
        self.assertEqual(len(sources), 3)
        self.assertEqual([s["usedInContext"] for s in sources], [True, True, False])
        self.assertEqual(sources[0]["source"], "guide.pdf")
        self.assertAlmostEqual(outcome.threshold_used, 0.7)

    async def test_empty_pool(self) -> None:
        outcome = await _pipeline(FakeStore([])).run(RetrievalRequest(query="anything"))
        self.assertEqual(outcome.context, "")
        self.assertEqual(outcome.sources(), [])
        self.assertFalse(outcome.has_context)

    async def test_store_failure_degrades_to_empty_context(self) -> None:
        outcome = await _pipeline(FakeStore(RetrievalError("milvus down"))).run(RetrievalRequest(query="COPD"))
        self.assertEqual(outcome.context, "")
        self.assertEqual(outcome.sources(), [])

    async def test_embedding_failure_degrades_to_empty_context(self) -> None:
        store = FakeStore(HITS)
        outcome = await _pipeline(store, embedder=FakeEmbedder(fail_all=True)).run(RetrievalRequest(query="COPD"))
        self.assertEqual(outcome.context, "")
        self.assertEqual(store.calls, [])

    async def test_fallback_marks_context(self) -> None:
        low = [hit("a", 0.40, "COPD note"), hit("b", 0.35, "COPD memo"), hit("c", 0.30, "COPD list")]
        outcome = await _pipeline(FakeStore(low)).run(RetrievalRequest(query="COPD", similarity_floor=0.7))

        self.assertTrue(outcome.fallback_used)
        self.assertEqual(len(outcome.selected), 3)
        self.assertTrue(outcome.context.startswith(BELOW_THRESHOLD_MARKER))
        self.assertTrue(all(not s["usedInContext"] and s["belowThreshold"] for s in outcome.sources()))

    async def test_hyde_searches_two_channels_and_dedupes(self) -> None:
        hyde_hits = [HITS[1], hit("extra", 0.88, "COPD treatment with steroids.")]
        store = FakeStore(hyde_hits, HITS)
        generator = FakeGenerator({HYDE: "COPD treatment relies on inhaled bronchodilators."})

        outcome = await _pipeline(store, generator).run(
            RetrievalRequest(query="COPD treatment", flags=ExpansionFlags(hyde_enabled=True))
        )

        self.assertEqual(len(store.calls), 2)
        self.assertEqual(outcome.channels, ["hyde", "literal"])
        self.assertEqual(
            [c.identifier for c in outcome.candidates], ["guide.pdf#2", "extra", "guide.pdf#1", "weather#1"]
        )
        self.assertEqual(outcome.candidates[0].candidate.channel, "hyde")

    async def test_crag_refinement_uses_refined_query(self) -> None:
        generator = FakeGenerator(
            {
                REWRITE: "COPD treatment",
                JUDGE: '{"action": "refine", "hint": "drug names"}',
                REFINE: "COPD bronchodilator drugs",
            }
        )
        refined_hits = [hit("drugs#1", 0.92, "COPD bronchodilator drugs such as tiotropium.")]
        store = FakeStore(HITS, refined_hits)

        outcome = await _pipeline(store, generator).run(
            RetrievalRequest(query="慢阻肺怎么治疗", flags=ExpansionFlags(crag_enabled=True))
        )

        self.assertEqual(len(store.calls), 2)
        self.assertEqual(outcome.retrieval_query, "COPD bronchodilator drugs")
        self.assertEqual(outcome.display_query, "慢阻肺怎么治疗")
        self.assertEqual(outcome.crag_action, "refine")
        self.assertEqual(outcome.candidates[0].identifier, "drugs#1")
        self.assertIn(LANGUAGE_NOTE, outcome.context)

    async def test_crag_judge_sees_highest_scoring_hits_across_channels(self) -> None:
        hyde_hits = [hit(f"hyde#{i}", 0.20, f"hyde passage {i}") for i in range(8)]
        literal_hits = [hit(f"literal#{i}", 0.95, f"literal passage {i}") for i in range(8)]
        store = FakeStore(hyde_hits, literal_hits)
        generator = FakeGenerator({HYDE: "A hypothetical answer about COPD.", JUDGE: '{"action": "keep"}'})

        outcome = await _pipeline(store, generator).run(
            RetrievalRequest(
                query="COPD treatment",
                top_k=8,
                flags=ExpansionFlags(hyde_enabled=True, crag_enabled=True),
            )
        )

        judge_prompts = [p for p in generator.prompts if JUDGE in p]
        self.assertEqual(len(judge_prompts), 1)
        for i in range(8):
            self.assertIn(f"literal passage {i}", judge_prompts[0])
        self.assertNotIn("hyde passage", judge_prompts[0])
        self.assertEqual(len(outcome.candidates), 16)

    async def test_crag_empty_refinement_skips_second_search(self) -> None:
        generator = FakeGenerator({JUDGE: '{"action": "refine", "hint": "more"}', REFINE: ""})
        store = FakeStore(HITS)

        outcome = await _pipeline(store, generator).run(
            RetrievalRequest(query="COPD treatment", flags=ExpansionFlags(crag_enabled=True))
        )

        self.assertEqual(len(store.calls), 1)
        self.assertEqual(outcome.retrieval_query, "COPD treatment")

    async def test_cross_encoder_reorders_selected_only(self) -> None:
        reranker = _RecordingReranker()
        outcome = await _pipeline(FakeStore(HITS), reranker=reranker).run(
            RetrievalRequest(query="COPD treatment", flags=ExpansionFlags(cross_encoder_enabled=True))
        )
        self.assertEqual(reranker.calls, 1)
        self.assertEqual([c.identifier for c in outcome.selected], ["guide.pdf#2", "guide.pdf#1"])

    async def test_cross_encoder_skipped_in_fallback(self) -> None:
        reranker = _RecordingReranker()
        low = [hit("a", 0.40, "COPD note"), hit("b", 0.35, "COPD memo")]
        await _pipeline(FakeStore(low), reranker=reranker).run(
            RetrievalRequest(query="COPD", flags=ExpansionFlags(cross_encoder_enabled=True))
        )
        self.assertEqual(reranker.calls, 0)


if __name__ == "__main__":
    unittest.main()
