"""
相似度分布分析

对一个查询做一次检索，统计原始相似度分布，给出推荐的阈值与 topK，
用于调参时观察知识库的分数尺度。
"""

from __future__ import annotations

import statistics
from typing import List

from loguru import logger

from ragchat.rag.expansion import Embedder
from ragchat.rag.filtering import ABSOLUTE_SIMILARITY_FLOOR, RELATIVE_CUTOFF_RATIO, strict_pass_count
from ragchat.rag.scoring import RelevanceScorer
from ragchat.rag.store_gateway import CandidateStoreGateway
from ragchat.schemas.chat_schema import AnalyzeResponse, ScoreBucket

MAX_RECOMMENDED_THRESHOLD = 0.95
BUCKET_WIDTH = 0.1


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def build_buckets(scores: List[float]) -> List[ScoreBucket]:
    """按 0.1 分桶，最后一个桶包含 1.0"""
    counts = [0] * 10
    for s in scores:
        idx = min(9, max(0, int(clamp(s, 0.0, 1.0) / BUCKET_WIDTH)))
        counts[idx] += 1
    return [
        ScoreBucket(lower=round(i * BUCKET_WIDTH, 1), upper=round((i + 1) * BUCKET_WIDTH, 1), count=c)
        for i, c in enumerate(counts)
    ]


class SimilarityAnalysisService:
    def __init__(self, embedder: Embedder, gateway: CandidateStoreGateway):
        self.embedder = embedder
        self.gateway = gateway
        self.scorer = RelevanceScorer()

    async def analyze(self, query: str, limit: int = 20) -> AnalyzeResponse:
        query = (query or "").strip()
        if not query:
            raise ValueError("query 不能为空")

        vector = await self.embedder.embed(query)
        hits = await self.gateway.search(vector, limit, channel="analyze")
        scores = [h.raw_score for h in hits]
        if not scores:
            return AnalyzeResponse(query=query, count=0, buckets=build_buckets([]))

        max_score = max(scores)
        recommended = clamp(
            round(RELATIVE_CUTOFF_RATIO * max_score, 2), ABSOLUTE_SIMILARITY_FLOOR, MAX_RECOMMENDED_THRESHOLD
        )
        scored = self.scorer.score(query, hits)
        passing = strict_pass_count(scored, requested_top_k=limit, similarity_floor=recommended)
        recommended_top_k = max(1, min(10, passing or sum(1 for s in scores if s >= recommended)))

        logger.info(
            f"[Analyze] query='{query[:50]}', hits={len(scores)}, max={max_score:.3f}, "
            f"recommended={recommended:.2f}, passing={passing}"
        )
        return AnalyzeResponse(
            query=query,
            count=len(scores),
            max_score=round(max_score, 6),
            min_score=round(min(scores), 6),
            mean_score=round(statistics.fmean(scores), 6),
            median_score=round(statistics.median(scores), 6),
            buckets=build_buckets(scores),
            recommended_threshold=recommended,
            recommended_top_k=recommended_top_k,
            passing_at_recommended=passing,
        )
