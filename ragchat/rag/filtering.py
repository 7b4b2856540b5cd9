"""
动态过滤

阈值相对于本次请求的最高组合分数计算，而不是全局常量：

- relative_cutoff = 0.85 * top_combined
- 通过条件：combined >= relative_cutoff
            且 raw_score >= max(用户阈值, 0.10)
            且 keyword_overlap >= (0.15 混合模式 / 0.05 普通模式)
- 通过集合截断到 min(10, requested_top_k)
- 候选池非空但无一通过时，按原始相似度取前 3 条作为最小上下文（标记为未使用、低于阈值）
"""

from typing import List, Optional

from loguru import logger

from ragchat.rag.mmr import mmr_rerank
from ragchat.rag.models.candidate import ScoredCandidate
from ragchat.rag.models.retrieval import FilterResult

RELATIVE_CUTOFF_RATIO = 0.85
ABSOLUTE_SIMILARITY_FLOOR = 0.10
KEYWORD_FLOOR = 0.05
KEYWORD_FLOOR_HYBRID = 0.15
MAX_CONTEXT_PASSAGES = 10
FALLBACK_SIZE = 3


class DynamicFilter:
    def __init__(self, mmr_lambda: float = 0.7):
        self.mmr_lambda = mmr_lambda

    @staticmethod
    def cap_for(requested_top_k: int) -> int:
        return max(1, min(MAX_CONTEXT_PASSAGES, requested_top_k))

    def apply(
        self,
        scored: List[ScoredCandidate],
        requested_top_k: int,
        similarity_floor: float,
        hybrid: bool = False,
        mmr: bool = False,
    ) -> FilterResult:
        ranked = sorted(scored, key=lambda c: c.combined_score, reverse=True)
        top_combined = ranked[0].combined_score if ranked else 0.0
        relative_cutoff = RELATIVE_CUTOFF_RATIO * top_combined
        floor = max(similarity_floor, ABSOLUTE_SIMILARITY_FLOOR)
        keyword_floor = KEYWORD_FLOOR_HYBRID if hybrid else KEYWORD_FLOOR
        cap = self.cap_for(requested_top_k)

        passing = [
            c
            for c in ranked
            if c.combined_score >= relative_cutoff
            and c.raw_score >= floor
            and c.keyword_overlap >= keyword_floor
        ]

        if mmr and len(passing) > 1:
            passed = mmr_rerank(passing, lambda_param=self.mmr_lambda, top_n=cap)
        else:
            passed = passing[:cap]

        for c in scored:
            c.used_in_context = False
            c.below_threshold = False
        for c in passed:
            c.used_in_context = True

        selected: List[ScoredCandidate] = list(passed)
        fallback_used = False
        if ranked and not passed:
            selected = self._minimal_context(ranked, cap)
            fallback_used = True
            logger.warning(
                f"[DynamicFilter] 无候选通过阈值 (cutoff={relative_cutoff:.3f}, floor={floor:.2f})，"
                f"兜底纳入 {len(selected)} 条"
            )

        logger.info(
            f"[DynamicFilter] pool={len(scored)}, passed={len(passed)}, cap={cap}, "
            f"top={top_combined:.3f}, cutoff={relative_cutoff:.3f}, floor={floor:.2f}, "
            f"kw_floor={keyword_floor:.2f}, mmr={mmr}"
        )

        return FilterResult(
            passed=passed,
            selected=selected,
            top_combined=top_combined,
            relative_cutoff=relative_cutoff,
            similarity_floor=floor,
            keyword_floor=keyword_floor,
            cap=cap,
            fallback_used=fallback_used,
        )

    @staticmethod
    def _minimal_context(ranked: List[ScoredCandidate], cap: int) -> List[ScoredCandidate]:
        by_raw = sorted(ranked, key=lambda c: c.raw_score, reverse=True)
        chosen = by_raw[: min(FALLBACK_SIZE, cap)]
        for c in chosen:
            c.used_in_context = False
            c.below_threshold = True
        return chosen


def strict_pass_count(
    scored: List[ScoredCandidate],
    requested_top_k: int,
    similarity_floor: float,
    hybrid: bool = False,
    filter_: Optional[DynamicFilter] = None,
) -> int:
    """严格通过的数量（不含兜底），用于阈值分析接口"""
    result = (filter_ or DynamicFilter()).apply(scored, requested_top_k, similarity_floor, hybrid)
    return len(result.passed)
