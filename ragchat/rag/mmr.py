"""
MMR (最大边际相关性) 算法实现

用于在保持相关性的同时，减少入选片段之间的内容重复。
"""

from typing import List

from loguru import logger

from ragchat.rag.models.candidate import ScoredCandidate
from ragchat.rag.scoring import tokenize


def calculate_similarity(item1: ScoredCandidate, item2: ScoredCandidate) -> float:
    """
    计算两个片段的相似度（词集合 Jaccard）

    Returns:
        相似度分数 (0-1)，越高表示越相似
    """
    tokens1 = set(tokenize(item1.text))
    tokens2 = set(tokenize(item2.text))
    if not tokens1 or not tokens2:
        return 0.0
    return len(tokens1 & tokens2) / len(tokens1 | tokens2)


def mmr_rerank(
    items: List[ScoredCandidate], lambda_param: float = 0.7, top_n: int = 10
) -> List[ScoredCandidate]:
    """
    使用 MMR 算法重新排序

    算法公式:
        MMR = argmax[λ * Sim(D, Q) - (1-λ) * max Sim(D, Di)]
              D∈R\\S

    参数说明:
        - λ=1: 只看相关性
        - λ=0: 只看多样性

    Args:
        items: 已排序的候选（combined_score 作为相关性）
        lambda_param: 平衡参数 (0-1)
        top_n: 返回前N个结果

    Returns:
        重新排序后的结果列表
    """
    if not items:
        return []

    if lambda_param < 0 or lambda_param > 1:
        logger.warning(f"lambda_param={lambda_param} 超出范围 [0,1]，使用默认值 0.7")
        lambda_param = 0.7

    selected: List[ScoredCandidate] = []
    remaining = list(items)

    logger.debug(f"开始 MMR 重排: 候选数={len(remaining)}, lambda={lambda_param}, top_n={top_n}")

    while len(selected) < top_n and remaining:
        best_score = float("-inf")
        best_idx = None

        for idx, item in enumerate(remaining):
            # 多样性惩罚（与已选片段中最相似的那个）
            max_similarity = 0.0
            for selected_item in selected:
                max_similarity = max(max_similarity, calculate_similarity(item, selected_item))

            mmr_score = lambda_param * item.combined_score - (1 - lambda_param) * max_similarity

            # 严格大于：分数相同时保留靠前的候选，保证结果确定
            if mmr_score > best_score:
                best_score = mmr_score
                best_idx = idx

        if best_idx is None:
            break

        selected.append(remaining.pop(best_idx))

    logger.debug(f"MMR 重排完成: 输出数={len(selected)}")
    return selected
