"""
CRAG 纠错检索

判定 → (可选) 细化查询 → 再检索 → 合并，每个请求最多一轮细化。
判定或细化失败都视为 keep，不阻塞管线。
"""

import json
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from ragchat.core.errors import ExpansionError, GenerationError, RetrievalError
from ragchat.rag.dedup import dedupe
from ragchat.rag.expansion import TextGenerator, clean_single_line
from ragchat.rag.models.candidate import Candidate
from ragchat.rag.prompt import build_judge_prompt, build_refine_prompt

ACTION_KEEP = "keep"
ACTION_REFINE = "refine"

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

Retriever = Callable[[str], Awaitable[List[Candidate]]]


@dataclass(frozen=True)
class JudgeVerdict:
    action: str = ACTION_KEEP
    hint: Optional[str] = None


@dataclass
class CragResult:
    pool: List[Candidate] = field(default_factory=list)
    retrieval_query: str = ""
    action: str = ACTION_KEEP
    refined: bool = False


def parse_verdict(raw: str) -> JudgeVerdict:
    """解析判定输出；无法解析或 refine 缺少 hint 时一律 keep"""
    match = _JSON_OBJECT_RE.search(raw or "")
    if not match:
        raise ExpansionError(f"judge output is not JSON: {raw[:100]!r}")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ExpansionError(f"judge output is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ExpansionError("judge output is not an object")

    action = str(data.get("action", ACTION_KEEP)).strip().lower()
    hint = str(data.get("hint") or "").strip()
    if action == ACTION_REFINE and hint:
        return JudgeVerdict(action=ACTION_REFINE, hint=hint)
    return JudgeVerdict(action=ACTION_KEEP)


class CorrectiveRetrievalLoop:
    def __init__(self, generator: TextGenerator, judge_top_n: int = 8):
        self.generator = generator
        self.judge_top_n = max(1, min(judge_top_n, 8))

    async def judge(self, query: str, candidates: List[Candidate]) -> JudgeVerdict:
        # 按原始相似度取前 N 条，合并后的池子顺序不变
        ranked = sorted(candidates, key=lambda c: c.raw_score, reverse=True)
        passages = [c.payload.text for c in ranked[: self.judge_top_n]] or ["(no passages retrieved)"]
        try:
            raw = await self.generator.generate_text(
                prompt=build_judge_prompt(query, passages), max_tokens=200, temperature=0.0
            )
            verdict = parse_verdict(raw)
        except (GenerationError, ExpansionError) as e:
            logger.warning(f"[CRAG] 判定失败，按 keep 处理: {e}")
            return JudgeVerdict(action=ACTION_KEEP)
        logger.info(f"[CRAG] 判定结果: action={verdict.action}, hint='{(verdict.hint or '')[:60]}'")
        return verdict

    async def refine_query(self, query: str, hint: str) -> str:
        try:
            raw = await self.generator.generate_text(
                prompt=build_refine_prompt(query, hint), max_tokens=128, temperature=0.0
            )
        except GenerationError as e:
            logger.warning(f"[CRAG] 查询细化失败: {e}")
            return ""
        return clean_single_line(raw)

    async def run(self, query: str, pool: List[Candidate], retrieve: Retriever) -> CragResult:
        verdict = await self.judge(query, pool)
        result = CragResult(pool=list(pool), retrieval_query=query, action=verdict.action)
        if verdict.action != ACTION_REFINE:
            return result

        refined_query = await self.refine_query(query, verdict.hint or "")
        if not refined_query:
            logger.info("[CRAG] 细化查询为空，保持原检索查询，不再检索")
            return result

        try:
            new_hits = await retrieve(refined_query)
        except RetrievalError as e:
            logger.error(f"[CRAG] 细化后再检索失败，保留原候选: {e}")
            return result

        # 新结果排在前面，再与原候选去重合并
        result.pool = dedupe(list(new_hits) + list(pool))
        result.retrieval_query = refined_query
        result.refined = True
        logger.info(
            f"[CRAG] 细化完成: query='{refined_query[:50]}', new_hits={len(new_hits)}, merged={len(result.pool)}"
        )
        return result
