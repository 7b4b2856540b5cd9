"""
相关性打分

对去重后的候选计算组合分数：

    combined = w_vec * cosine
             + w_kw  * keyword_overlap(query, text)
             + w_bm  * bm25_like(query, text)        # 仅混合模式
             + 0.25  * keyword_overlap(query, title)
             + 0.10  * acronym_match(query, text)
             - 0.35  * reference_penalty(text)

组合分数只用于排序和相对阈值，与向量库原始相似度的下限比较无关。
所有函数都是纯函数，相同输入总得到相同结果。
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from ragchat.rag.models.candidate import Candidate, ScoredCandidate

_TOKEN_RE = re.compile(r"[a-z0-9]+|[一-鿿]")
_ACRONYM_RE = re.compile(r"\b[A-Z][A-Z0-9]{1,9}\b")
_CITATION_RE = re.compile(
    r"\[\d+(?:\s*[,\-–]\s*\d+)*\]"  # [12] [3, 4] [5-7]
    r"|\(\s*[A-Z][A-Za-z\-]+(?:\s+et\s+al\.?)?,?\s+\d{4}[a-z]?\s*\)"  # (Smith et al., 2019)
    r"|\bet\s+al\."
    r"|\bdoi:\s*\S+"
    r"|\bpp?\.\s*\d+"
    r"|\b(?:Vol|No)\.\s*\d+"
)

STOPWORDS = frozenset(
    """
    a an and are as at be been but by can could did do does for from had has have how i if in
    into is it its me my of on or our so than that the their them then there these they this to
    was we were what when where which who why will with would you your about also any some such
    please tell explain describe give
    """.split()
)

TITLE_WEIGHT = 0.25
ACRONYM_WEIGHT = 0.10
REFERENCE_PENALTY_WEIGHT = 0.35
# 引用标记占比达到 20% 时惩罚封顶
REFERENCE_DENSITY_SCALE = 5.0

BM25_K1 = 1.2
BM25_B = 0.75
BM25_AVG_DOC_LEN = 120.0


@dataclass(frozen=True)
class ScoreWeights:
    vector: float
    keyword: float
    bm25: float

    @classmethod
    def for_mode(cls, hybrid: bool) -> "ScoreWeights":
        if hybrid:
            return cls(vector=0.65, keyword=0.35, bm25=0.20)
        return cls(vector=0.75, keyword=0.18, bm25=0.0)


def tokenize(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return _TOKEN_RE.findall(text.lower())


def query_terms(query: str) -> Set[str]:
    """查询关键词：去掉停用词和单个拉丁字符，单个汉字保留"""
    return {
        t
        for t in tokenize(query)
        if t not in STOPWORDS and (len(t) > 1 or "一" <= t <= "鿿")
    }


def keyword_overlap(query: str, text: Optional[str]) -> float:
    """查询关键词在文本中出现的比例，取值 [0, 1]"""
    terms = query_terms(query)
    if not terms or not text:
        return 0.0
    text_tokens = set(tokenize(text))
    return len(terms & text_tokens) / len(terms)


def bm25_like(query: str, text: Optional[str]) -> float:
    """单文档 BM25 饱和词频（无 IDF），归一化到 [0, 1)"""
    terms = query_terms(query)
    tokens = tokenize(text)
    if not terms or not tokens:
        return 0.0

    doc_len = len(tokens)
    counts = {}
    for t in tokens:
        if t in terms:
            counts[t] = counts.get(t, 0) + 1

    norm = BM25_K1 * (1 - BM25_B + BM25_B * doc_len / BM25_AVG_DOC_LEN)
    total = 0.0
    for term in terms:
        tf = counts.get(term, 0)
        if tf:
            total += tf * (BM25_K1 + 1) / (tf + norm)
    return total / (len(terms) * (BM25_K1 + 1))


def acronym_match(query: str, text: Optional[str]) -> float:
    """查询中的大写缩写词（如 COPD、FEV1）在文本中原样出现的比例"""
    acronyms = set(_ACRONYM_RE.findall(query or ""))
    if not acronyms or not text:
        return 0.0
    found = {a for a in acronyms if re.search(rf"\b{re.escape(a)}\b", text)}
    return len(found) / len(acronyms)


def reference_penalty(text: Optional[str]) -> float:
    """引用标记密度惩罚，取值 [0, 1]；参考文献列表类片段得分高，正文段落得分低"""
    if not text:
        return 0.0
    total_tokens = len(text.split())
    if total_tokens == 0:
        return 0.0
    markers = len(_CITATION_RE.findall(text))
    return min(1.0, (markers / total_tokens) * REFERENCE_DENSITY_SCALE)


class RelevanceScorer:
    """组合相关性打分器"""

    def score_one(self, query: str, candidate: Candidate, hybrid: bool = False) -> ScoredCandidate:
        weights = ScoreWeights.for_mode(hybrid)
        text = candidate.payload.text
        kw = keyword_overlap(query, text)

        combined = weights.vector * candidate.raw_score + weights.keyword * kw
        if weights.bm25:
            combined += weights.bm25 * bm25_like(query, text)
        combined += TITLE_WEIGHT * keyword_overlap(query, candidate.payload.title)
        combined += ACRONYM_WEIGHT * acronym_match(query, text)
        combined -= REFERENCE_PENALTY_WEIGHT * reference_penalty(text)

        return ScoredCandidate(candidate=candidate, combined_score=combined, keyword_overlap=kw)

    def score(self, query: str, candidates: Iterable[Candidate], hybrid: bool = False) -> List[ScoredCandidate]:
        """按输入顺序返回打分结果"""
        return [self.score_one(query, c, hybrid) for c in candidates]
