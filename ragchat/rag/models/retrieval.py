"""
检索请求与检索结果模型

在查询扩展、召回、打分、过滤、拼接上下文等各个阶段传递
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ragchat.rag.models.candidate import ScoredCandidate


@dataclass(frozen=True)
class ExpansionFlags:
    """检索增强开关"""

    hyde_enabled: bool = False
    crag_enabled: bool = False
    hybrid_enabled: bool = False
    mmr_enabled: bool = False
    cross_encoder_enabled: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "hydeEnabled": self.hyde_enabled,
            "cragEnabled": self.crag_enabled,
            "hybridEnabled": self.hybrid_enabled,
            "mmrEnabled": self.mmr_enabled,
            "crossEncoderEnabled": self.cross_encoder_enabled,
        }


@dataclass(frozen=True)
class RetrievalRequest:
    """
    检索请求

    top_k 限制的是单个召回通道的请求条数，合并后的候选池最多为各通道之和。
    """

    query: str
    top_k: int = 5
    similarity_floor: float = 0.7
    flags: ExpansionFlags = field(default_factory=ExpansionFlags)

    def __post_init__(self):
        if not self.query or not self.query.strip():
            raise ValueError("query 不能为空")
        if self.top_k <= 0:
            raise ValueError("top_k 必须 > 0")


@dataclass
class ExpandedQuery:
    """查询扩展结果：检索用查询 + 待检索的向量（按固定通道顺序：HyDE 在前，原始查询在后）"""

    display_query: str
    retrieval_query: str
    vectors: List[Tuple[str, List[float]]] = field(default_factory=list)
    hypothetical_document: Optional[str] = None

    @property
    def channels(self) -> List[str]:
        return [name for name, _ in self.vectors]


@dataclass
class FilterResult:
    """
    动态过滤结果

    passed: 严格通过阈值的候选（已截断）
    selected: 最终送入上下文的候选；严格通过为空时为兜底候选
    """

    passed: List[ScoredCandidate]
    selected: List[ScoredCandidate]
    top_combined: float
    relative_cutoff: float
    similarity_floor: float
    keyword_floor: float
    cap: int
    fallback_used: bool = False


@dataclass
class RetrievalOutcome:
    """一次检索的完整产出，供 prompt 构造与来源归因使用"""

    display_query: str
    retrieval_query: str
    top_k: int
    flags: ExpansionFlags
    candidates: List[ScoredCandidate] = field(default_factory=list)  # 过滤前的全部候选（召回顺序）
    selected: List[ScoredCandidate] = field(default_factory=list)
    context: str = ""
    threshold_used: float = 0.0
    relative_cutoff: float = 0.0
    fallback_used: bool = False
    crag_action: Optional[str] = None
    channels: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls, request: RetrievalRequest, retrieval_query: Optional[str] = None) -> "RetrievalOutcome":
        return cls(
            display_query=request.query,
            retrieval_query=retrieval_query or request.query,
            top_k=request.top_k,
            flags=request.flags,
            threshold_used=max(request.similarity_floor, 0.10),
        )

    @property
    def has_context(self) -> bool:
        return bool(self.context)

    def sources(self) -> List[Dict[str, Any]]:
        return [c.to_source() for c in self.candidates]

    def debug_info(self) -> Dict[str, Any]:
        return {
            "retrievalQuery": self.retrieval_query,
            "channels": self.channels,
            "cragAction": self.crag_action,
            "relativeCutoff": round(self.relative_cutoff, 6),
            "fallbackUsed": self.fallback_used,
            "candidateCount": len(self.candidates),
            "usedCount": sum(1 for c in self.candidates if c.used_in_context),
        }
