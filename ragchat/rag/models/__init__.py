"""
数据模型模块

定义检索管线的核心数据结构
"""

from ragchat.rag.models.candidate import Candidate, Payload, ScoredCandidate
from ragchat.rag.models.events import AnswerStreamEvent, Delta, SourcesFinal, StreamError
from ragchat.rag.models.retrieval import (
    ExpandedQuery,
    ExpansionFlags,
    FilterResult,
    RetrievalOutcome,
    RetrievalRequest,
)

__all__ = [
    "Payload",
    "Candidate",
    "ScoredCandidate",
    "ExpansionFlags",
    "RetrievalRequest",
    "ExpandedQuery",
    "FilterResult",
    "RetrievalOutcome",
    "AnswerStreamEvent",
    "Delta",
    "SourcesFinal",
    "StreamError",
]
