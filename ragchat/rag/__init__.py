"""
RAG 对话检索模块

提供查询扩展、多通道召回、打分过滤、上下文拼接与回答流协调
"""

from ragchat.rag.pipeline import RetrievalPipeline
from ragchat.rag.streaming import AnswerStreamCoordinator, serialize_compat, serialize_ndjson

__all__ = [
    "RetrievalPipeline",
    "AnswerStreamCoordinator",
    "serialize_ndjson",
    "serialize_compat",
]
