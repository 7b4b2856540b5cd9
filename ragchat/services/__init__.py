"""
服务模块入口。

按需导入：导入某个子模块时不连带加载 OpenAI / 数据库等无关依赖。
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "ChatService",
    "EmbeddingService",
    "RateLimiter",
    "SessionStore",
    "SessionLogWorker",
    "SimilarityAnalysisService",
    "SuggestionService",
]


_LAZY_IMPORTS = {
    "ChatService": (".chat_service", "ChatService"),
    "EmbeddingService": (".embedding_service", "EmbeddingService"),
    "RateLimiter": (".rate_limiter", "RateLimiter"),
    "SessionStore": (".session_service", "SessionStore"),
    "SessionLogWorker": (".session_service", "SessionLogWorker"),
    "SimilarityAnalysisService": (".analysis_service", "SimilarityAnalysisService"),
    "SuggestionService": (".suggestion_service", "SuggestionService"),
}


def __getattr__(name: str) -> Any:
    if name not in _LAZY_IMPORTS:
        raise AttributeError(name)
    module_path, attr = _LAZY_IMPORTS[name]
    from importlib import import_module

    module = import_module(module_path, __name__)
    return getattr(module, attr)
