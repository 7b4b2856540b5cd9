"""
客户端模块

封装外部基础设施（Milvus、OpenAI 兼容生成接口）
"""

from ragchat.rag.clients.llm_client import LLMClient
from ragchat.rag.clients.milvus_client import VectorDBClient

__all__ = ["VectorDBClient", "LLMClient"]
