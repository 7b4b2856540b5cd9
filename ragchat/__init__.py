"""RAG 对话服务"""

__version__ = "1.0.0"
