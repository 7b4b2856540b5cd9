"""
Embedding 向量化服务

封装 OpenAI Embedding API 调用
"""

from typing import List, Optional

from loguru import logger
from openai import AsyncOpenAI

from ragchat.core.config import settings
from ragchat.core.errors import RetrievalError


class EmbeddingService:
    """
    OpenAI Embedding 服务

    负责将文本转换为向量表示，失败统一抛出 RetrievalError
    """

    def __init__(self, model: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        """初始化 OpenAI 客户端"""
        if client is None:
            client_params = {"api_key": settings.OPENAI_API_KEY or "missing"}

            # 如果配置了自定义 API 端点
            if settings.OPENAI_API_BASE:
                client_params["base_url"] = settings.OPENAI_API_BASE
                logger.info(f"使用自定义 OpenAI API 端点: {settings.OPENAI_API_BASE}")
            client = AsyncOpenAI(**client_params)

        self.client = client
        self.model = model or settings.OPENAI_EMBEDDING_MODEL
        logger.info(f"Embedding 服务初始化完成，使用模型: {self.model}")

    async def embed(self, text: str) -> List[float]:
        """
        文本向量化

        Args:
            text: 输入文本

        Returns:
            向量表示
        """
        try:
            logger.debug(f"执行文本向量化: text_length={len(text)}")

            response = await self.client.embeddings.create(input=text, model=self.model)

            vector = response.data[0].embedding
            logger.info(f"向量化完成: vector_dim={len(vector)}")

            return vector

        except Exception as e:
            logger.error(f"文本向量化失败: {e}")
            raise RetrievalError(f"Embedding failed: {e}") from e
