"""
Cross-Encoder 重排

通过 HTTP 接口调用 TEI 部署的 Cross-Encoder 模型，对入选片段重新排序。
只调整顺序，不改写 combined_score；任何失败都保持原顺序。
"""

from typing import List, Optional

import httpx
from loguru import logger

from ragchat.rag.models.candidate import ScoredCandidate


class CrossEncoderReranker:
    def __init__(
        self,
        endpoint: str,
        model_name: str = "bge-reranker-base",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            endpoint: TEI 服务端点（如 "http://reranker-bge:8080"）
            model_name: 模型名称，仅用于日志
        """
        self.endpoint = endpoint.rstrip("/")
        self.model_name = model_name
        self.timeout = timeout
        self.transport = transport
        logger.info(f"[CrossEncoderReranker] 初始化: model={model_name}, endpoint={self.endpoint}")

    async def predict_scores(self, query: str, documents: List[str]) -> Optional[List[float]]:
        """
        调用 TEI 接口打分

        Returns:
            与 documents 顺序一致的分数列表；失败返回 None
        """
        if not documents:
            return []
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.endpoint}/rerank",
                    json={"query": query, "texts": documents},
                )
                response.raise_for_status()
                result = response.json()

            # TEI 返回格式: [{"index": 0, "score": 0.95}, ...]
            sorted_result = sorted(result, key=lambda x: x["index"])
            scores = [float(item["score"]) for item in sorted_result]
            if len(scores) != len(documents):
                logger.warning(
                    f"[CrossEncoderReranker] 返回分数数量不匹配: {len(scores)} != {len(documents)}"
                )
                return None
            return scores

        except httpx.HTTPError as e:
            logger.error(f"[CrossEncoderReranker] 调用 TEI 失败: {e}")
            return None
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"[CrossEncoderReranker] 解析 TEI 响应失败: {e}")
            return None

    async def rerank(self, query: str, items: List[ScoredCandidate]) -> List[ScoredCandidate]:
        if len(items) < 2:
            return items
        scores = await self.predict_scores(query, [i.text for i in items])
        if scores is None:
            return items
        order = sorted(range(len(items)), key=lambda idx: scores[idx], reverse=True)
        logger.info(f"[CrossEncoderReranker] 重排完成: docs={len(items)}")
        return [items[idx] for idx in order]
