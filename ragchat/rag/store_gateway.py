"""
候选召回网关

向外部向量库发起最近邻查询，把原始命中 {score, payload} 转成 Candidate
"""

from typing import Any, Dict, List, Optional, Protocol

from loguru import logger

from ragchat.core.errors import RetrievalError
from ragchat.rag.models.candidate import Candidate


class VectorStore(Protocol):
    async def search(
        self, vector: List[float], limit: int, collection: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        ...


class CandidateStoreGateway:
    """
    候选召回网关

    - 返回不超过 limit 条命中，保持向量库自身的排序（相似度降序）
    - 不修改入参
    - 传输失败统一抛出 RetrievalError，由调用方决定如何降级
    """

    def __init__(self, store: VectorStore, collection: Optional[str] = None):
        self.store = store
        self.collection = collection

    async def search(self, vector: List[float], limit: int, channel: str = "literal") -> List[Candidate]:
        if limit <= 0:
            return []
        try:
            raw_hits = await self.store.search(list(vector), limit, self.collection)
        except RetrievalError:
            raise
        except Exception as e:
            logger.error(f"[StoreGateway] 向量库调用失败: channel={channel}, err={e}")
            raise RetrievalError(f"Vector index unavailable: {e}") from e

        candidates = [
            Candidate.from_hit(hit.get("score", 0.0), hit.get("payload") or {}, channel=channel)
            for hit in (raw_hits or [])[:limit]
        ]
        logger.debug(f"[StoreGateway] channel={channel}, hits={len(candidates)}")
        return candidates
