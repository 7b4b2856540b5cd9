"""
Milvus 向量数据库客户端

封装 Milvus 向量检索操作，支持本地和远程部署
"""

import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger
from pymilvus import MilvusClient

from ragchat.core.config import settings
from ragchat.core.errors import RetrievalError


class VectorDBClient:
    """
    Milvus 向量数据库客户端

    pymilvus 是同步 SDK，这里把调用放到线程池里执行，避免阻塞事件循环。
    连接在第一次使用时建立。
    """

    def __init__(
        self,
        collection_name: Optional[str] = None,
        uri: Optional[str] = None,
        client: Optional[MilvusClient] = None,
        text_field: Optional[str] = None,
    ):
        """
        初始化 Milvus 客户端

        Args:
            collection_name: 集合名称
            uri: Milvus 地址，默认由配置拼出
            client: 预先构造好的 MilvusClient（可选）
            text_field: 正文所在字段，默认取 MILVUS_TEXT_FIELD
        """
        self.collection_name = collection_name or settings.MILVUS_COLLECTION
        self.uri = uri or settings.milvus_uri
        self._client = client
        self.text_field = text_field or settings.MILVUS_TEXT_FIELD

    def _connect(self) -> MilvusClient:
        """连接到 Milvus，支持认证和 TLS"""
        if self._client is not None:
            return self._client
        try:
            connect_params: Dict[str, Any] = {"uri": self.uri}

            # 如果配置了认证信息
            if settings.MILVUS_USER and settings.MILVUS_PASSWORD:
                connect_params["token"] = f"{settings.MILVUS_USER}:{settings.MILVUS_PASSWORD}"
                logger.info(f"连接 Milvus 使用认证: user={settings.MILVUS_USER}")

            self._client = MilvusClient(**connect_params)
            logger.info(f"成功连接到 Milvus: {self.uri}, collection={self.collection_name}")
            return self._client

        except Exception as e:
            logger.error(f"连接 Milvus 失败: {e}")
            raise RetrievalError(f"Milvus connection failed: {e}") from e

    def _to_payload(self, entity: Dict[str, Any]) -> Dict[str, Any]:
        """去掉向量字段，把配置的正文字段映射为 payload["text"]"""
        entity.pop(settings.MILVUS_VECTOR_FIELD, None)
        value = entity.get(self.text_field)
        if isinstance(value, str) and value:
            entity.pop(self.text_field)
            entity["text"] = value
        return entity

    async def search(
        self, vector: List[float], limit: int, collection: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        向量检索

        Args:
            vector: 查询向量
            limit: 返回结果数量上限
            collection: 集合名称（默认使用构造时的集合）

        Returns:
            检索结果列表，格式: [{"score": 0.95, "payload": {...}}, ...]，按相似度降序
        """
        collection_name = collection or self.collection_name
        try:
            client = self._connect()
            logger.debug(f"执行向量检索: vector_dim={len(vector)}, limit={limit}")

            results = await asyncio.to_thread(
                client.search,
                collection_name=collection_name,
                data=[list(vector)],
                anns_field=settings.MILVUS_VECTOR_FIELD,
                limit=limit,
                output_fields=["*"],
                search_params={"metric_type": settings.MILVUS_METRIC_TYPE, "params": {}},
            )

            hits: List[Dict[str, Any]] = []
            for hit in results[0] if results else []:
                entity = dict(hit.get("entity") or {})
                # 主键写回 payload，作为稳定的来源标识
                entity.setdefault("id", hit.get("id"))
                hits.append({"score": float(hit.get("distance", 0.0)), "payload": self._to_payload(entity)})

            logger.info(f"向量检索完成，返回 {len(hits)} 条结果")
            return hits[:limit]

        except RetrievalError:
            raise
        except Exception as e:
            logger.error(f"向量检索失败: {e}")
            raise RetrievalError(f"Vector search failed: {e}") from e

    async def sample_payloads(self, limit: int = 30) -> List[Dict[str, Any]]:
        """随机性不做保证：按存储顺序取前 limit 条 payload，用于生成示例问题"""
        try:
            client = self._connect()
            rows = await asyncio.to_thread(
                client.query,
                collection_name=self.collection_name,
                filter="",
                limit=limit,
                output_fields=["*"],
            )
            payloads = []
            for row in rows or []:
                payloads.append(self._to_payload(dict(row)))
            return payloads
        except RetrievalError:
            raise
        except Exception as e:
            logger.error(f"Milvus 采样失败: {e}")
            raise RetrievalError(f"Sampling payloads failed: {e}") from e

    async def ping(self) -> bool:
        """连通性检查：集合存在即视为健康"""
        try:
            client = self._connect()
            return bool(
                await asyncio.to_thread(client.has_collection, collection_name=self.collection_name)
            )
        except Exception as e:
            logger.warning(f"Milvus 健康检查失败: {e}")
            return False

    def close(self):
        """关闭连接"""
        if self._client is None:
            return
        try:
            self._client.close()
            logger.info("Milvus 连接已关闭")
        except Exception as e:
            logger.warning(f"关闭 Milvus 连接时出错: {e}")
        finally:
            self._client = None
