"""
检索管线 - RAG 对话的检索与上下文组装入口

协调查询扩展、多通道召回、去重、CRAG 纠错、打分、动态过滤、重排和上下文拼接
"""

import asyncio
import time
from typing import List, Optional, Tuple

from loguru import logger

from ragchat.core.config import PipelineConfig
from ragchat.core.errors import RetrievalError
from ragchat.rag.context import ContextAssembler
from ragchat.rag.crag import CorrectiveRetrievalLoop
from ragchat.rag.dedup import dedupe
from ragchat.rag.expansion import Embedder, QueryExpander, TextGenerator
from ragchat.rag.filtering import DynamicFilter
from ragchat.rag.models.candidate import Candidate
from ragchat.rag.models.retrieval import RetrievalOutcome, RetrievalRequest
from ragchat.rag.rerank import CrossEncoderReranker
from ragchat.rag.scoring import RelevanceScorer
from ragchat.rag.store_gateway import CandidateStoreGateway, VectorStore

REFINED_CHANNEL = "refined"


class RetrievalPipeline:
    """
    检索管线

    流程:
    1. 查询扩展（CRAG 改写 / HyDE 假设文档）
    2. 多通道并发召回（HyDE 在前，原始查询在后）+ 去重
    3. CRAG 判定与一轮细化（可选）
    4. 组合打分
    5. 动态过滤（含 MMR 与兜底）
    6. Cross-Encoder 重排（可选）
    7. 拼接上下文

    向量库或 Embedding 失败时降级为空上下文，不让整个请求失败。
    """

    def __init__(
        self,
        embedder: Embedder,
        generator: TextGenerator,
        store: VectorStore,
        config: Optional[PipelineConfig] = None,
        reranker: Optional[CrossEncoderReranker] = None,
    ):
        """
        初始化检索管线

        Args:
            embedder: 向量化服务
            generator: 文本生成服务（改写、HyDE、CRAG 判定）
            store: 向量库客户端
            config: 管线配置
            reranker: Cross-Encoder 重排器（可选）
        """
        self.config = config or PipelineConfig()
        self.embedder = embedder
        self.gateway = CandidateStoreGateway(store, collection=self.config.collection)
        self.expander = QueryExpander(embedder, generator)
        self.crag = CorrectiveRetrievalLoop(generator, judge_top_n=self.config.crag_judge_top_n)
        self.scorer = RelevanceScorer()
        self.filter = DynamicFilter(mmr_lambda=self.config.mmr_lambda)
        self.assembler = ContextAssembler(min_chars=self.config.min_context_chars)
        self.reranker = reranker

        logger.info(
            f"RetrievalPipeline 初始化完成: collection={self.config.collection}, "
            f"rerank={'enabled' if reranker else 'disabled'}"
        )

    async def run(self, request: RetrievalRequest) -> RetrievalOutcome:
        start_time = time.time()
        flags = request.flags
        logger.info(
            f"[RetrievalPipeline] 开始检索: query='{request.query[:50]}', top_k={request.top_k}, "
            f"floor={request.similarity_floor}, flags={flags.to_dict()}"
        )

        # Step 1: 查询扩展
        try:
            expanded = await self.expander.expand(request.query, flags)
        except RetrievalError as e:
            logger.error(f"[RetrievalPipeline] 向量化失败，降级为无上下文: {e}")
            return RetrievalOutcome.empty(request)

        # Step 2: 并发召回 + 去重
        pool = await self._parallel_recall(expanded.vectors, request.top_k)
        retrieval_query = expanded.retrieval_query

        # Step 3: CRAG
        crag_action = None
        if flags.crag_enabled:
            crag_result = await self.crag.run(
                retrieval_query,
                pool,
                lambda q: self._retrieve_refined(q, request.top_k),
            )
            pool = crag_result.pool
            retrieval_query = crag_result.retrieval_query
            crag_action = crag_result.action

        outcome = RetrievalOutcome.empty(request, retrieval_query=retrieval_query)
        outcome.channels = expanded.channels
        outcome.crag_action = crag_action
        if not pool:
            logger.info("[RetrievalPipeline] 候选池为空，使用无上下文模式")
            return outcome

        # Step 4: 打分（使用检索查询）
        scored = self.scorer.score(retrieval_query, pool, hybrid=flags.hybrid_enabled)

        # Step 5: 动态过滤
        result = self.filter.apply(
            scored,
            requested_top_k=request.top_k,
            similarity_floor=request.similarity_floor,
            hybrid=flags.hybrid_enabled,
            mmr=flags.mmr_enabled,
        )
        selected = result.selected

        # Step 6: Cross-Encoder 重排（只调整顺序）
        if flags.cross_encoder_enabled and self.reranker and not result.fallback_used:
            selected = await self.reranker.rerank(retrieval_query, selected)

        # Step 7: 拼接上下文
        context = self.assembler.assemble(
            selected,
            below_threshold=result.fallback_used,
            query_rewritten=retrieval_query != request.query,
        )

        outcome.candidates = scored
        outcome.selected = selected
        outcome.context = context
        outcome.threshold_used = result.similarity_floor
        outcome.relative_cutoff = result.relative_cutoff
        outcome.fallback_used = result.fallback_used

        took_ms = (time.time() - start_time) * 1000
        logger.info(
            f"[RetrievalPipeline] 检索完成: pool={len(pool)}, selected={len(selected)}, "
            f"fallback={result.fallback_used}, context_chars={len(context)}, took={took_ms:.2f}ms"
        )
        return outcome

    async def _parallel_recall(self, vectors: List[Tuple[str, List[float]]], top_k: int) -> List[Candidate]:
        """
        并发执行各通道召回

        单个通道失败只丢弃该通道；结果按通道顺序拼接后去重。
        """
        results = await asyncio.gather(
            *(self.gateway.search(vector, top_k, channel=name) for name, vector in vectors),
            return_exceptions=True,
        )

        merged: List[Candidate] = []
        recall_stats = {}
        for (name, _), result in zip(vectors, results):
            if isinstance(result, BaseException):
                if not isinstance(result, RetrievalError):
                    raise result
                logger.error(f"[RetrievalPipeline] 通道 {name} 召回失败: {result}")
                recall_stats[name] = "failed"
                continue
            recall_stats[name] = len(result)
            merged.extend(result)

        pool = dedupe(merged)
        recall_stats["merged"] = len(pool)
        logger.info(f"[RetrievalPipeline] 并发召回完成: {recall_stats}")
        return pool

    async def _retrieve_refined(self, query: str, top_k: int) -> List[Candidate]:
        vector = await self.embedder.embed(query)
        return await self.gateway.search(vector, top_k, channel=REFINED_CHANNEL)
