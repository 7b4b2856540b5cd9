"""
RAG 对话编排

一次请求的完整流程：
1. 校验请求、合并会话历史
2. 检索管线（在开始流式响应之前完成）
3. 构造 prompt
4. 流式生成 + 序列化（NDJSON / 兼容模式）
5. 结束后通过后台队列落库（仅在生成完整结束时）
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from loguru import logger

from ragchat.core.config import PipelineConfig
from ragchat.core.errors import PersistenceError
from ragchat.rag.models.retrieval import ExpansionFlags, RetrievalOutcome, RetrievalRequest
from ragchat.rag.pipeline import RetrievalPipeline
from ragchat.rag.streaming import (
    AnswerStreamCoordinator,
    PromptPlan,
    StreamResult,
    serialize_compat,
    serialize_ndjson,
)
from ragchat.schemas.chat_schema import ChatFlags, ChatRequest, ConversationTurn
from ragchat.services.session_service import SessionLogWorker, SessionStore

NDJSON_MEDIA_TYPE = "application/x-ndjson"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"


@dataclass
class PreparedChat:
    """检索完成、prompt 已构造，等待流式生成的一次对话"""

    turns: List[ConversationTurn]
    flags: ChatFlags
    outcome: RetrievalOutcome
    plan: PromptPlan
    session_id: Optional[str] = None
    meta: dict = field(default_factory=dict)

    @property
    def structured(self) -> bool:
        return self.flags.structured_stream_enabled

    @property
    def media_type(self) -> str:
        return NDJSON_MEDIA_TYPE if self.structured else TEXT_MEDIA_TYPE


def to_expansion_flags(flags: ChatFlags) -> ExpansionFlags:
    return ExpansionFlags(
        hyde_enabled=flags.hyde_enabled,
        crag_enabled=flags.crag_enabled,
        hybrid_enabled=flags.hybrid_enabled,
        mmr_enabled=flags.mmr_enabled,
        cross_encoder_enabled=flags.cross_encoder_enabled,
    )


class ChatService:
    def __init__(
        self,
        pipeline: RetrievalPipeline,
        coordinator: AnswerStreamCoordinator,
        config: Optional[PipelineConfig] = None,
        session_store: Optional[SessionStore] = None,
        worker: Optional[SessionLogWorker] = None,
    ):
        self.pipeline = pipeline
        self.coordinator = coordinator
        self.config = config or PipelineConfig()
        self.session_store = session_store
        self.worker = worker

    @staticmethod
    def validate(req: ChatRequest) -> None:
        if not req.messages:
            raise ValueError("messages 不能为空")
        if not req.user_message:
            raise ValueError("最后一条消息内容不能为空")

    def build_retrieval_request(self, req: ChatRequest, flags: ChatFlags) -> RetrievalRequest:
        top_k = req.top_k if req.top_k is not None else self.config.default_top_k
        floor = (
            req.similarity_threshold
            if req.similarity_threshold is not None
            else self.config.default_similarity_threshold
        )
        return RetrievalRequest(
            query=req.user_message,
            top_k=top_k,
            similarity_floor=floor,
            flags=to_expansion_flags(flags),
        )

    async def load_turns(self, req: ChatRequest) -> List[ConversationTurn]:
        """
        前端只传当前问题但带了 sessionId 时，从会话存储补全历史；
        读取失败时只使用请求里的消息
        """
        turns = list(req.messages)
        if not (req.session_id and len(turns) == 1 and self.session_store):
            return turns
        try:
            stored = await asyncio.to_thread(self.session_store.list_messages, req.session_id)
        except PersistenceError as e:
            logger.warning(f"[ChatService] 读取会话历史失败，忽略: {e}")
            return turns
        history = [
            ConversationTurn(role=m.role, content=m.content)
            for m in stored
            if m.role in ("user", "assistant") and m.content
        ]
        if history:
            logger.info(f"[ChatService] 从会话 {req.session_id} 补全历史 {len(history)} 条")
        return history + turns

    async def prepare(self, req: ChatRequest) -> PreparedChat:
        self.validate(req)
        flags = req.effective_flags()
        turns = await self.load_turns(req)
        retrieval_request = self.build_retrieval_request(req, flags)

        outcome = await self.pipeline.run(retrieval_request)
        plan = await self.coordinator.build_prompt(
            turns,
            outcome,
            use_system_prompt=flags.use_system_prompt,
            custom_system_prompt=req.system_prompt,
        )

        meta = {
            "topK": retrieval_request.top_k,
            "similarityThreshold": retrieval_request.similarity_floor,
            "thresholdUsed": outcome.threshold_used,
            "flags": outcome.flags.to_dict(),
            "structured": flags.structured_stream_enabled,
            "promptMode": plan.mode,
            "selected": len(outcome.selected),
            "fallbackUsed": outcome.fallback_used,
        }
        prepared = PreparedChat(
            turns=turns, flags=flags, outcome=outcome, plan=plan, session_id=req.session_id, meta=meta
        )
        if prepared.session_id:
            self._submit(
                lambda: self.session_store.persist_message(prepared.session_id, "user", req.user_message),
                label="persist_user_message",
            )
        return prepared

    def stream(
        self,
        prepared: PreparedChat,
        should_stop: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[str]:
        events = self.coordinator.stream(
            prepared.plan,
            prepared.outcome,
            should_stop=should_stop,
            on_finish=lambda result: self._on_finish(prepared, result),
        )
        if prepared.structured:
            return serialize_ndjson(events)
        return serialize_compat(events)

    def _on_finish(self, prepared: PreparedChat, result: StreamResult) -> None:
        if prepared.session_id:
            self._submit(
                lambda: self.session_store.persist_message(
                    prepared.session_id, "assistant", result.answer, result.sources
                ),
                label="persist_assistant_message",
            )
        self._submit(
            lambda: self.session_store.log_chat_event(
                user_message=prepared.plan.user_message,
                model=self.config.model_name,
                context=prepared.outcome.context,
                response=result.answer,
                meta=prepared.meta,
                session_id=prepared.session_id,
            ),
            label="log_chat_event",
        )

    def _submit(self, job: Callable[[], object], label: str) -> None:
        if self.worker is None or self.session_store is None:
            return
        self.worker.submit(job, label=label)
