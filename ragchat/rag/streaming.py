"""
回答流协调

构造最终 prompt，驱动流式生成，把输出转成内部事件序列，再由两种序列化器之一写到线上：
- NDJSON：每行一个带 type 的 JSON 对象（delta / sources / error）
- 兼容模式：纯文本片段 + 末尾一个来源块
"""

import json
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol

from loguru import logger

from ragchat.core.config import PipelineConfig
from ragchat.core.errors import GenerationError
from ragchat.rag.models.events import AnswerStreamEvent, Delta, SourcesFinal, StreamError
from ragchat.rag.models.retrieval import RetrievalOutcome
from ragchat.rag.prompt import (
    build_conversation_prompt,
    build_rag_prompt,
    build_summary_prompt,
    resolve_system_prompt,
)
from ragchat.schemas.chat_schema import ConversationTurn

MODE_CONVERSATION = "conversation"
MODE_RAG = "rag"
MODE_PLAIN = "plain"

SOURCES_HEADER = "\n\n---\n**Sources Used:**\n"


class StreamingGenerator(Protocol):
    async def generate_text(self, prompt=None, messages=None, system=None, max_tokens=None, temperature=None) -> str:
        ...

    def stream_text(self, messages: List[Dict[str, str]], system: Optional[str] = None) -> AsyncIterator[str]:
        ...


@dataclass
class PromptPlan:
    system: str
    messages: List[Dict[str, str]]
    mode: str
    summary: Optional[str] = None
    history_turns: int = 0
    user_message: str = ""


@dataclass
class StreamResult:
    """流结束后的汇总（用于落库）"""

    answer: str = ""
    completed: bool = False
    sources: List[Dict] = field(default_factory=list)


class AnswerStreamCoordinator:
    def __init__(self, generator: StreamingGenerator, config: Optional[PipelineConfig] = None):
        self.generator = generator
        self.config = config or PipelineConfig()

    async def summarize_history(self, history: List[ConversationTurn]) -> Optional[str]:
        """历史摘要，尽力而为：失败返回 None"""
        try:
            summary = await self.generator.generate_text(
                prompt=build_summary_prompt(history), max_tokens=300, temperature=0.0
            )
        except GenerationError as e:
            logger.warning(f"[AnswerStream] 历史摘要失败，使用逐轮历史: {e}")
            return None
        return summary.strip() or None

    async def build_prompt(
        self,
        turns: List[ConversationTurn],
        outcome: RetrievalOutcome,
        use_system_prompt: bool = True,
        custom_system_prompt: Optional[str] = None,
    ) -> PromptPlan:
        if not turns:
            raise ValueError("turns 不能为空")

        user_message = turns[-1].content
        window = list(turns[:-1])[-self.config.history_window :] if self.config.history_window > 0 else []
        system = resolve_system_prompt(use_system_prompt, custom_system_prompt)

        if outcome.has_context and window:
            summary = None
            if len(window) >= self.config.summary_min_turns:
                summary = await self.summarize_history(window)
            prompt = build_conversation_prompt(
                outcome.context, user_message, window, summary=summary, use_system_prompt=use_system_prompt
            )
            plan = PromptPlan(
                system=system,
                messages=[{"role": "user", "content": prompt}],
                mode=MODE_CONVERSATION,
                summary=summary,
                history_turns=len(window),
            )
        elif outcome.has_context:
            plan = PromptPlan(
                system=system,
                messages=[{"role": "user", "content": build_rag_prompt(outcome.context, user_message)}],
                mode=MODE_RAG,
            )
        else:
            messages = [{"role": t.role, "content": t.content} for t in window]
            messages.append({"role": "user", "content": user_message})
            plan = PromptPlan(system=system, messages=messages, mode=MODE_PLAIN, history_turns=len(window))

        plan.user_message = user_message
        logger.info(f"[AnswerStream] prompt 模式={plan.mode}, history={plan.history_turns}, summary={bool(plan.summary)}")
        return plan

    @staticmethod
    def sources_event(outcome: RetrievalOutcome) -> SourcesFinal:
        return SourcesFinal(
            sources=outcome.sources(),
            top_k_used=outcome.top_k,
            threshold_used=outcome.threshold_used,
            flags=outcome.flags.to_dict(),
            debug=outcome.debug_info(),
        )

    async def stream(
        self,
        plan: PromptPlan,
        outcome: RetrievalOutcome,
        should_stop: Optional[Callable[[], Awaitable[bool]]] = None,
        on_finish: Optional[Callable[[StreamResult], None]] = None,
    ) -> AsyncIterator[AnswerStreamEvent]:
        """
        驱动生成并产出事件

        - 正常结束：若干 Delta + 一个 SourcesFinal
        - 生成失败：若干 Delta + 一个 StreamError，不发送 SourcesFinal
        - 客户端断开（should_stop 为真或迭代被关闭）：停止转发，不发送 SourcesFinal
        """
        chunks: List[str] = []
        text_stream = self.generator.stream_text(plan.messages, system=plan.system)
        try:
            async for text in text_stream:
                if should_stop is not None and await should_stop():
                    logger.info("[AnswerStream] 客户端已断开，停止转发")
                    return
                chunks.append(text)
                yield Delta(text)
        except GenerationError as e:
            logger.error(f"[AnswerStream] 回答生成失败: {e}")
            yield StreamError(str(e))
            return
        finally:
            await text_stream.aclose()

        final = self.sources_event(outcome)
        if on_finish is not None:
            on_finish(StreamResult(answer="".join(chunks), completed=True, sources=final.sources))
        yield final


async def serialize_ndjson(events: AsyncIterator[AnswerStreamEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield json.dumps(event.to_dict(), ensure_ascii=False) + "\n"


def format_sources_block(event: SourcesFinal) -> str:
    lines = [
        f"{i + 1}. {s['source']} (similarity: {float(s['rawScore']):.3f})"
        for i, s in enumerate(event.sources)
    ]
    payload = json.dumps(event.to_dict(), ensure_ascii=False)
    return SOURCES_HEADER + "\n".join(lines) + f"\n<!--sources:{payload}-->"


async def serialize_compat(events: AsyncIterator[AnswerStreamEvent]) -> AsyncIterator[str]:
    async for event in events:
        if isinstance(event, Delta):
            yield event.text
        elif isinstance(event, SourcesFinal):
            # 只有检索到来源时才追加来源块
            if event.sources:
                yield format_sources_block(event)
        elif isinstance(event, StreamError):
            yield f"\n\n[ERROR] {event.message}"
