"""
查询扩展

- CRAG 开启时先把用户问题改写/翻译为检索查询（失败回退原问题，不抛异常）
- HyDE 开启时生成一段假设答案，与原始查询一起向量化检索（失败退化为单通道）
- 通道顺序固定：HyDE 在前，原始查询在后
"""

import asyncio
from typing import List, Optional, Protocol, Tuple

from loguru import logger

from ragchat.core.errors import ExpansionError, GenerationError, RetrievalError
from ragchat.rag.models.retrieval import ExpandedQuery, ExpansionFlags
from ragchat.rag.prompt import build_hyde_prompt, build_rewrite_prompt

HYDE_CHANNEL = "hyde"
LITERAL_CHANNEL = "literal"


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


class TextGenerator(Protocol):
    async def generate_text(
        self,
        prompt: Optional[str] = None,
        messages=None,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        ...


def clean_single_line(text: Optional[str]) -> str:
    """取第一行非空内容并去掉包裹的引号"""
    for line in (text or "").splitlines():
        line = line.strip().strip("\"'“”‘’`").strip()
        if line:
            return line
    return ""


class QueryExpander:
    def __init__(self, embedder: Embedder, generator: TextGenerator):
        self.embedder = embedder
        self.generator = generator

    async def _generate(self, prompt: str, max_tokens: int) -> str:
        try:
            text = await self.generator.generate_text(prompt=prompt, max_tokens=max_tokens, temperature=0.0)
        except GenerationError as e:
            raise ExpansionError(str(e)) from e
        if not text or not text.strip():
            raise ExpansionError("empty generation")
        return text.strip()

    async def rewrite_query(self, query: str) -> str:
        try:
            rewritten = clean_single_line(await self._generate(build_rewrite_prompt(query), max_tokens=128))
        except ExpansionError as e:
            logger.warning(f"[QueryExpander] 查询改写失败，使用原问题: {e}")
            return query
        if not rewritten:
            return query
        logger.info(f"[QueryExpander] 查询改写: '{query[:50]}' -> '{rewritten[:50]}'")
        return rewritten

    async def hypothetical_document(self, query: str) -> Optional[str]:
        try:
            passage = await self._generate(build_hyde_prompt(query), max_tokens=300)
        except ExpansionError as e:
            logger.warning(f"[QueryExpander] HyDE 生成失败，退化为单通道检索: {e}")
            return None
        logger.info(f"[QueryExpander] HyDE 假设文档生成完成: length={len(passage)}")
        return passage

    async def embed_channels(self, channels: List[Tuple[str, str]]) -> List[Tuple[str, List[float]]]:
        """
        并发向量化各通道文本，保持输入顺序

        单个通道失败时丢弃该通道；全部失败时抛出 RetrievalError。
        """
        results = await asyncio.gather(
            *(self.embedder.embed(text) for _, text in channels), return_exceptions=True
        )
        vectors: List[Tuple[str, List[float]]] = []
        errors = []
        for (name, _), result in zip(channels, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"[QueryExpander] 通道 {name} 向量化失败: {result}")
                errors.append(result)
                continue
            vectors.append((name, result))

        if not vectors:
            raise RetrievalError(f"All embedding channels failed: {errors[0] if errors else 'no channels'}")
        return vectors

    async def expand(self, query: str, flags: ExpansionFlags) -> ExpandedQuery:
        retrieval_query = query
        if flags.crag_enabled:
            retrieval_query = await self.rewrite_query(query)

        hypothetical = None
        if flags.hyde_enabled:
            hypothetical = await self.hypothetical_document(retrieval_query)

        channels: List[Tuple[str, str]] = []
        if hypothetical:
            channels.append((HYDE_CHANNEL, hypothetical))
        channels.append((LITERAL_CHANNEL, retrieval_query))

        vectors = await self.embed_channels(channels)
        return ExpandedQuery(
            display_query=query,
            retrieval_query=retrieval_query,
            vectors=vectors,
            hypothetical_document=hypothetical,
        )
