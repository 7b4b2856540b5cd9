"""
示例问题生成

从知识库采样若干片段，让模型生成用户可能会问的问题；
任何失败或结果为空时返回固定的种子问题。
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Protocol

from loguru import logger

from ragchat.core.errors import GenerationError, RetrievalError
from ragchat.rag.expansion import TextGenerator
from ragchat.rag.models.candidate import Payload
from ragchat.rag.prompt import build_suggestions_prompt
from ragchat.schemas.chat_schema import SuggestionsResponse

SAMPLE_SIZE = 30
PROMPT_SNIPPETS = 15
SNIPPET_CHARS = 300
MIN_QUESTION_CHARS = 6

SEED_QUESTIONS = [
    "What topics does this knowledge base cover?",
    "Can you summarize the key points of the main document?",
    "What are the most important definitions I should know?",
    "Which procedures or steps are described in the documents?",
    "Are there any limitations or caveats mentioned?",
    "Where can I find more details about a specific section?",
    "What recent updates are documented?",
    "How do the documented components relate to each other?",
    "What are common questions about this topic?",
    "Which sources discuss best practices?",
]

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})


class PayloadSampler(Protocol):
    async def sample_payloads(self, limit: int = 30) -> List[Dict[str, Any]]:
        ...


def parse_questions(raw: Optional[str], count: int) -> List[str]:
    """
    宽松解析模型输出的 JSON 数组

    去掉代码块标记、中文引号和尾逗号，截取第一个 [...]；
    只保留长度 >= 6 的字符串，最多 count 条。
    """
    text = _FENCE_RE.sub("", raw or "").translate(_SMART_QUOTES).strip()
    match = _ARRAY_RE.search(text)
    if not match:
        return []
    body = _TRAILING_COMMA_RE.sub(r"\1", match.group(0))
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, list):
        return []

    questions = []
    for item in data:
        if not isinstance(item, str):
            continue
        item = item.strip()
        if len(item) >= MIN_QUESTION_CHARS:
            questions.append(item)
    return questions[:count]


def seed_questions(count: int) -> List[str]:
    return SEED_QUESTIONS[:count]


class SuggestionService:
    def __init__(self, sampler: PayloadSampler, generator: TextGenerator):
        self.sampler = sampler
        self.generator = generator

    async def sample_snippets(self) -> List[str]:
        payloads = await self.sampler.sample_payloads(limit=SAMPLE_SIZE)
        snippets = []
        for raw in payloads:
            text = " ".join(Payload.from_raw(raw).text.split())
            if text:
                snippets.append(text[:SNIPPET_CHARS])
        return snippets

    async def suggest(self, count: int = 5) -> SuggestionsResponse:
        count = max(1, min(count, 10))
        try:
            snippets = await self.sample_snippets()
            if not snippets:
                logger.info("[Suggestions] 知识库为空，返回种子问题")
                return SuggestionsResponse(questions=seed_questions(count), fallback=True)
            raw = await self.generator.generate_text(
                prompt=build_suggestions_prompt(snippets[:PROMPT_SNIPPETS], count), max_tokens=400, temperature=0.7
            )
        except (RetrievalError, GenerationError) as e:
            logger.warning(f"[Suggestions] 生成示例问题失败，返回种子问题: {e}")
            return SuggestionsResponse(questions=seed_questions(count), fallback=True)

        questions = parse_questions(raw, count)
        if not questions:
            logger.warning("[Suggestions] 模型输出无法解析，返回种子问题")
            return SuggestionsResponse(questions=seed_questions(count), fallback=True)
        logger.info(f"[Suggestions] 生成示例问题 {len(questions)} 条")
        return SuggestionsResponse(questions=questions, fallback=False)
