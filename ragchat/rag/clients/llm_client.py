"""
文本生成客户端

封装 OpenAI 兼容的 Chat Completions 接口（一次性生成 + 流式生成）
"""

from typing import AsyncIterator, Dict, List, Optional

from loguru import logger
from openai import AsyncOpenAI

from ragchat.core.config import settings
from ragchat.core.errors import GenerationError

Message = Dict[str, str]


class LLMClient:
    """
    文本生成服务

    generate_text 用于查询改写、HyDE、CRAG 判定、摘要等辅助步骤；
    stream_text 用于最终回答的流式输出。
    """

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None:
            client_params = {"api_key": settings.OPENAI_API_KEY or "missing"}
            # 如果配置了自定义 API 端点
            if settings.OPENAI_API_BASE:
                client_params["base_url"] = settings.OPENAI_API_BASE
                logger.info(f"使用自定义 OpenAI API 端点: {settings.OPENAI_API_BASE}")
            client = AsyncOpenAI(**client_params)

        self.client = client
        self.model = model or settings.LLM_MODEL
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        logger.info(f"LLM 服务初始化完成，使用模型: {self.model}")

    @staticmethod
    def _build_messages(
        prompt: Optional[str], messages: Optional[List[Message]], system: Optional[str]
    ) -> List[Message]:
        built: List[Message] = []
        if system:
            built.append({"role": "system", "content": system})
        if messages:
            built.extend({"role": m["role"], "content": m["content"]} for m in messages)
        if prompt:
            built.append({"role": "user", "content": prompt})
        if len(built) == (1 if system else 0):
            raise ValueError("prompt 与 messages 至少提供一个")
        return built

    async def generate_text(
        self,
        prompt: Optional[str] = None,
        messages: Optional[List[Message]] = None,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        一次性生成文本

        Args:
            prompt: 单条用户提示词
            messages: 消息列表（与 prompt 二选一或同时提供）
            system: 系统提示词
            max_tokens: 最大输出 token 数

        Returns:
            生成的文本（已去除首尾空白）
        """
        payload = self._build_messages(prompt, messages, system)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=payload,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens,
            )
            text = response.choices[0].message.content or ""
            logger.debug(f"文本生成完成: length={len(text)}")
            return text.strip()
        except Exception as e:
            logger.error(f"文本生成失败: {e}")
            raise GenerationError(f"Text generation failed: {e}") from e

    async def stream_text(
        self,
        messages: List[Message],
        system: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        流式生成文本

        调用方提前结束迭代时（客户端断开），finally 中会关闭底层 HTTP 流。
        """
        payload = self._build_messages(None, messages, system)
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=payload,
                temperature=self.temperature,
                stream=True,
            )
        except Exception as e:
            logger.error(f"流式生成请求失败: {e}")
            raise GenerationError(f"Streaming generation failed: {e}") from e

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except Exception as e:
            logger.error(f"流式生成中断: {e}")
            raise GenerationError(f"Streaming generation interrupted: {e}") from e
        finally:
            await stream.close()
