"""
RAG 对话 API 端点

- POST /api/v1/chat：检索 + 流式回答
  structuredStreamEnabled=true 时返回 NDJSON 事件流，否则返回纯文本 + 末尾来源块
- GET  /api/v1/chat：用法提示
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from loguru import logger
from pydantic import ValidationError

from ragchat.api.deps import enforce_rate_limit, get_chat_service, get_settings, verify_origin
from ragchat.core.config import Settings
from ragchat.core.errors import ConfigurationError
from ragchat.schemas.chat_schema import ChatRequest
from ragchat.services.chat_service import ChatService

router = APIRouter()

USAGE_HINT = (
    "RAG chat endpoint. POST a JSON body like "
    '{"messages":[{"role":"user","content":"..."}],"topK":5,"similarityThreshold":0.7,'
    '"flags":{"structuredStreamEnabled":true}} to stream an answer.'
)


async def read_chat_request(request: Request) -> ChatRequest:
    """
    解析请求体

    请求体不是 JSON、缺少 messages 或字段不合法时返回 400
    """
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON") from exc
    if not isinstance(body, dict) or not isinstance(body.get("messages"), list):
        raise HTTPException(status_code=400, detail="messages must be a non-empty list")
    try:
        return ChatRequest.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post(
    "",
    summary="RAG 对话（流式）",
    dependencies=[Depends(verify_origin), Depends(enforce_rate_limit)],
)
async def chat(
    request: Request,
    req: ChatRequest = Depends(read_chat_request),
    service: ChatService = Depends(get_chat_service),
    app_settings: Settings = Depends(get_settings),
):
    try:
        service.validate(req)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        app_settings.require_credentials()
    except ConfigurationError as exc:
        logger.error(f"配置缺失: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    # 检索在开始写响应之前完成，失败可以返回正常的 HTTP 错误码
    try:
        prepared = await service.prepare(req)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception(f"对话准备失败: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return StreamingResponse(
        service.stream(prepared, should_stop=request.is_disconnected),
        media_type=prepared.media_type,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("", response_class=PlainTextResponse, summary="对话接口用法提示")
async def chat_hint() -> str:
    return USAGE_HINT
