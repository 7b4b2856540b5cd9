"""
会话查询 API 端点

存储不可用时返回空列表，不影响前端展示。
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from loguru import logger

from ragchat.api.deps import get_session_store
from ragchat.core.errors import PersistenceError
from ragchat.schemas.chat_schema import SessionSummary, StoredMessage
from ragchat.schemas.common_schema import ApiResponse
from ragchat.services.session_service import SessionStore

router = APIRouter()


@router.get("", response_model=ApiResponse[List[SessionSummary]], summary="会话列表")
async def list_sessions(
    limit: int = Query(50, ge=1, le=200),
    store: SessionStore = Depends(get_session_store),
) -> ApiResponse[List[SessionSummary]]:
    try:
        sessions = await run_in_threadpool(store.list_sessions, limit)
    except PersistenceError as exc:
        logger.error(f"读取会话列表失败: {exc}")
        sessions = []
    return ApiResponse(data=sessions)


@router.get(
    "/{session_id}/messages",
    response_model=ApiResponse[List[StoredMessage]],
    summary="会话消息",
)
async def list_messages(
    session_id: str,
    limit: int = Query(100, ge=1, le=500),
    store: SessionStore = Depends(get_session_store),
) -> ApiResponse[List[StoredMessage]]:
    try:
        messages = await run_in_threadpool(store.list_messages, session_id, limit)
    except PersistenceError as exc:
        logger.error(f"读取会话消息失败: session_id={session_id}, err={exc}")
        messages = []
    return ApiResponse(data=messages)
