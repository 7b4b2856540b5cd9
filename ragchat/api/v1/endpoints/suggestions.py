from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ragchat.api.deps import get_suggestion_service
from ragchat.schemas.chat_schema import SuggestionsResponse
from ragchat.services.suggestion_service import SuggestionService

router = APIRouter()


@router.get("/suggestions", response_model=SuggestionsResponse, summary="根据知识库生成示例问题")
async def get_suggestions(
    count: int = Query(5, ge=1, le=10, description="返回问题数"),
    service: SuggestionService = Depends(get_suggestion_service),
) -> SuggestionsResponse:
    """生成失败时返回固定的种子问题（fallback=true），接口本身不报错"""
    return await service.suggest(count)
