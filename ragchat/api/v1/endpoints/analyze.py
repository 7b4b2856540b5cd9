from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from ragchat.api.deps import get_analysis_service
from ragchat.schemas.chat_schema import AnalyzeRequest, AnalyzeResponse
from ragchat.services.analysis_service import SimilarityAnalysisService

router = APIRouter()


@router.post("/analyze", response_model=AnalyzeResponse, response_model_by_alias=True, summary="相似度分布分析")
async def analyze(
    req: AnalyzeRequest,
    service: SimilarityAnalysisService = Depends(get_analysis_service),
) -> AnalyzeResponse:
    if not req.query.strip():
        raise HTTPException(status_code=400, detail="query 不能为空")
    try:
        return await service.analyze(req.query, req.limit)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(f"相似度分析失败: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
