# 依赖注入（DB 会话、服务单例、来源校验、限流）
from functools import lru_cache

from fastapi import Depends, HTTPException, Request
from loguru import logger

from ragchat.core.config import PipelineConfig, Settings, settings
from ragchat.core.database import SessionLocal
from ragchat.core.redis_client import redis_client
from ragchat.rag.clients import LLMClient, VectorDBClient
from ragchat.rag.pipeline import RetrievalPipeline
from ragchat.rag.rerank import CrossEncoderReranker
from ragchat.rag.store_gateway import CandidateStoreGateway
from ragchat.rag.streaming import AnswerStreamCoordinator
from ragchat.services.analysis_service import SimilarityAnalysisService
from ragchat.services.chat_service import ChatService
from ragchat.services.embedding_service import EmbeddingService
from ragchat.services.rate_limiter import RateLimiter
from ragchat.services.session_service import SessionLogWorker, SessionStore
from ragchat.services.suggestion_service import SuggestionService

# 全局落库队列，随应用启动/关闭
session_worker = SessionLogWorker()


def get_settings() -> Settings:
    return settings


@lru_cache(maxsize=1)
def get_pipeline_config() -> PipelineConfig:
    return PipelineConfig.from_settings(settings)


@lru_cache(maxsize=1)
def get_vector_client() -> VectorDBClient:
    return VectorDBClient(collection_name=settings.MILVUS_COLLECTION)


@lru_cache(maxsize=1)
def get_llm_client() -> LLMClient:
    return LLMClient()


@lru_cache(maxsize=1)
def get_embedding_service() -> EmbeddingService:
    return EmbeddingService()


@lru_cache(maxsize=1)
def get_reranker() -> CrossEncoderReranker:
    return CrossEncoderReranker(settings.RERANK_ENDPOINT, model_name=settings.RERANK_MODEL_NAME)


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    return SessionStore(SessionLocal)


@lru_cache(maxsize=1)
def get_chat_service() -> ChatService:
    config = get_pipeline_config()
    llm = get_llm_client()
    pipeline = RetrievalPipeline(
        embedder=get_embedding_service(),
        generator=llm,
        store=get_vector_client(),
        config=config,
        reranker=get_reranker(),
    )
    return ChatService(
        pipeline=pipeline,
        coordinator=AnswerStreamCoordinator(llm, config),
        config=config,
        session_store=get_session_store(),
        worker=session_worker,
    )


@lru_cache(maxsize=1)
def get_suggestion_service() -> SuggestionService:
    return SuggestionService(get_vector_client(), get_llm_client())


@lru_cache(maxsize=1)
def get_analysis_service() -> SimilarityAnalysisService:
    gateway = CandidateStoreGateway(get_vector_client(), collection=settings.MILVUS_COLLECTION)
    return SimilarityAnalysisService(get_embedding_service(), gateway)


def get_rate_limiter() -> RateLimiter:
    return RateLimiter(
        redis_client,
        limit=settings.RATE_LIMIT_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        enabled=settings.RATE_LIMIT_ENABLED,
    )


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def verify_origin(request: Request, app_settings: Settings = Depends(get_settings)) -> None:
    """白名单为空时不校验；请求不带 Origin（非浏览器调用）时放行"""
    allowed = app_settings.allowed_origins
    origin = request.headers.get("origin")
    if not allowed or not origin:
        return
    if origin.rstrip("/") not in [o.rstrip("/") for o in allowed]:
        logger.warning(f"拒绝来源: {origin}")
        raise HTTPException(status_code=403, detail="Origin not allowed")


async def enforce_rate_limit(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
    decision = await limiter.hit(client_ip(request))
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(decision.retry_after)},
        )
