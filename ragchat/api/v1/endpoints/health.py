"""
健康检查

依次检查会话数据库与 Milvus，任何一项失败整体标记为 degraded（HTTP 503）。
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ragchat import __version__
from ragchat.api.deps import get_session_store, get_vector_client
from ragchat.rag.clients import VectorDBClient
from ragchat.services.session_service import SessionStore

router = APIRouter()


@router.get("/health", summary="服务健康状态")
async def health(
    store: SessionStore = Depends(get_session_store),
    vector_client: VectorDBClient = Depends(get_vector_client),
) -> JSONResponse:
    started = time.time()
    services = {}

    t0 = time.time()
    db_ok = await run_in_threadpool(store.ping)
    services["database"] = {"status": "up" if db_ok else "down", "responseTimeMs": round((time.time() - t0) * 1000, 2)}

    t0 = time.time()
    milvus_ok = await vector_client.ping()
    services["milvus"] = {"status": "up" if milvus_ok else "down", "responseTimeMs": round((time.time() - t0) * 1000, 2)}

    healthy = db_ok and milvus_ok
    body = {
        "status": "healthy" if healthy else "degraded",
        "version": __version__,
        "services": services,
        "responseTimeMs": round((time.time() - started) * 1000, 2),
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)
