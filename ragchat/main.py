# 【入口】整个程序的启动点
import sys

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ragchat import __version__
from ragchat.api.deps import get_session_store, get_vector_client, session_worker
from ragchat.api.v1.endpoints import health
from ragchat.api.v1.router import api_router
from ragchat.core.config import settings
from ragchat.core.errors import PersistenceError
from ragchat.core.redis_client import redis_client


# ========================================
# Loguru 日志配置
# ========================================
def setup_logger():
    """配置 loguru 日志系统"""
    # 移除默认的 handler
    logger.remove()

    # 添加控制台输出（彩色）
    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.LOG_LEVEL,
        colorize=True,
    )

    # 如果配置了日志文件，添加文件输出
    if settings.LOG_FILE:
        logger.add(
            settings.LOG_FILE,
            rotation="100 MB",  # 日志文件达到 100MB 时轮转
            retention="10 days",  # 保留最近 10 天的日志
            compression="zip",  # 压缩旧日志
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level=settings.LOG_LEVEL,
        )

    logger.info("Loguru 日志系统初始化完成")


# 初始化日志
setup_logger()


# ========================================
# FastAPI 应用配置
# ========================================
app = FastAPI(
    title="RAG Chat - 检索增强对话",
    description="HyDE / CRAG 查询扩展 + 动态阈值过滤 + 流式回答与来源归因",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# 配置了白名单时才挂 CORS；未配置时不限制来源
if settings.allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

# 注册所有路由，统一加前缀 /api/v1
app.include_router(api_router, prefix="/api/v1")
app.include_router(health.router, tags=["健康检查"])


@app.on_event("startup")
async def startup_event():
    """应用启动事件"""
    logger.info("=" * 60)
    logger.info("RAG 对话服务正在启动...")
    logger.info(f"调试模式: {settings.DEBUG}")
    logger.info(f"日志级别: {settings.LOG_LEVEL}")
    logger.info("=" * 60)

    await redis_client.connect()

    # 会话表不存在时自动创建；数据库不可用不阻止启动
    try:
        await run_in_threadpool(get_session_store().create_tables)
    except PersistenceError as e:
        logger.error(f"会话表初始化失败，会话落库将不可用: {e}")

    session_worker.start()


@app.on_event("shutdown")
async def shutdown_event():
    """应用关闭事件"""
    logger.info("RAG 对话服务正在关闭...")
    await session_worker.stop()
    await redis_client.close()
    get_vector_client().close()


@app.get("/")
def health_check():
    """存活检查端点"""
    return {
        "status": "ok",
        "message": "RAG Chat Service is running!",
        "version": __version__,
    }
