# 路由汇总
from fastapi import APIRouter

from ragchat.api.v1.endpoints import analyze, chat, sessions, suggestions

api_router = APIRouter()

# 对话主接口 (访问地址: /api/v1/chat)
api_router.include_router(chat.router, prefix="/chat", tags=["RAG对话模块"])

# 示例问题 / 相似度分析 (访问地址: /api/v1/chat/suggestions, /api/v1/chat/analyze)
api_router.include_router(suggestions.router, prefix="/chat", tags=["RAG对话模块"])
api_router.include_router(analyze.router, prefix="/chat", tags=["RAG对话模块"])

# 会话查询 (访问地址: /api/v1/sessions/...)
api_router.include_router(sessions.router, prefix="/sessions", tags=["会话模块"])
