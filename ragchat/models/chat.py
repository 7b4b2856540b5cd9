from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from ragchat.core.database import Base


class ChatMessage(Base):
    """会话消息表（用户问题与助手回答各一行）。"""

    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(128), nullable=False, index=True, comment="会话ID")
    role = Column(String(16), nullable=False, comment="user / assistant")
    content = Column(Text, nullable=False)
    sources = Column(JSON, nullable=True, comment="助手回答对应的来源归因")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)


class ChatLog(Base):
    """单次对话请求的审计日志。"""

    __tablename__ = "chat_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(128), nullable=True, index=True)
    user_message = Column(Text, nullable=False)
    model = Column(String(128), nullable=True)
    used_context = Column(Boolean, nullable=False, default=False)
    context_preview = Column(Text, nullable=True, comment="上下文前 1000 字符")
    response_preview = Column(Text, nullable=True, comment="回答前 2000 字符")
    meta = Column(JSON, nullable=True, comment="topK / 阈值 / 开关等请求参数")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
