"""
会话存储

- 消息落库（用户问题 / 助手回答 + 来源）
- 对话审计日志
- 后台队列：落库尽力而为，失败只记日志，不影响已经发出的回答
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ragchat.core.database import Base, SessionLocal
from ragchat.core.errors import PersistenceError
from ragchat.models.chat import ChatLog, ChatMessage
from ragchat.schemas.chat_schema import SessionSummary, StoredMessage

CONTEXT_PREVIEW_CHARS = 1000
RESPONSE_PREVIEW_CHARS = 2000


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SessionStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self.session_factory = session_factory

    def create_tables(self) -> None:
        db = self.session_factory()
        try:
            Base.metadata.create_all(bind=db.get_bind(), tables=[ChatMessage.__table__, ChatLog.__table__])
        except SQLAlchemyError as e:
            raise PersistenceError(f"Create tables failed: {e}") from e
        finally:
            db.close()

    def ping(self) -> bool:
        db = self.session_factory()
        try:
            db.execute(select(1))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"数据库健康检查失败: {e}")
            return False
        finally:
            db.close()

    def persist_message(
        self, session_id: str, role: str, content: str, sources: Optional[List[Dict[str, Any]]] = None
    ) -> int:
        db = self.session_factory()
        try:
            row = ChatMessage(session_id=session_id, role=role, content=content, sources=sources or [])
            db.add(row)
            db.commit()
            db.refresh(row)
            return int(row.id)
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Persist message failed: {e}") from e
        finally:
            db.close()

    def list_messages(self, session_id: str, limit: int = 100) -> List[StoredMessage]:
        """按时间正序返回会话消息"""
        db = self.session_factory()
        try:
            rows = (
                db.execute(
                    select(ChatMessage)
                    .where(ChatMessage.session_id == session_id)
                    .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
                    .limit(limit)
                )
                .scalars()
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"List messages failed: {e}") from e
        finally:
            db.close()

        return [
            StoredMessage(
                id=r.id,
                session_id=r.session_id,
                role=r.role,
                content=r.content,
                sources=r.sources or [],
                created_at=_iso(r.created_at),
            )
            for r in rows
        ]

    def list_sessions(self, limit: int = 50) -> List[SessionSummary]:
        """按最近活跃时间倒序列出会话"""
        db = self.session_factory()
        try:
            stmt = (
                select(
                    ChatMessage.session_id,
                    func.count(ChatMessage.id),
                    func.max(ChatMessage.created_at),
                    func.max(ChatMessage.id),
                )
                .group_by(ChatMessage.session_id)
                .order_by(func.max(ChatMessage.id).desc())
                .limit(limit)
            )
            groups = db.execute(stmt).all()

            summaries = []
            for session_id, count, updated_at, last_id in groups:
                last = db.get(ChatMessage, last_id)
                summaries.append(
                    SessionSummary(
                        session_id=session_id,
                        message_count=int(count),
                        last_message=(last.content if last else "")[:200],
                        updated_at=_iso(updated_at),
                    )
                )
            return summaries
        except SQLAlchemyError as e:
            raise PersistenceError(f"List sessions failed: {e}") from e
        finally:
            db.close()

    def log_chat_event(
        self,
        user_message: str,
        model: Optional[str],
        context: str,
        response: str,
        meta: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> None:
        db = self.session_factory()
        try:
            db.add(
                ChatLog(
                    session_id=session_id,
                    user_message=user_message,
                    model=model,
                    used_context=bool(context),
                    context_preview=context[:CONTEXT_PREVIEW_CHARS] if context else None,
                    response_preview=response[:RESPONSE_PREVIEW_CHARS],
                    meta=meta or {},
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Log chat event failed: {e}") from e
        finally:
            db.close()


Job = Callable[[], Any]


class SessionLogWorker:
    """
    落库后台队列

    请求处理只负责 submit；同步的数据库写入在线程中执行，
    单个任务失败记录日志后继续处理后续任务。
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("会话落库队列已启动")

    async def stop(self) -> None:
        """处理完已排队的任务后停止"""
        if not self.running:
            return
        await self._queue.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("会话落库队列已停止")

    def submit(self, job: Job, label: str = "job") -> bool:
        """提交落库任务；队列满或未启动时丢弃并返回 False，不抛异常"""
        if not self.running:
            logger.warning(f"落库队列未启动，丢弃任务: {label}")
            return False
        try:
            self._queue.put_nowait((label, job))
            return True
        except asyncio.QueueFull:
            logger.warning(f"落库队列已满，丢弃任务: {label}")
            return False

    async def drain(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            label, job = await self._queue.get()
            try:
                await asyncio.to_thread(job)
            except PersistenceError as e:
                logger.error(f"落库任务失败 [{label}]: {e}")
            except Exception as e:
                logger.exception(f"落库任务异常 [{label}]: {e}")
            finally:
                self._queue.task_done()
