"""
内存存储实现（单进程；默认部署与测试使用）
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

from interview_engine.core.errors import (
    DocumentAccessError,
    DocumentNotFoundError,
    SessionConflictError,
    SessionNotFoundError,
)
from interview_engine.core.types import Document, DocumentKind, Fragment, Session
from interview_engine.storage.repository import Repository
from interview_engine.utils.vector_codec import decode_vector, encode_vector
from interview_engine.logs import setup_logger

logger = setup_logger(__name__)


class InMemoryRepository(Repository):
    """基于字典的存储；所有写操作在同一把锁内完成"""

    def __init__(self):
        self._documents: Dict[str, Document] = {}
        # 片段以编码后的形式保存，读取时解码校验，与数据库实现保持一致
        self._fragments: Dict[str, List[Tuple[int, str, List[float]]]] = {}
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def _load_fragments(self, document_id: str) -> List[Fragment]:
        rows = sorted(self._fragments.get(document_id, []), key=lambda r: r[0])
        return [
            Fragment(
                document_id=document_id,
                position=position,
                text=text,
                embedding=decode_vector(raw),
            )
            for position, text, raw in rows
        ]

    def _with_fragments(self, document: Document) -> Document:
        return document.model_copy(update={"fragments": tuple(self._load_fragments(document.id))})

    # ---------------- 文档 ----------------

    async def save_document(self, document: Document) -> Document:
        async with self._lock:
            self._documents[document.id] = document.model_copy(update={"fragments": ()})
            self._fragments[document.id] = [
                (f.position, f.text, encode_vector(f.embedding)) for f in document.fragments
            ]
            return self._with_fragments(self._documents[document.id])

    async def get_document(self, document_id: str) -> Optional[Document]:
        document = self._documents.get(document_id)
        if document is None:
            return None
        return self._with_fragments(document)

    async def list_documents(self, owner_id: str) -> List[Document]:
        # 逆插入顺序 + 稳定排序：时间戳相同时后写入的在前
        owned = [d for d in reversed(list(self._documents.values())) if d.owner_id == owner_id]
        owned.sort(key=lambda d: d.created_at, reverse=True)
        return [self._with_fragments(d) for d in owned]

    async def latest_document(self, owner_id: str, kind: DocumentKind) -> Optional[Document]:
        for document in await self.list_documents(owner_id):
            if document.kind == kind:
                return document
        return None

    async def delete_document(self, owner_id: str, document_id: str) -> None:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                raise DocumentNotFoundError(f"文档不存在: {document_id}", stage="delete_document")
            if document.owner_id != owner_id:
                raise DocumentAccessError(f"无权删除文档: {document_id}", stage="delete_document")
            del self._documents[document_id]
            self._fragments.pop(document_id, None)

    # ---------------- 片段 ----------------

    async def get_fragments(self, document_id: str) -> List[Fragment]:
        return self._load_fragments(document_id)

    async def add_fragments(self, document_id: str, fragments: Sequence[Fragment]) -> None:
        async with self._lock:
            if document_id not in self._documents:
                raise DocumentNotFoundError(f"文档不存在: {document_id}", stage="add_fragments")
            rows = self._fragments.setdefault(document_id, [])
            rows.extend((f.position, f.text, encode_vector(f.embedding)) for f in fragments)

    async def remove_fragments(self, document_id: str) -> int:
        async with self._lock:
            return len(self._fragments.pop(document_id, []))

    # ---------------- 会话 ----------------

    async def create_session(self, session: Session) -> Session:
        async with self._lock:
            self._sessions[session.id] = session
            return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def commit_session(self, session: Session, expected_version: int) -> Session:
        async with self._lock:
            stored = self._sessions.get(session.id)
            if stored is None:
                raise SessionNotFoundError(f"会话不存在: {session.id}", session_id=session.id, stage="commit")
            if stored.version != expected_version:
                raise SessionConflictError(
                    f"会话版本冲突: 期望 {expected_version}，实际 {stored.version}",
                    session_id=session.id,
                    stage="commit"
                )
            if session.turns[:len(stored.turns)] != stored.turns:
                raise ValueError("会话turn只能追加，不能修改已有turn")

            committed = session.model_copy(update={"version": expected_version + 1})
            self._sessions[session.id] = committed
            return committed
