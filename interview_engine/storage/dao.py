"""
documents/fragments/sessions/turns 的PostgreSQL实现
"""
from typing import Any, Dict, List, Optional, Sequence

from interview_engine.core.errors import (
    DocumentAccessError,
    DocumentNotFoundError,
    SessionConflictError,
    SessionNotFoundError,
)
from interview_engine.core.types import (
    Document,
    DocumentKind,
    Fragment,
    IndexStatus,
    Session,
    SessionStatus,
    Turn,
    TurnRole,
)
from interview_engine.storage.pg import PostgreSQLPool
from interview_engine.storage.repository import Repository
from interview_engine.utils.vector_codec import decode_vector, encode_vector
from interview_engine.logs import setup_logger

logger = setup_logger(__name__)


def row_to_fragment(row: Dict[str, Any]) -> Fragment:
    """数据库行 -> Fragment（向量解码校验失败抛出 VectorDecodeError）"""
    return Fragment(
        document_id=row["document_id"],
        position=row["position"],
        text=row["text"],
        embedding=decode_vector(row["embedding"]),
    )


def row_to_document(row: Dict[str, Any], fragments: Sequence[Fragment] = ()) -> Document:
    return Document(
        id=row["id"],
        owner_id=row["owner_id"],
        kind=DocumentKind(row["kind"]),
        text=row["text"],
        status=IndexStatus(row["status"]),
        file_name=row.get("file_name"),
        created_at=row["created_at"],
        fragments=tuple(fragments),
    )


def row_to_turn(row: Dict[str, Any]) -> Turn:
    return Turn(
        role=TurnRole(row["role"]),
        content=row["content"],
        score=row.get("score"),
        feedback=row.get("feedback"),
        citations=tuple(row.get("citations") or ()),
    )


def row_to_session(row: Dict[str, Any], turns: Sequence[Turn] = ()) -> Session:
    return Session(
        id=row["id"],
        owner_id=row["owner_id"],
        status=SessionStatus(row["status"]),
        version=row["version"],
        resume_id=row.get("resume_id"),
        job_description_id=row.get("job_description_id"),
        created_at=row["created_at"],
        turns=tuple(turns),
    )


class PostgresRepository(Repository):
    """PostgreSQL数据访问对象"""

    def __init__(self, pool: PostgreSQLPool):
        self.pool = pool

    async def _fetch_fragments(self, conn, document_id: str) -> List[Fragment]:
        rows = await conn.fetch(
            """
            SELECT document_id, position, text, embedding
            FROM fragments
            WHERE document_id = $1
            ORDER BY position ASC
            """,
            document_id
        )
        return [row_to_fragment(dict(row)) for row in rows]

    async def _insert_fragments(self, conn, document_id: str, fragments: Sequence[Fragment]):
        if not fragments:
            return
        await conn.executemany(
            """
            INSERT INTO fragments (document_id, position, text, embedding)
            VALUES ($1, $2, $3, $4)
            """,
            [
                (document_id, f.position, f.text, encode_vector(f.embedding))
                for f in fragments
            ]
        )

    # ---------------- 文档 ----------------

    async def save_document(self, document: Document) -> Document:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO documents (id, owner_id, kind, text, status, file_name, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    document.id,
                    document.owner_id,
                    document.kind.value,
                    document.text,
                    document.status.value,
                    document.file_name,
                    document.created_at,
                )
                await self._insert_fragments(conn, document.id, document.fragments)
        logger.debug(f"保存文档: id={document.id}, fragments={len(document.fragments)}")
        return document

    async def get_document(self, document_id: str) -> Optional[Document]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM documents WHERE id = $1", document_id)
            if row is None:
                return None
            fragments = await self._fetch_fragments(conn, document_id)
        return row_to_document(dict(row), fragments)

    async def list_documents(self, owner_id: str) -> List[Document]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM documents WHERE owner_id = $1 ORDER BY created_at DESC",
                owner_id
            )
            documents = []
            for row in rows:
                fragments = await self._fetch_fragments(conn, row["id"])
                documents.append(row_to_document(dict(row), fragments))
        return documents

    async def latest_document(self, owner_id: str, kind: DocumentKind) -> Optional[Document]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM documents
                WHERE owner_id = $1 AND kind = $2
                ORDER BY created_at DESC
                LIMIT 1
                """,
                owner_id,
                kind.value
            )
            if row is None:
                return None
            fragments = await self._fetch_fragments(conn, row["id"])
        return row_to_document(dict(row), fragments)

    async def delete_document(self, owner_id: str, document_id: str) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                # fragments 通过 ON DELETE CASCADE 一并删除
                result = await conn.fetchrow(
                    "DELETE FROM documents WHERE id = $1 AND owner_id = $2 RETURNING id",
                    document_id,
                    owner_id
                )
                if result is None:
                    exists = await conn.fetchrow("SELECT 1 FROM documents WHERE id = $1", document_id)
                    if exists is None:
                        raise DocumentNotFoundError(f"文档不存在: {document_id}", stage="delete_document")
                    raise DocumentAccessError(f"无权删除文档: {document_id}", stage="delete_document")

    # ---------------- 片段 ----------------

    async def get_fragments(self, document_id: str) -> List[Fragment]:
        async with self.pool.acquire() as conn:
            return await self._fetch_fragments(conn, document_id)

    async def add_fragments(self, document_id: str, fragments: Sequence[Fragment]) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                exists = await conn.fetchrow("SELECT 1 FROM documents WHERE id = $1", document_id)
                if exists is None:
                    raise DocumentNotFoundError(f"文档不存在: {document_id}", stage="add_fragments")
                await self._insert_fragments(conn, document_id, fragments)

    async def remove_fragments(self, document_id: str) -> int:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "DELETE FROM fragments WHERE document_id = $1 RETURNING id",
                document_id
            )
        return len(rows)

    # ---------------- 会话 ----------------

    async def create_session(self, session: Session) -> Session:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO sessions (id, owner_id, status, version, resume_id, job_description_id, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    session.id,
                    session.owner_id,
                    session.status.value,
                    session.version,
                    session.resume_id,
                    session.job_description_id,
                    session.created_at,
                )
                await self._insert_turns(conn, session.id, 0, session.turns)
        return session

    async def _insert_turns(self, conn, session_id: str, start_seq: int, turns: Sequence[Turn]):
        if not turns:
            return
        await conn.executemany(
            """
            INSERT INTO turns (session_id, seq, role, content, score, feedback, citations)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            [
                (
                    session_id,
                    start_seq + offset,
                    turn.role.value,
                    turn.content,
                    turn.score,
                    turn.feedback,
                    list(turn.citations),
                )
                for offset, turn in enumerate(turns)
            ]
        )

    async def get_session(self, session_id: str) -> Optional[Session]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM sessions WHERE id = $1", session_id)
            if row is None:
                return None
            turn_rows = await conn.fetch(
                """
                SELECT role, content, score, feedback, citations
                FROM turns
                WHERE session_id = $1
                ORDER BY seq ASC
                """,
                session_id
            )
        return row_to_session(dict(row), [row_to_turn(dict(r)) for r in turn_rows])

    async def commit_session(self, session: Session, expected_version: int) -> Session:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                # CAS：只有版本号匹配才更新，更新同时锁定该行
                updated = await conn.fetchrow(
                    """
                    UPDATE sessions
                    SET status = $1, version = version + 1
                    WHERE id = $2 AND version = $3
                    RETURNING version
                    """,
                    session.status.value,
                    session.id,
                    expected_version
                )
                if updated is None:
                    exists = await conn.fetchrow("SELECT version FROM sessions WHERE id = $1", session.id)
                    if exists is None:
                        raise SessionNotFoundError(
                            f"会话不存在: {session.id}", session_id=session.id, stage="commit"
                        )
                    raise SessionConflictError(
                        f"会话版本冲突: 期望 {expected_version}，实际 {exists['version']}",
                        session_id=session.id,
                        stage="commit"
                    )

                stored_count = await conn.fetchval(
                    "SELECT COUNT(*) FROM turns WHERE session_id = $1", session.id
                )
                if stored_count > len(session.turns):
                    raise ValueError("会话turn只能追加，不能删除已有turn")
                await self._insert_turns(conn, session.id, stored_count, session.turns[stored_count:])

        return session.model_copy(update={"version": updated["version"]})
