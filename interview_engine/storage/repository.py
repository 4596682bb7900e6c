"""
存储接口：文档/片段/会话的CRUD契约

核心逻辑只依赖这个抽象，内存实现与PostgreSQL实现可以互换。
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from interview_engine.core.types import Document, DocumentKind, Fragment, Session


class Repository(ABC):
    """文档与会话的持久化接口（按owner隔离）"""

    # ---------------- 文档 ----------------

    @abstractmethod
    async def save_document(self, document: Document) -> Document:
        """
        原子保存文档及其全部片段

        Returns:
            保存后的文档（含片段）
        """

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Document]:
        """获取文档（含片段），不存在返回None"""

    @abstractmethod
    async def list_documents(self, owner_id: str) -> List[Document]:
        """列出用户的所有文档，按上传时间倒序"""

    @abstractmethod
    async def latest_document(self, owner_id: str, kind: DocumentKind) -> Optional[Document]:
        """获取用户某类文档中最新上传的一篇"""

    @abstractmethod
    async def delete_document(self, owner_id: str, document_id: str) -> None:
        """
        原子删除文档及其片段

        Raises:
            DocumentNotFoundError: 文档不存在
            DocumentAccessError: 文档不属于该用户
        """

    # ---------------- 片段 ----------------

    @abstractmethod
    async def get_fragments(self, document_id: str) -> List[Fragment]:
        """按position顺序返回文档片段；文档不存在返回空列表"""

    @abstractmethod
    async def add_fragments(self, document_id: str, fragments: Sequence[Fragment]) -> None:
        """
        为文档追加片段

        Raises:
            DocumentNotFoundError: 文档不存在
        """

    @abstractmethod
    async def remove_fragments(self, document_id: str) -> int:
        """删除文档的全部片段，返回删除数量"""

    # ---------------- 会话 ----------------

    @abstractmethod
    async def create_session(self, session: Session) -> Session:
        """保存新会话"""

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Session]:
        """获取会话（含全部turn），不存在返回None"""

    @abstractmethod
    async def commit_session(self, session: Session, expected_version: int) -> Session:
        """
        原子提交「追加turn + 状态迁移」（CAS）

        仅当存储中的版本号等于 expected_version 时写入，
        新追加的turn为 session.turns 中超出已存储部分的尾部。

        Returns:
            版本号为 expected_version + 1 的会话

        Raises:
            SessionConflictError: 版本号不匹配（并发写入）
            SessionNotFoundError: 会话不存在
        """
