"""
向量索引：按文档组织的片段/向量查询视图
"""
from typing import List, Sequence

from interview_engine.core.types import Fragment
from interview_engine.storage.repository import Repository
from interview_engine.logs import setup_logger

logger = setup_logger(__name__)


class VectorIndex:
    """
    向量索引

    本身不持久化任何数据，只是存储层片段集合上的查询视图。
    片段写入后不可修改，替换必须先 remove 再 add。
    """

    def __init__(self, repository: Repository):
        self.repository = repository

    async def add(self, document_id: str, fragments: Sequence[Fragment]) -> None:
        """
        添加文档片段

        Args:
            document_id: 文档ID
            fragments: 片段列表（document_id 必须一致）

        Raises:
            ValueError: 片段归属不一致，或文档已有片段
        """
        if not fragments:
            return

        for fragment in fragments:
            if fragment.document_id != document_id:
                raise ValueError(
                    f"片段归属不一致: {fragment.document_id} != {document_id}"
                )

        dimensions = {f.dimension for f in fragments}
        if len(dimensions) > 1:
            raise ValueError(f"同一文档的片段向量维度不一致: {sorted(dimensions)}")

        existing = await self.repository.get_fragments(document_id)
        if existing:
            raise ValueError(f"文档 {document_id} 已有片段，替换前请先remove")

        await self.repository.add_fragments(document_id, fragments)
        logger.debug(f"索引文档片段: document={document_id}, count={len(fragments)}")

    async def remove(self, document_id: str) -> int:
        """删除文档的全部片段，返回删除数量"""
        removed = await self.repository.remove_fragments(document_id)
        logger.debug(f"移除文档片段: document={document_id}, count={removed}")
        return removed

    async def fragments_of(self, document_id: str) -> List[Fragment]:
        """按position顺序返回文档片段"""
        return await self.repository.get_fragments(document_id)
