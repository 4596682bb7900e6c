"""
文档摄取服务：分块 → 并发向量化（有界） → 原子保存
"""
import asyncio
from typing import List, Optional, Union

from interview_engine.core.errors import (
    DocumentAccessError,
    DocumentNotFoundError,
    EmbeddingError,
    IngestionError,
)
from interview_engine.core.types import (
    Document,
    DocumentKind,
    Fragment,
    IndexStatus,
    IngestionReport,
    new_id,
)
from interview_engine.nlp.chunking import chunk_text
from interview_engine.services.embed_service import Embedder
from interview_engine.storage.repository import Repository
from interview_engine.logs import setup_logger, metrics

logger = setup_logger(__name__)


class IngestionService:
    """
    文档摄取

    单个片段向量化失败只丢弃该片段，其余片段照常入库；
    部分成功的文档标记为 partial，仍可参与检索。
    """

    def __init__(
        self,
        repository: Repository,
        embedder: Embedder,
        chunk_words: int = 500,
        concurrency: int = 4,
        embed_timeout: float = 10.0,
        fallback_text: str = "[Empty document content]"
    ):
        if concurrency <= 0:
            raise ValueError(f"concurrency必须大于0: {concurrency}")
        self.repository = repository
        self.embedder = embedder
        self.chunk_words = chunk_words
        self.concurrency = concurrency
        self.embed_timeout = embed_timeout
        self.fallback_text = fallback_text

    async def _embed_fragment(
        self,
        semaphore: asyncio.Semaphore,
        document_id: str,
        position: int,
        text: str
    ) -> Fragment:
        async with semaphore:
            try:
                vector = await asyncio.wait_for(
                    self.embedder.embed(text), timeout=self.embed_timeout
                )
            except asyncio.TimeoutError as e:
                raise IngestionError(f"片段{position}向量化超时", position=position, cause=e)
            except EmbeddingError as e:
                raise IngestionError(f"片段{position}向量化失败: {e.message}", position=position, cause=e)
            try:
                return Fragment(document_id=document_id, position=position, text=text, embedding=vector)
            except (TypeError, ValueError) as e:
                # pydantic ValidationError：非有限值、空向量等
                raise IngestionError(f"片段{position}向量不合法", position=position, cause=e)

    async def _build_fragments(self, document_id: str, text: str):
        chunks = chunk_text(text, self.chunk_words)
        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes = await asyncio.gather(
            *[
                self._embed_fragment(semaphore, document_id, position, chunk)
                for position, chunk in enumerate(chunks)
            ],
            return_exceptions=True
        )

        fragments: List[Fragment] = []
        failures: List[IngestionError] = []
        for outcome in outcomes:
            if isinstance(outcome, IngestionError):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                fragments.append(outcome)

        # 同一文档内向量维度必须一致
        dimensions = {f.dimension for f in fragments}
        if len(dimensions) > 1:
            raise ValueError(f"向量维度不一致: {sorted(dimensions)}")

        return chunks, fragments, failures

    async def ingest(
        self,
        owner_id: str,
        kind: Union[DocumentKind, str],
        text: Optional[str],
        file_name: Optional[str] = None
    ) -> IngestionReport:
        """
        摄取一篇已提取文本的文档

        Args:
            owner_id: 用户ID
            kind: 文档类型（resume / job-description）
            text: 已提取的文本；为空表示上游提取失败，使用降级文本
            file_name: 原始文件名（可选）

        Returns:
            IngestionReport（包含失败片段的位置与原因）
        """
        kind = DocumentKind(kind)
        if not text or not text.strip():
            logger.warning(f"文档文本为空，使用降级文本: owner={owner_id}, kind={kind.value}")
            text = self.fallback_text

        document_id = new_id()
        chunks, fragments, failures = await self._build_fragments(document_id, text)

        if not failures:
            status = IndexStatus.INDEXED
        elif fragments:
            status = IndexStatus.PARTIAL
        else:
            status = IndexStatus.EMPTY

        document = Document(
            id=document_id,
            owner_id=owner_id,
            kind=kind,
            text=text,
            fragments=tuple(fragments),
            status=status,
            file_name=file_name,
        )
        document = await self.repository.save_document(document)

        metrics.increment("documents_ingested")
        metrics.increment("fragments_indexed", len(fragments))
        metrics.increment("fragments_failed", len(failures))

        if failures:
            logger.warning(
                f"文档部分索引: document={document_id}, 成功 {len(fragments)}/{len(chunks)}"
            )
        else:
            logger.info(f"文档已索引: document={document_id}, kind={kind.value}, fragments={len(fragments)}")

        return IngestionReport(
            document=document,
            failed_positions=tuple(sorted(f.position for f in failures)),
            errors=tuple(f.message for f in sorted(failures, key=lambda f: f.position)),
        )

    async def get_document(self, owner_id: str, document_id: str) -> Document:
        """
        获取用户自己的文档

        Raises:
            DocumentNotFoundError / DocumentAccessError
        """
        document = await self.repository.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"文档不存在: {document_id}", stage="get_document")
        if document.owner_id != owner_id:
            raise DocumentAccessError(f"无权访问文档: {document_id}", stage="get_document")
        return document

    async def list_documents(self, owner_id: str) -> List[Document]:
        """列出用户文档（最新在前）"""
        return await self.repository.list_documents(owner_id)

    async def delete_document(self, owner_id: str, document_id: str) -> None:
        """原子删除文档及其片段"""
        await self.repository.delete_document(owner_id, document_id)
        metrics.increment("documents_deleted")
        logger.info(f"文档已删除: document={document_id}")
