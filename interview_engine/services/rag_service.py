"""
上下文组装服务
简历与岗位描述各取一段最相关的片段作为评估上下文；缺失时逐级降级，保证面试不中断
"""
import asyncio
from typing import List, Optional, Tuple

from interview_engine.core.errors import EmbeddingError
from interview_engine.core.types import (
    Document,
    DocumentKind,
    GroundingContext,
    RetrievalDegraded,
    RetrievalResult,
)
from interview_engine.nlp.rag import Retriever
from interview_engine.services.doc_store import VectorIndex
from interview_engine.services.embed_service import Embedder
from interview_engine.logs import setup_logger

logger = setup_logger(__name__)


def clip_text(text: str, max_chars: int) -> str:
    """截断到 max_chars 个字符"""
    if len(text) <= max_chars:
        return text
    return text[:max_chars]


class GroundingAssembler:
    """RAG上下文组装器"""

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        retriever: Retriever,
        top_k: int = 2,
        char_limit: int = 1000,
        placeholder: str = "No document context available for RAG. Evaluate generally.",
        embed_timeout: float = 10.0
    ):
        self.embedder = embedder
        self.index = index
        self.retriever = retriever
        self.top_k = top_k
        self.char_limit = char_limit
        self.placeholder = placeholder
        self.embed_timeout = embed_timeout

    async def _load(self, document: Optional[Document]) -> Optional[Document]:
        """从索引加载文档片段"""
        if document is None:
            return None
        fragments = await self.index.fragments_of(document.id)
        return document.model_copy(update={"fragments": tuple(fragments)})

    async def _query_vector(self, answer: str) -> Optional[Tuple[float, ...]]:
        try:
            return await asyncio.wait_for(self.embedder.embed(answer), timeout=self.embed_timeout)
        except asyncio.TimeoutError:
            logger.warning("回答向量化超时，降级为首片段上下文")
        except EmbeddingError as e:
            logger.warning(f"回答向量化失败，降级为首片段上下文: {e}")
        return None

    def _context_for(
        self,
        kind: DocumentKind,
        document: Optional[Document],
        results: List[RetrievalResult]
    ) -> str:
        """
        选择某类文档的上下文文本

        优先级：检索结果中该类型排名最高的片段 > 该文档的第一个片段 > 占位文本
        """
        for result in results:
            if result.kind == kind:
                return clip_text(result.text, self.char_limit)
        if document is not None and document.fragments:
            first = min(document.fragments, key=lambda f: f.position)
            return clip_text(first.text, self.char_limit)
        return clip_text(self.placeholder, self.char_limit)

    async def assemble(
        self,
        resume: Optional[Document],
        job_description: Optional[Document],
        answer: str
    ) -> GroundingContext:
        """
        组装评估上下文（从不因文档缺失而失败）

        Args:
            resume: 简历文档（可为None）
            job_description: 岗位描述文档（可为None）
            answer: 候选人回答

        Returns:
            GroundingContext
        """
        resume = await self._load(resume)
        job_description = await self._load(job_description)

        notices: List[RetrievalDegraded] = []
        for kind, document in (
            (DocumentKind.RESUME, resume),
            (DocumentKind.JOB_DESCRIPTION, job_description),
        ):
            if document is None:
                logger.warning(f"RAG Warning: 缺少{kind.value}文档，使用通用上下文")
                notices.append(RetrievalDegraded(kind=kind, reason="document missing"))

        candidates = [d for d in (resume, job_description) if d is not None]
        results: List[RetrievalResult] = []

        query_vector = await self._query_vector(answer)
        if query_vector is not None:
            results, degraded = self.retriever.retrieve_with_report(
                query_vector, candidates, self.top_k
            )
            notices.extend(degraded)
        else:
            notices.extend(
                RetrievalDegraded(document_id=d.id, kind=d.kind, reason="query embedding failed")
                for d in candidates
            )

        return GroundingContext(
            resume_context=self._context_for(DocumentKind.RESUME, resume, results),
            job_description_context=self._context_for(
                DocumentKind.JOB_DESCRIPTION, job_description, results
            ),
            results=tuple(results),
            degraded=tuple(notices),
        )
