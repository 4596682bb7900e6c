"""
检索器：余弦相似度排序 + 确定性tie-break
"""
import math
from typing import List, Sequence, Tuple

import numpy as np

from interview_engine.core.types import Document, RetrievalDegraded, RetrievalResult
from interview_engine.logs import setup_logger, metrics

logger = setup_logger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    余弦相似度 dot(a,b) / (|a| * |b|)

    任一向量模为0时返回0（不做除零）；结果限制在[-1, 1]。

    Raises:
        ValueError: 维度不一致
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"向量维度不一致: {va.shape} vs {vb.shape}")

    aa = float(np.dot(va, va))
    bb = float(np.dot(vb, vb))
    if aa == 0.0 or bb == 0.0:
        return 0.0

    # sqrt(aa * bb) 而不是 norm(a) * norm(b)：保证 sim(a, a) 精确为1
    sim = float(np.dot(va, vb)) / math.sqrt(aa * bb)
    return max(-1.0, min(1.0, sim))


class Retriever:
    """在候选文档的片段池上做top-k检索"""

    def retrieve_with_report(
        self,
        query_vector: Sequence[float],
        candidates: Sequence[Document],
        k: int
    ) -> Tuple[List[RetrievalResult], List[RetrievalDegraded]]:
        """
        检索并返回降级报告

        Args:
            query_vector: 查询向量
            candidates: 候选文档（fragments 已加载）
            k: 返回数量上限

        Returns:
            (按相似度降序的检索结果, 没有片段的候选文档列表)
        """
        notices: List[RetrievalDegraded] = []
        scored = []

        for order, document in enumerate(candidates):
            if not document.fragments:
                notice = RetrievalDegraded(document_id=document.id, kind=document.kind)
                notices.append(notice)
                metrics.increment("retrieval_degraded")
                logger.warning(
                    f"检索降级: 文档没有片段 document={document.id}, kind={document.kind.value}"
                )
                continue

            for fragment in document.fragments:
                sim = cosine_similarity(query_vector, fragment.embedding)
                # 排序键：相似度降序；同分按 (文档类型, 片段位置, 候选顺序)
                key = (-sim, document.kind.source_index, fragment.position, order)
                scored.append((key, sim, document, fragment))

        metrics.increment("retrievals")
        if k <= 0 or not scored:
            return [], notices

        scored.sort(key=lambda item: item[0])
        results = [
            RetrievalResult(
                similarity=sim,
                text=fragment.text,
                kind=document.kind,
                source_index=document.kind.source_index,
                position=fragment.position,
                document_id=document.id,
            )
            for _, sim, document, fragment in scored[:k]
        ]
        return results, notices

    def retrieve(
        self,
        query_vector: Sequence[float],
        candidates: Sequence[Document],
        k: int
    ) -> List[RetrievalResult]:
        """检索top-k片段（长度 ≤ k；没有任何片段时返回空列表）"""
        results, _ = self.retrieve_with_report(query_vector, candidates, k)
        return results
