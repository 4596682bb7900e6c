"""
Embedding服务：文本 -> 定长向量（可插拔）
"""
import asyncio
import hashlib
from typing import Dict, Protocol, Tuple, runtime_checkable

import aiohttp
import numpy as np

from interview_engine.core.config import EngineSettings
from interview_engine.core.errors import EmbeddingError
from interview_engine.logs import setup_logger

logger = setup_logger(__name__)

Vector = Tuple[float, ...]


@runtime_checkable
class Embedder(Protocol):
    """
    向量化接口

    - 相同输入必须得到相同向量
    - 同一实现的所有向量维度一致（dimension）
    - 失败时抛出 EmbeddingError，绝不返回不完整的向量
    """
    dimension: int

    async def embed(self, text: str) -> Vector: ...


class HashingEmbedder:
    """特征哈希向量化（确定性，无外部依赖，用于默认部署与测试）"""

    def __init__(self, dimension: int = 64):
        if dimension <= 0:
            raise ValueError(f"dimension必须大于0: {dimension}")
        self.dimension = dimension

    def _embed_sync(self, text: str) -> Vector:
        vec = np.zeros(self.dimension, dtype=np.float64)
        for token in (text or "").lower().split():
            try:
                digest = hashlib.sha1(token.encode("utf-8")).digest()
            except UnicodeEncodeError as e:
                raise EmbeddingError(f"文本无法编码: {e}", cause=e, stage="embed")
            bucket = int.from_bytes(digest[:4], "big") % self.dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vec[bucket] += sign

        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        return tuple(vec.tolist())

    async def embed(self, text: str) -> Vector:
        """
        生成文本向量

        Args:
            text: 输入文本

        Returns:
            向量（L2归一化；空文本为零向量）
        """
        return self._embed_sync(text)


class OpenAIEmbedder:
    """向量化服务：异步调用OpenAI兼容的embedding API"""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        dimension: int,
        timeout: float = 10.0
    ):
        if not api_key:
            raise ValueError("EMBEDDING_API_KEY未设置")
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.dimension = dimension
        self.timeout = timeout
        self._cache: Dict[str, Vector] = {}  # 简单内存缓存

    async def embed(self, text: str) -> Vector:
        """
        异步生成单个文本的向量

        Args:
            text: 输入文本

        Returns:
            向量

        Raises:
            EmbeddingError: 请求失败、超时或返回数据不合法
        """
        text_key = (text or "").strip()
        if not text_key:
            raise EmbeddingError("空文本无法向量化", stage="embed")

        # 检查缓存
        if text_key in self._cache:
            return self._cache[text_key]

        url = f"{self.base_url.rstrip('/')}/embeddings"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "model": self.model,
            "input": text_key
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise EmbeddingError(
                            f"Embedding API错误: {response.status} - {error_text}",
                            stage="embed"
                        )
                    data = await response.json()
        except asyncio.TimeoutError as e:
            raise EmbeddingError("Embedding API调用超时", cause=e, stage="embed")
        except aiohttp.ClientError as e:
            raise EmbeddingError(f"Embedding API调用失败: {e}", cause=e, stage="embed")

        embedding_data = data.get("data") or []
        if not embedding_data or "embedding" not in embedding_data[0]:
            raise EmbeddingError("Embedding API返回空数据", stage="embed")

        try:
            vector = tuple(float(v) for v in embedding_data[0]["embedding"])
        except (TypeError, ValueError) as e:
            raise EmbeddingError(f"Embedding API返回非数值向量: {e}", cause=e, stage="embed")
        if not np.all(np.isfinite(vector)):
            raise EmbeddingError("Embedding API返回NaN/Infinity", stage="embed")

        if len(vector) != self.dimension:
            raise EmbeddingError(
                f"Embedding维度不匹配: 期望 {self.dimension}，实际 {len(vector)}",
                stage="embed"
            )

        # 缓存结果（限制缓存大小）
        if len(self._cache) < 1000:
            self._cache[text_key] = vector
        return vector

    def clear_cache(self):
        """清空缓存"""
        self._cache.clear()


def build_embedder(config: EngineSettings) -> Embedder:
    """根据配置选择向量化实现"""
    backend = config.EMBEDDING_BACKEND.lower()
    if backend == "openai":
        logger.info(f"使用OpenAI embedding: model={config.EMBEDDING_MODEL}")
        return OpenAIEmbedder(
            api_key=config.EMBEDDING_API_KEY,
            base_url=config.EMBEDDING_BASE_URL,
            model=config.EMBEDDING_MODEL,
            dimension=config.EMBEDDING_DIM,
            timeout=config.EMBED_TIMEOUT,
        )
    if backend == "hashing":
        return HashingEmbedder(dimension=config.EMBEDDING_DIM)
    raise ValueError(f"未知的EMBEDDING_BACKEND: {config.EMBEDDING_BACKEND}")
