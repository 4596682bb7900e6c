"""
引擎组装入口：按配置创建存储、向量化、生成服务并串联各服务
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

from interview_engine.config import STORAGE_BACKENDS, Settings, settings as default_settings
from interview_engine.core.config import EngineSettings, engine_settings as default_engine_settings
from interview_engine.core.state import SessionStateMachine
from interview_engine.nlp.llm_api import GenerationClient, GenerationConfig, OpenAIGenerationClient
from interview_engine.nlp.prompts import PromptManager, prompt_manager
from interview_engine.nlp.rag import Retriever
from interview_engine.services.doc_store import VectorIndex
from interview_engine.services.embed_service import Embedder, build_embedder
from interview_engine.services.ingestion_service import IngestionService
from interview_engine.services.interview_service import InterviewService
from interview_engine.services.rag_service import GroundingAssembler
from interview_engine.storage.dao import PostgresRepository
from interview_engine.storage.memory import InMemoryRepository
from interview_engine.storage.pg import PostgreSQLPool
from interview_engine.storage.repository import Repository
from interview_engine.logs import setup_logger

logger = setup_logger(__name__)


@dataclass
class Engine:
    """组装完成的引擎（调用方持有，结束时调用 close）"""
    repository: Repository
    embedder: Embedder
    generation: GenerationClient
    ingestion: IngestionService
    interviews: InterviewService
    pool: Optional[PostgreSQLPool] = field(default=None)

    async def close(self):
        close_generation = getattr(self.generation, "close", None)
        if close_generation is not None:
            await close_generation()
        if self.pool is not None:
            await self.pool.close()
        logger.info("引擎已关闭")


async def build_repository(config: Settings) -> tuple:
    """根据 STORAGE_BACKEND 创建存储；返回 (repository, pool)"""
    backend = config.STORAGE_BACKEND.lower()
    if backend == "memory":
        return InMemoryRepository(), None
    if backend == "postgres":
        pool = PostgreSQLPool(config)
        await pool.initialize()
        return PostgresRepository(pool), pool
    raise ValueError(f"未知的STORAGE_BACKEND: {config.STORAGE_BACKEND}（可选 {STORAGE_BACKENDS}）")


async def build_engine(
    config: Optional[Settings] = None,
    rag_config: Optional[EngineSettings] = None,
    generation: Optional[GenerationClient] = None,
    embedder: Optional[Embedder] = None,
    prompts: Optional[PromptManager] = None
) -> Engine:
    """
    组装引擎

    Args:
        config: 应用配置（存储、日志）
        rag_config: 检索/向量化/生成配置
        generation: 生成服务客户端（默认按配置创建OpenAI客户端）
        embedder: 向量化实现（默认按 EMBEDDING_BACKEND 选择）
        prompts: 模板管理器

    Returns:
        Engine
    """
    config = config or default_settings
    rag_config = rag_config or default_engine_settings

    repository, pool = await build_repository(config)
    embedder = embedder or build_embedder(rag_config)
    generation = generation or OpenAIGenerationClient(GenerationConfig.from_settings(rag_config))
    prompts = prompts or prompt_manager

    ingestion = IngestionService(
        repository,
        embedder,
        chunk_words=rag_config.CHUNK_WORDS,
        concurrency=rag_config.EMBED_CONCURRENCY,
        embed_timeout=rag_config.EMBED_TIMEOUT,
        fallback_text=rag_config.EXTRACTION_FALLBACK_TEXT,
    )
    assembler = GroundingAssembler(
        embedder,
        VectorIndex(repository),
        Retriever(),
        top_k=rag_config.RAG_TOPK,
        char_limit=rag_config.CONTEXT_CHAR_LIMIT,
        placeholder=rag_config.CONTEXT_PLACEHOLDER,
        embed_timeout=rag_config.EMBED_TIMEOUT,
    )
    interviews = InterviewService(
        repository,
        assembler,
        generation,
        prompts,
        state_machine=SessionStateMachine(),
        jd_char_limit=rag_config.JD_PROMPT_CHAR_LIMIT,
        default_role_text=rag_config.DEFAULT_ROLE_TEXT,
    )

    logger.info(
        f"引擎已启动: storage={config.STORAGE_BACKEND}, embedding={rag_config.EMBEDDING_BACKEND}, "
        f"dim={embedder.dimension}"
    )
    return Engine(
        repository=repository,
        embedder=embedder,
        generation=generation,
        ingestion=ingestion,
        interviews=interviews,
        pool=pool,
    )


@asynccontextmanager
async def engine_lifespan(config: Optional[Settings] = None, **kwargs):
    """引擎生命周期管理（async with 使用）"""
    engine = await build_engine(config, **kwargs)
    try:
        yield engine
    finally:
        await engine.close()
