"""
扩展配置模块（检索、向量化、生成相关）
"""
import os
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator

# 获取包目录的绝对路径
PACKAGE_DIR = Path(__file__).parent.parent.resolve()
ENV_FILE_PATH = PACKAGE_DIR / ".env"


class EngineSettings(BaseSettings):
    """检索增强引擎配置"""

    # 分块配置
    CHUNK_WORDS: int = int(os.getenv("CHUNK_WORDS", "500"))  # 每个片段最多单词数

    # Embedding配置
    EMBEDDING_BACKEND: str = os.getenv("EMBEDDING_BACKEND", "hashing")  # hashing or openai
    EMBEDDING_DIM: int = int(os.getenv("EMBEDDING_DIM", "64"))  # 同一模型版本下所有向量维度一致
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_API_KEY: str = os.getenv("EMBEDDING_API_KEY", "")
    EMBEDDING_BASE_URL: str = os.getenv("EMBEDDING_BASE_URL", "https://api.openai.com/v1")
    EMBED_CONCURRENCY: int = int(os.getenv("EMBED_CONCURRENCY", "4"))  # 单文档并发向量化上限
    EMBED_TIMEOUT: float = float(os.getenv("EMBED_TIMEOUT", "10"))  # 单片段向量化超时（秒）

    # RAG配置
    RAG_TOPK: int = int(os.getenv("RAG_TOPK", "2"))  # 评估时检索的片段数
    CONTEXT_CHAR_LIMIT: int = int(os.getenv("CONTEXT_CHAR_LIMIT", "1000"))  # 每类上下文字符上限
    JD_PROMPT_CHAR_LIMIT: int = int(os.getenv("JD_PROMPT_CHAR_LIMIT", "4000"))  # 开场问题使用的JD字符上限

    # LLM配置
    LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
    LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.5"))
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "512"))
    GENERATION_TIMEOUT: float = float(os.getenv("GENERATION_TIMEOUT", "30"))  # 生成调用超时（秒）

    # 降级文本
    EXTRACTION_FALLBACK_TEXT: str = "[Empty document content]"
    CONTEXT_PLACEHOLDER: str = "No document context available for RAG. Evaluate generally."
    DEFAULT_ROLE_TEXT: str = (
        "Senior Software Engineer focusing on backend systems and cloud infrastructure."
    )

    # Pydantic V2 配置
    model_config = ConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator(
        "CHUNK_WORDS", "EMBEDDING_DIM", "EMBED_CONCURRENCY", "RAG_TOPK",
        "CONTEXT_CHAR_LIMIT", "JD_PROMPT_CHAR_LIMIT", "LLM_MAX_TOKENS",
        "EMBED_TIMEOUT", "GENERATION_TIMEOUT"
    )
    @classmethod
    def _positive(cls, value, info):
        if value <= 0:
            raise ValueError(f"{info.field_name}必须大于0: {value}")
        return value


# 全局引擎配置实例
engine_settings = EngineSettings()
