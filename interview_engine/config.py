"""
统一配置模块（存储、日志）
"""
import os
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator, model_validator

# 获取包目录的绝对路径
PACKAGE_DIR = Path(__file__).parent.resolve()
ENV_FILE_PATH = PACKAGE_DIR / ".env"

STORAGE_BACKENDS = ("memory", "postgres")
LOG_FORMATS = ("json", "text")


class Settings(BaseSettings):
    """应用配置"""

    APP_NAME: str = "面试检索增强引擎"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # 存储
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory")
    REPOSITORY_TIMEOUT: float = float(os.getenv("REPOSITORY_TIMEOUT", "10"))  # 单次存储操作超时（秒）

    # PostgreSQL（STORAGE_BACKEND=postgres 时使用）
    PG_HOST: str = os.getenv("PG_HOST", "localhost")
    PG_PORT: int = int(os.getenv("PG_PORT", "5432"))
    PG_DB: str = os.getenv("PG_DB", "interview")
    PG_USER: str = os.getenv("PG_USER", "postgres")
    PG_PASSWORD: str = os.getenv("PG_PASSWORD", "")
    PG_POOL_MIN: int = 2
    PG_POOL_MAX: int = 10

    # 日志
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")

    model_config = ConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("STORAGE_BACKEND", "LOG_FORMAT")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("REPOSITORY_TIMEOUT")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("REPOSITORY_TIMEOUT必须大于0")
        return value

    @model_validator(mode="after")
    def _check_choices(self):
        # 未知的STORAGE_BACKEND留给 build_repository 报错，这里只校验日志与连接池
        if self.LOG_FORMAT not in LOG_FORMATS:
            raise ValueError(f"LOG_FORMAT必须是 {LOG_FORMATS} 之一: {self.LOG_FORMAT}")
        if not 0 < self.PG_POOL_MIN <= self.PG_POOL_MAX:
            raise ValueError(f"连接池大小不合法: min={self.PG_POOL_MIN}, max={self.PG_POOL_MAX}")
        return self

    @property
    def postgres_dsn(self) -> str:
        """日志用的连接描述（不含密码）"""
        return f"postgresql://{self.PG_USER}@{self.PG_HOST}:{self.PG_PORT}/{self.PG_DB}"


# 全局配置实例
settings = Settings()
