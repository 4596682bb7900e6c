"""
PostgreSQL 连接与DDL
"""
import asyncpg
from typing import Optional, List, Any

from interview_engine.config import Settings
from interview_engine.logs import setup_logger

logger = setup_logger(__name__)


SCHEMA_DDL = [
    """
    CREATE TABLE IF NOT EXISTS documents (
        id VARCHAR(64) PRIMARY KEY,
        owner_id VARCHAR(255) NOT NULL,
        kind VARCHAR(32) NOT NULL CHECK (kind IN ('resume', 'job-description')),
        text TEXT NOT NULL,
        status VARCHAR(16) NOT NULL,
        file_name VARCHAR(255),
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fragments (
        id SERIAL PRIMARY KEY,
        document_id VARCHAR(64) NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        text TEXT NOT NULL,
        embedding DOUBLE PRECISION[] NOT NULL,
        UNIQUE (document_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id VARCHAR(64) PRIMARY KEY,
        owner_id VARCHAR(255) NOT NULL,
        status VARCHAR(32) NOT NULL,
        version INTEGER NOT NULL DEFAULT 0,
        resume_id VARCHAR(64),
        job_description_id VARCHAR(64),
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS turns (
        id SERIAL PRIMARY KEY,
        session_id VARCHAR(64) NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
        seq INTEGER NOT NULL,
        role VARCHAR(16) NOT NULL CHECK (role IN ('interviewer', 'candidate')),
        content TEXT NOT NULL,
        score SMALLINT CHECK (score BETWEEN 1 AND 10),
        feedback TEXT,
        citations SMALLINT[] NOT NULL DEFAULT '{}',
        UNIQUE (session_id, seq)
    )
    """,
    "CREATE INDEX IF NOT EXISTS documents_owner_kind_idx ON documents(owner_id, kind, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS fragments_document_id_idx ON fragments(document_id)",
    "CREATE INDEX IF NOT EXISTS turns_session_id_idx ON turns(session_id, seq)",
]


class PostgreSQLPool:
    """PostgreSQL连接池"""

    def __init__(self, config: Settings):
        self.config = config
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """初始化连接池并创建表结构"""
        config = self.config
        if not all([config.PG_HOST, config.PG_DB, config.PG_USER]):
            raise RuntimeError("PostgreSQL配置不完整")

        try:
            logger.info(f"正在连接PostgreSQL: {config.postgres_dsn}")
            self.pool = await asyncpg.create_pool(
                host=config.PG_HOST,
                port=config.PG_PORT,
                database=config.PG_DB,
                user=config.PG_USER,
                password=config.PG_PASSWORD,
                min_size=config.PG_POOL_MIN,
                max_size=config.PG_POOL_MAX,
                timeout=config.REPOSITORY_TIMEOUT,  # 连接超时
                command_timeout=config.REPOSITORY_TIMEOUT,  # 单条语句超时
            )
            logger.info("PostgreSQL连接池初始化成功")
        except asyncpg.exceptions.InvalidPasswordError:
            logger.error("PostgreSQL认证失败: 用户名或密码错误")
            logger.error(f"请检查配置: PG_USER={config.PG_USER}")
            raise
        except asyncpg.exceptions.InvalidCatalogNameError:
            logger.error(f"PostgreSQL数据库不存在: {config.PG_DB}")
            raise
        except (ConnectionRefusedError, OSError):
            logger.error(f"PostgreSQL连接失败: 无法连接到 {config.PG_HOST}:{config.PG_PORT}")
            raise

        await self.create_tables()

    async def close(self):
        """关闭连接池"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL连接池已关闭")

    async def create_tables(self):
        """创建数据库表结构"""
        async with self.acquire() as conn:
            for statement in SCHEMA_DDL:
                await conn.execute(statement)
        logger.info("数据库表结构创建完成")

    def acquire(self):
        """获取连接（async with 使用）"""
        if not self.pool:
            raise RuntimeError("PostgreSQL连接池未初始化")
        return self.pool.acquire(timeout=self.config.REPOSITORY_TIMEOUT)

    async def execute(self, query: str, *args) -> Any:
        """执行SQL"""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """获取查询结果"""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """获取单行查询结果"""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)
