"""
引擎统一异常体系
"""
from typing import Optional


class EngineError(Exception):
    """引擎相关异常的基类"""
    retryable: bool = False

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        session_id: Optional[str] = None,
        stage: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.session_id = session_id
        self.stage = stage

    def context(self) -> dict:
        """返回便于记录日志/上报的上下文"""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "session_id": self.session_id,
            "stage": self.stage,
            "retryable": self.retryable,
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.session_id:
            parts.append(f"session={self.session_id}")
        if self.stage:
            parts.append(f"stage={self.stage}")
        return " | ".join(parts)


class EmbeddingError(EngineError):
    """向量化失败异常"""
    pass


class IngestionError(EngineError):
    """单个片段摄取失败（片段被丢弃，不中断整篇文档）"""

    def __init__(self, message: str, position: int, cause: Optional[Exception] = None):
        super().__init__(message, cause=cause, stage="ingestion")
        self.position = position


class VectorDecodeError(EngineError):
    """持久化向量解码失败异常"""
    pass


class SessionConflictError(EngineError):
    """同一会话的并发写入冲突（可重试）"""
    retryable = True


class InvalidTransitionError(EngineError):
    """会话当前状态不允许该操作"""
    pass


class GenerationServiceError(EngineError):
    """生成服务调用失败、超时或返回内容未通过schema校验"""
    retryable = True


class DocumentNotFoundError(EngineError):
    """文档不存在"""
    pass


class DocumentAccessError(EngineError):
    """文档存在但不属于当前用户"""
    pass


class SessionNotFoundError(EngineError):
    """会话不存在（或不属于当前用户）"""
    pass
