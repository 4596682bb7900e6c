"""
核心类型定义
"""
import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator


def new_id() -> str:
    """生成实体ID"""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_citations(values) -> Tuple[int, ...]:
    """引用索引只能是0（简历）或1（岗位描述），按出现顺序去重"""
    ordered = []
    for value in values:
        if value not in (0, 1) or isinstance(value, bool):
            raise ValueError(f"引用索引必须为0或1: {value!r}")
        if value not in ordered:
            ordered.append(value)
    return tuple(ordered)


class DocumentKind(str, Enum):
    """文档类型（封闭集合）"""
    RESUME = "resume"
    JOB_DESCRIPTION = "job-description"

    @property
    def source_index(self) -> int:
        """引用索引：0=简历，1=岗位描述"""
        return 0 if self is DocumentKind.RESUME else 1

    @classmethod
    def from_source_index(cls, index: int) -> "DocumentKind":
        if index == 0 and not isinstance(index, bool):
            return cls.RESUME
        if index == 1 and not isinstance(index, bool):
            return cls.JOB_DESCRIPTION
        raise ValueError(f"未知的引用索引: {index!r}")


class TurnRole(str, Enum):
    """对话角色（封闭集合）"""
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"


class SessionStatus(str, Enum):
    """会话生命周期状态"""
    CREATED = "created"
    AWAITING_ANSWER = "awaiting_answer"
    EVALUATING = "evaluating"
    CLOSED = "closed"


class IndexStatus(str, Enum):
    """文档索引状态"""
    INDEXED = "indexed"
    PARTIAL = "partial"  # 部分片段向量化失败，仍可用于检索
    EMPTY = "empty"  # 没有任何可用片段


class Fragment(BaseModel):
    """文档片段：文本 + 向量"""
    model_config = ConfigDict(frozen=True)

    document_id: str
    position: int = Field(..., ge=0)
    text: str
    embedding: Tuple[float, ...]

    @field_validator("embedding")
    @classmethod
    def _check_embedding(cls, value: Tuple[float, ...]) -> Tuple[float, ...]:
        if not value:
            raise ValueError("片段必须带有向量")
        if not all(math.isfinite(v) for v in value):
            raise ValueError("向量包含非有限数值")
        return value

    @property
    def dimension(self) -> int:
        return len(self.embedding)


class Document(BaseModel):
    """用户上传的文档（简历或岗位描述）"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    owner_id: str
    kind: DocumentKind
    text: str
    fragments: Tuple[Fragment, ...] = ()
    status: IndexStatus = IndexStatus.INDEXED
    file_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Turn(BaseModel):
    """会话中的一条消息（问题、回答或评估）"""
    model_config = ConfigDict(frozen=True)

    role: TurnRole
    content: str
    score: Optional[int] = Field(None, ge=1, le=10)
    feedback: Optional[str] = None
    citations: Tuple[int, ...] = ()

    @field_validator("citations", mode="before")
    @classmethod
    def _validate_citations(cls, value):
        return _check_citations(value or ())


class Session(BaseModel):
    """面试会话；turns只追加，version用于CAS"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    owner_id: str
    status: SessionStatus = SessionStatus.CREATED
    turns: Tuple[Turn, ...] = ()
    version: int = 0
    resume_id: Optional[str] = None
    job_description_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def last_turn(self) -> Optional[Turn]:
        return self.turns[-1] if self.turns else None


class RetrievalResult(BaseModel):
    """检索结果（瞬时，不持久化）"""
    model_config = ConfigDict(frozen=True)

    similarity: float = Field(..., ge=-1.0, le=1.0)
    text: str
    kind: DocumentKind
    source_index: int
    position: int
    document_id: str


class RetrievalDegraded(BaseModel):
    """候选文档没有片段：告警级别的可报告状态，不是错误"""
    model_config = ConfigDict(frozen=True)

    document_id: Optional[str] = None
    kind: DocumentKind
    reason: str = "no fragments"


class Evaluation(BaseModel):
    """生成服务返回的结构化评估"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    score: StrictInt = Field(..., ge=1, le=10, description="Score from 1 to 10 for the response quality.")
    feedback: StrictStr = Field(..., description="Concise feedback, maximum 100 words.")
    next_question: StrictStr = Field(
        ..., alias="nextQuestion", description="A relevant, follow-up interview question."
    )
    citation_indices: List[StrictInt] = Field(
        ...,
        alias="citationIndices",
        description="Array containing only the index [0 for Resume, 1 for JD] that best supports the response/feedback.",
    )

    @field_validator("citation_indices")
    @classmethod
    def _check_indices(cls, value: List[int]) -> List[int]:
        return list(_check_citations(value))


class GroundingContext(BaseModel):
    """交给生成服务的上下文材料"""
    model_config = ConfigDict(frozen=True)

    resume_context: str
    job_description_context: str
    results: Tuple[RetrievalResult, ...] = ()
    degraded: Tuple[RetrievalDegraded, ...] = ()


class IngestionReport(BaseModel):
    """文档摄取结果"""
    model_config = ConfigDict(frozen=True)

    document: Document
    failed_positions: Tuple[int, ...] = ()
    errors: Tuple[str, ...] = ()

    @property
    def partial(self) -> bool:
        return bool(self.failed_positions)


class TurnOutcome(BaseModel):
    """一次成功评估后返回给调用方的结果"""
    model_config = ConfigDict(frozen=True)

    session: Session
    evaluation: Evaluation
    cited_kinds: Tuple[DocumentKind, ...] = ()
    grounding: Optional[GroundingContext] = None
