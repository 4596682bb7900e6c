"""
面试会话服务：按turn处理请求，单会话单写者
"""
import asyncio
import re
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from interview_engine.core.errors import (
    DocumentAccessError,
    DocumentNotFoundError,
    EngineError,
    GenerationServiceError,
    InvalidTransitionError,
    SessionConflictError,
    SessionNotFoundError,
)
from interview_engine.core.state import SessionStateMachine
from interview_engine.core.types import (
    Document,
    DocumentKind,
    Evaluation,
    Session,
    SessionStatus,
    TurnOutcome,
)
from interview_engine.nlp.llm_api import GenerationClient
from interview_engine.nlp.prompts import PromptManager
from interview_engine.services.rag_service import GroundingAssembler, clip_text
from interview_engine.storage.repository import Repository
from interview_engine.logs import setup_logger, metrics

logger = setup_logger(__name__)

# "1. ..." 形式的问题行
_NUMBERED_LINE = re.compile(r"^\d+\.\s*")


def parse_numbered_questions(text: str) -> List[str]:
    """从生成文本中提取编号问题行"""
    lines = (line.strip() for line in (text or "").splitlines())
    return [line for line in lines if _NUMBERED_LINE.match(line)]


def resolve_citations(indices: Iterable[int]) -> Tuple[DocumentKind, ...]:
    """引用索引 -> 文档类型（0=简历，1=岗位描述）"""
    return tuple(DocumentKind.from_source_index(i) for i in indices)


class InterviewService:
    """
    面试会话编排

    每个会话同一时刻只允许一个写请求：进程内用非阻塞的会话锁，
    存储层再用版本号CAS兜底；抢不到的一方收到 SessionConflictError。
    """

    def __init__(
        self,
        repository: Repository,
        assembler: GroundingAssembler,
        generation: GenerationClient,
        prompts: PromptManager,
        state_machine: Optional[SessionStateMachine] = None,
        opening_question_count: int = 3,
        jd_char_limit: int = 4000,
        default_role_text: str = "Senior Software Engineer focusing on backend systems and cloud infrastructure."
    ):
        self.repository = repository
        self.assembler = assembler
        self.generation = generation
        self.prompts = prompts
        self.state_machine = state_machine or SessionStateMachine()
        self.opening_question_count = opening_question_count
        self.jd_char_limit = jd_char_limit
        self.default_role_text = default_role_text
        self._locks: Dict[str, asyncio.Lock] = {}

    resolve_citations = staticmethod(resolve_citations)

    # ---------------- 内部工具 ----------------

    @asynccontextmanager
    async def _exclusive(self, session_id: str, stage: str):
        """会话写锁：已被占用时立即冲突，不排队；释放后即移除"""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        if lock.locked():
            metrics.increment("session_conflicts")
            logger.warning(f"会话并发冲突: session={session_id}, stage={stage}")
            raise SessionConflictError(
                "会话正在处理其他请求，请稍后重试", session_id=session_id, stage=stage
            )
        try:
            async with lock:
                yield
        finally:
            # 从不等待锁，释放后没有等待者
            if not lock.locked() and self._locks.get(session_id) is lock:
                del self._locks[session_id]

    async def _load(self, session_id: str, owner_id: str, stage: str) -> Session:
        session = await self.repository.get_session(session_id)
        if session is None or session.owner_id != owner_id:
            raise SessionNotFoundError(f"会话不存在: {session_id}", session_id=session_id, stage=stage)
        return session

    async def _commit(self, session: Session, expected_version: int, stage: str) -> Session:
        try:
            committed = await self.repository.commit_session(session, expected_version)
        except SessionConflictError as e:
            metrics.increment("session_conflicts")
            e.stage = e.stage or stage
            raise
        metrics.increment("turns_committed")
        logger.debug(
            f"会话已提交: session={session.id}, stage={stage}, "
            f"status={committed.status.value}, version={committed.version}"
        )
        return committed

    async def _owned_document(
        self,
        owner_id: str,
        document_id: Optional[str],
        kind: DocumentKind
    ) -> Optional[Document]:
        if document_id is None:
            return await self.repository.latest_document(owner_id, kind)
        document = await self.repository.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"文档不存在: {document_id}", stage="start_session")
        if document.owner_id != owner_id:
            raise DocumentAccessError(f"无权使用文档: {document_id}", stage="start_session")
        if document.kind != kind:
            raise ValueError(f"文档类型不匹配: 期望 {kind.value}，实际 {document.kind.value}")
        return document

    async def _bound_document(self, session: Session, document_id: Optional[str]) -> Optional[Document]:
        """会话绑定的文档；已被删除则返回None（降级为占位上下文）"""
        if document_id is None:
            return None
        document = await self.repository.get_document(document_id)
        if document is None or document.owner_id != session.owner_id:
            return None
        return document

    # ---------------- 会话生命周期 ----------------

    async def start_session(
        self,
        owner_id: str,
        resume_id: Optional[str] = None,
        job_description_id: Optional[str] = None
    ) -> Session:
        """
        创建会话并绑定一份简历与一份岗位描述

        未指定的文档默认使用该用户最新上传的同类文档；两者缺失都不会阻止会话创建。
        """
        resume = await self._owned_document(owner_id, resume_id, DocumentKind.RESUME)
        job_description = await self._owned_document(
            owner_id, job_description_id, DocumentKind.JOB_DESCRIPTION
        )
        if resume is None or job_description is None:
            logger.warning(
                f"RAG Warning: Resume ({resume is not None}) or JD ({job_description is not None}) "
                f"missing for user {owner_id}. Using generic context."
            )

        session = Session(
            owner_id=owner_id,
            resume_id=resume.id if resume else None,
            job_description_id=job_description.id if job_description else None,
        )
        session = await self.repository.create_session(session)
        logger.info(f"会话已创建: session={session.id}, owner={owner_id}")
        return session

    async def get_session(self, session_id: str, owner_id: str) -> Session:
        return await self._load(session_id, owner_id, "get_session")

    async def issue_question(self, session_id: str, owner_id: str, content: str) -> Session:
        """面试官开场提问（仅Created会话；之后的问题来自评估结果）"""
        async with self._exclusive(session_id, "issue_question"):
            session = await self._load(session_id, owner_id, "issue_question")
            updated = self.state_machine.issue_question(session, content)
            return await self._commit(updated, session.version, "issue_question")

    async def open_interview(self, session_id: str, owner_id: str) -> Session:
        """
        生成开场问题（基于岗位描述；缺失时使用通用角色描述）

        Raises:
            InvalidTransitionError: 会话已经开始
            GenerationServiceError: 生成失败或没有解析出编号问题（会话保持Created）
        """
        async with self._exclusive(session_id, "open_interview"):
            session = await self._load(session_id, owner_id, "open_interview")
            if session.status is not SessionStatus.CREATED:
                raise InvalidTransitionError(
                    f"open_interview 不允许（当前状态 {session.status.value}）",
                    session_id=session_id,
                    stage="open_interview"
                )

            job_description = await self._bound_document(session, session.job_description_id)
            jd_text = job_description.text if job_description else self.default_role_text
            prompt = self.prompts.render(
                "opening_questions",
                count=self.opening_question_count,
                jd_text=clip_text(jd_text, self.jd_char_limit),
            )

            try:
                reply = await self.generation.generate(prompt)
            except GenerationServiceError as e:
                e.session_id = session_id
                logger.error(f"开场问题生成失败: {e}")
                raise

            questions = parse_numbered_questions(reply)
            if not questions:
                raise GenerationServiceError(
                    "生成服务没有返回有效的问题列表", session_id=session_id, stage="open_interview"
                )

            updated = self.state_machine.issue_question(session, "\n".join(questions))
            return await self._commit(updated, session.version, "open_interview")

    async def submit_answer(self, session_id: str, owner_id: str, answer: str) -> TurnOutcome:
        """
        提交回答并评估

        评估失败后再次提交相同的回答视为重试，不会追加重复的turn。

        Raises:
            InvalidTransitionError: 当前没有等待回答的问题
            SessionConflictError: 同一会话有并发请求
            GenerationServiceError: 评估失败（回答已保留，可重试）
        """
        async with self._exclusive(session_id, "submit_answer"):
            session = await self._load(session_id, owner_id, "submit_answer")
            pending = self.state_machine.pending_answer(session)

            # 待评估回答：评估失败（AwaitingAnswer）或评估中断遗留（Evaluating）
            if pending is not None and session.status in (
                SessionStatus.AWAITING_ANSWER, SessionStatus.EVALUATING
            ):
                if pending.content != answer:
                    raise InvalidTransitionError(
                        "上一条回答仍待评估，请重试评估或提交相同的回答",
                        session_id=session_id,
                        stage="submit_answer"
                    )
                updated = self.state_machine.begin_retry(session)
            else:
                updated = self.state_machine.accept_answer(session, answer)

            session = await self._commit(updated, session.version, "submit_answer")
            return await self._evaluate(session)

    async def retry_evaluation(self, session_id: str, owner_id: str) -> TurnOutcome:
        """重新评估待评估的回答（不追加turn）"""
        async with self._exclusive(session_id, "retry_evaluation"):
            session = await self._load(session_id, owner_id, "retry_evaluation")
            updated = self.state_machine.begin_retry(session)
            session = await self._commit(updated, session.version, "retry_evaluation")
            return await self._evaluate(session)

    async def close_session(self, session_id: str, owner_id: str) -> Session:
        """关闭会话（终态）"""
        async with self._exclusive(session_id, "close"):
            session = await self._load(session_id, owner_id, "close")
            closed = await self._commit(self.state_machine.close(session), session.version, "close")
        logger.info(f"会话已关闭: session={session_id}")
        return closed

    # ---------------- 评估 ----------------

    async def _evaluate(self, session: Session) -> TurnOutcome:
        """Evaluating状态下执行评估；任何失败都回到AwaitingAnswer且不追加turn"""
        question = self.state_machine.question_under_evaluation(session)
        answer = self.state_machine.pending_answer(session)

        try:
            resume = await self._bound_document(session, session.resume_id)
            job_description = await self._bound_document(session, session.job_description_id)
            grounding = await self.assembler.assemble(resume, job_description, answer.content)

            prompt = self.prompts.render(
                "evaluation",
                question=question.content,
                answer=answer.content,
                resume_context=grounding.resume_context,
                jd_context=grounding.job_description_context,
            )
            evaluation = await self.generation.generate_structured(prompt, Evaluation)
            committed = await self._commit(
                self.state_machine.complete_evaluation(session, evaluation),
                session.version,
                "complete_evaluation"
            )
        except (Exception, asyncio.CancelledError) as e:
            await self._revert(session, e)
            if isinstance(e, EngineError):
                e.session_id = e.session_id or session.id
            if isinstance(e, GenerationServiceError):
                logger.error(f"评估失败，回答已保留可重试: {e}")
            raise

        return TurnOutcome(
            session=committed,
            evaluation=evaluation,
            cited_kinds=resolve_citations(evaluation.citation_indices),
            grounding=grounding,
        )

    async def _revert(self, session: Session, error: BaseException):
        """
        评估失败：状态回到AwaitingAnswer，待评估回答保持为最后一条turn

        回滚本身提交失败时会话停留在Evaluating，
        retry_evaluation / 重新提交相同回答可以接管。
        """
        try:
            await self._commit(
                self.state_machine.fail_evaluation(session), session.version, "fail_evaluation"
            )
        except Exception as revert_error:
            logger.error(
                f"评估失败后回滚状态失败: session={session.id}, error={revert_error}, cause={error!r}"
            )
