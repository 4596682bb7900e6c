"""
会话状态机
Created → AwaitingAnswer → Evaluating → AwaitingAnswer（循环）→ Closed

纯函数式：每个迁移接收一个Session，返回追加了turn / 改变了状态的新Session，
不做任何I/O。持久化与并发控制由 InterviewService 负责。
"""
from typing import Optional

from interview_engine.core.errors import InvalidTransitionError
from interview_engine.core.types import (
    Evaluation,
    Session,
    SessionStatus,
    Turn,
    TurnRole,
)


class SessionStateMachine:
    """面试会话生命周期"""

    @staticmethod
    def _reject(session: Session, action: str, reason: str) -> InvalidTransitionError:
        return InvalidTransitionError(
            f"{action} 不允许: {reason}（当前状态 {session.status.value}）",
            session_id=session.id,
            stage=action
        )

    @staticmethod
    def _append(session: Session, turn: Turn, status: SessionStatus) -> Session:
        return session.model_copy(update={"turns": session.turns + (turn,), "status": status})

    @staticmethod
    def pending_answer(session: Session) -> Optional[Turn]:
        """尚未被评估的候选人回答（即最后一条turn为candidate时）"""
        last = session.last_turn
        if last is not None and last.role is TurnRole.CANDIDATE:
            return last
        return None

    def question_under_evaluation(self, session: Session) -> Turn:
        """
        当前被评估的问题：待评估回答之前的最后一条interviewer turn

        Raises:
            InvalidTransitionError: 还没有任何interviewer turn
        """
        turns = session.turns
        if self.pending_answer(session) is not None:
            turns = turns[:-1]
        for turn in reversed(turns):
            if turn.role is TurnRole.INTERVIEWER:
                return turn
        raise self._reject(session, "evaluate", "没有可评估的问题")

    def issue_question(self, session: Session, content: str) -> Session:
        """面试官开场提问：仅 Created → AwaitingAnswer（后续问题由评估结果给出）"""
        if session.status is not SessionStatus.CREATED:
            raise self._reject(session, "issue_question", "会话已开始，只接受候选人回答")
        if not content or not content.strip():
            raise self._reject(session, "issue_question", "问题内容为空")

        turn = Turn(role=TurnRole.INTERVIEWER, content=content)
        return self._append(session, turn, SessionStatus.AWAITING_ANSWER)

    def accept_answer(self, session: Session, content: str) -> Session:
        """候选人回答：AwaitingAnswer → Evaluating，追加candidate turn"""
        if session.status is not SessionStatus.AWAITING_ANSWER:
            raise self._reject(session, "submit_answer", "没有等待回答的问题")
        if not content or not content.strip():
            raise self._reject(session, "submit_answer", "回答内容为空")
        if self.pending_answer(session) is not None:
            raise self._reject(session, "submit_answer", "上一条回答仍待评估")
        # 没有问题时快速失败，不编造问题
        self.question_under_evaluation(session)

        turn = Turn(role=TurnRole.CANDIDATE, content=content)
        return self._append(session, turn, SessionStatus.EVALUATING)

    def begin_retry(self, session: Session) -> Session:
        """
        评估失败后重试：AwaitingAnswer（有待评估回答）→ Evaluating，不追加turn

        也接受遗留在Evaluating的会话（评估中断且回滚未能提交）；
        是否真的没有评估在进行由调用方的会话锁保证。
        """
        if session.status not in (SessionStatus.AWAITING_ANSWER, SessionStatus.EVALUATING):
            raise self._reject(session, "retry_evaluation", "状态不允许重试")
        if self.pending_answer(session) is None:
            raise self._reject(session, "retry_evaluation", "没有待评估的回答")
        self.question_under_evaluation(session)
        return session.model_copy(update={"status": SessionStatus.EVALUATING})

    def complete_evaluation(self, session: Session, evaluation: Evaluation) -> Session:
        """评估成功：Evaluating → AwaitingAnswer，追加带评分/反馈/引用/追问的interviewer turn"""
        if session.status is not SessionStatus.EVALUATING:
            raise self._reject(session, "complete_evaluation", "不在评估中")
        turn = Turn(
            role=TurnRole.INTERVIEWER,
            content=evaluation.next_question,
            score=evaluation.score,
            feedback=evaluation.feedback,
            citations=tuple(evaluation.citation_indices),
        )
        return self._append(session, turn, SessionStatus.AWAITING_ANSWER)

    def fail_evaluation(self, session: Session) -> Session:
        """评估失败：Evaluating → AwaitingAnswer，保留待评估回答以便重试"""
        if session.status is not SessionStatus.EVALUATING:
            raise self._reject(session, "fail_evaluation", "不在评估中")
        return session.model_copy(update={"status": SessionStatus.AWAITING_ANSWER})

    def close(self, session: Session) -> Session:
        """关闭会话（终态）"""
        if session.status is SessionStatus.CLOSED:
            raise self._reject(session, "close", "会话已关闭")
        return session.model_copy(update={"status": SessionStatus.CLOSED})
