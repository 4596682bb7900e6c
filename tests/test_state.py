"""
Tests for the session state machine.
"""
import pytest

from interview_engine.core.errors import InvalidTransitionError
from interview_engine.core.state import SessionStateMachine
from interview_engine.core.types import Session, SessionStatus, TurnRole

from conftest import make_evaluation


@pytest.fixture
def machine():
    return SessionStateMachine()


@pytest.fixture
def asked(machine):
    return machine.issue_question(Session(owner_id="u1"), "Q1")


class TestSessionStateMachine:

    def test_issue_question_from_created(self, asked):
        assert asked.status is SessionStatus.AWAITING_ANSWER
        assert [t.role for t in asked.turns] == [TurnRole.INTERVIEWER]

    def test_answer_then_evaluate_cycle(self, machine, asked):
        evaluating = machine.accept_answer(asked, "A1")
        assert evaluating.status is SessionStatus.EVALUATING
        assert machine.question_under_evaluation(evaluating).content == "Q1"

        done = machine.complete_evaluation(evaluating, make_evaluation(score=8, citations=(1, 0)))

        assert done.status is SessionStatus.AWAITING_ANSWER
        assert len(done.turns) == 3
        last = done.turns[-1]
        assert last.role is TurnRole.INTERVIEWER
        assert last.score == 8
        assert last.citations == (1, 0)

    def test_issue_question_only_from_created(self, machine, asked):
        with pytest.raises(InvalidTransitionError):
            machine.issue_question(asked, "Q2")

        answered = machine.complete_evaluation(machine.accept_answer(asked, "A1"), make_evaluation())
        with pytest.raises(InvalidTransitionError):
            machine.issue_question(answered, "Q3")

    def test_answer_in_created_rejected(self, machine):
        with pytest.raises(InvalidTransitionError):
            machine.accept_answer(Session(owner_id="u1"), "A1")

    def test_empty_answer_rejected(self, machine, asked):
        with pytest.raises(InvalidTransitionError):
            machine.accept_answer(asked, "   ")

    def test_failure_keeps_answer_for_retry(self, machine, asked):
        evaluating = machine.accept_answer(asked, "A1")
        failed = machine.fail_evaluation(evaluating)

        assert failed.status is SessionStatus.AWAITING_ANSWER
        assert len(failed.turns) == 2
        assert machine.pending_answer(failed).content == "A1"

        retrying = machine.begin_retry(failed)
        assert retrying.status is SessionStatus.EVALUATING
        assert retrying.turns == failed.turns

    def test_no_second_answer_while_pending(self, machine, asked):
        failed = machine.fail_evaluation(machine.accept_answer(asked, "A1"))

        with pytest.raises(InvalidTransitionError):
            machine.accept_answer(failed, "A2")
        with pytest.raises(InvalidTransitionError):
            machine.issue_question(failed, "Q2")

    def test_retry_from_interrupted_evaluation(self, machine, asked):
        stale = machine.accept_answer(asked, "A1")

        retrying = machine.begin_retry(stale)

        assert retrying.status is SessionStatus.EVALUATING
        assert retrying.turns == stale.turns

    def test_retry_without_pending_answer(self, machine, asked):
        with pytest.raises(InvalidTransitionError):
            machine.begin_retry(asked)

    def test_closed_is_terminal(self, machine, asked):
        closed = machine.close(asked)

        assert closed.status is SessionStatus.CLOSED
        with pytest.raises(InvalidTransitionError):
            machine.issue_question(closed, "Q2")
        with pytest.raises(InvalidTransitionError):
            machine.accept_answer(closed, "A")
        with pytest.raises(InvalidTransitionError):
            machine.close(closed)

    def test_transitions_do_not_mutate_input(self, machine, asked):
        machine.accept_answer(asked, "A1")
        assert asked.status is SessionStatus.AWAITING_ANSWER
        assert len(asked.turns) == 1

    def test_error_carries_session_and_stage(self, machine):
        session = Session(owner_id="u1")
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.accept_answer(session, "A1")
        assert exc_info.value.session_id == session.id
        assert exc_info.value.stage == "submit_answer"
