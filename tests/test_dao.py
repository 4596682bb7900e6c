"""
Tests for PostgreSQL row mapping and the repository with a mocked pool.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from interview_engine.core.errors import (
    DocumentAccessError,
    SessionConflictError,
    SessionNotFoundError,
    VectorDecodeError,
)
from interview_engine.core.types import (
    DocumentKind,
    IndexStatus,
    Session,
    SessionStatus,
    Turn,
    TurnRole,
)
from interview_engine.storage.dao import (
    PostgresRepository,
    row_to_document,
    row_to_fragment,
    row_to_session,
    row_to_turn,
)

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


class TestRowMapping:

    def test_fragment_row(self):
        fragment = row_to_fragment({"document_id": "d1", "position": 2, "text": "t", "embedding": [0.5, 1.0]})
        assert fragment.embedding == (0.5, 1.0)
        assert fragment.position == 2

    def test_fragment_row_with_malformed_vector(self):
        with pytest.raises(VectorDecodeError):
            row_to_fragment({"document_id": "d1", "position": 0, "text": "t", "embedding": ["x"]})

    def test_document_row(self):
        document = row_to_document({
            "id": "d1",
            "owner_id": "u1",
            "kind": "job-description",
            "text": "body",
            "status": "partial",
            "file_name": None,
            "created_at": NOW,
        })
        assert document.kind is DocumentKind.JOB_DESCRIPTION
        assert document.status is IndexStatus.PARTIAL
        assert document.fragments == ()

    def test_document_row_with_unknown_kind(self):
        with pytest.raises(ValueError):
            row_to_document({
                "id": "d1", "owner_id": "u1", "kind": "cover-letter", "text": "",
                "status": "indexed", "created_at": NOW,
            })

    def test_turn_and_session_rows(self):
        turn = row_to_turn({"role": "interviewer", "content": "Q", "score": 6, "feedback": "ok", "citations": [1]})
        session = row_to_session(
            {"id": "s1", "owner_id": "u1", "status": "awaiting_answer", "version": 4, "created_at": NOW},
            [turn],
        )
        assert turn.citations == (1,)
        assert session.status is SessionStatus.AWAITING_ANSWER
        assert session.version == 4
        assert session.turns == (turn,)


def make_repository(conn):
    """PostgresRepository over a pool that always hands out `conn`."""
    @asynccontextmanager
    async def acquire():
        yield conn

    @asynccontextmanager
    async def transaction():
        yield

    conn.transaction = MagicMock(side_effect=transaction)
    pool = MagicMock()
    pool.acquire = MagicMock(side_effect=acquire)
    return PostgresRepository(pool)


class TestPostgresRepository:

    @pytest.fixture
    def conn(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock()
        conn.fetch = AsyncMock(return_value=[])
        conn.fetchval = AsyncMock()
        conn.execute = AsyncMock()
        conn.executemany = AsyncMock()
        return conn

    @pytest.fixture
    def session(self):
        return Session(
            id="s1",
            owner_id="u1",
            status=SessionStatus.EVALUATING,
            version=2,
            turns=(
                Turn(role=TurnRole.INTERVIEWER, content="Q1"),
                Turn(role=TurnRole.CANDIDATE, content="A1"),
            ),
        )

    @pytest.mark.asyncio
    async def test_commit_inserts_only_new_turns(self, conn, session):
        conn.fetchrow.return_value = {"version": 3}
        conn.fetchval.return_value = 1

        committed = await make_repository(conn).commit_session(session, expected_version=2)

        assert committed.version == 3
        rows = conn.executemany.call_args.args[1]
        assert len(rows) == 1
        assert rows[0][1] == 1
        assert rows[0][3] == "A1"

    @pytest.mark.asyncio
    async def test_commit_version_conflict(self, conn, session):
        conn.fetchrow.side_effect = [None, {"version": 5}]

        with pytest.raises(SessionConflictError):
            await make_repository(conn).commit_session(session, expected_version=2)
        conn.executemany.assert_not_called()

    @pytest.mark.asyncio
    async def test_commit_missing_session(self, conn, session):
        conn.fetchrow.side_effect = [None, None]

        with pytest.raises(SessionNotFoundError):
            await make_repository(conn).commit_session(session, expected_version=2)

    @pytest.mark.asyncio
    async def test_delete_foreign_document(self, conn):
        conn.fetchrow.side_effect = [None, {"?column?": 1}]

        with pytest.raises(DocumentAccessError):
            await make_repository(conn).delete_document("u2", "d1")
