"""
Tests for the vector index and in-memory repository.
"""
import pytest
import pytest_asyncio

from interview_engine.core.errors import (
    DocumentAccessError,
    DocumentNotFoundError,
    SessionConflictError,
)
from interview_engine.core.types import Document, DocumentKind, Fragment, Session, Turn, TurnRole
from interview_engine.services.doc_store import VectorIndex


def fragment(doc_id, position, vector):
    return Fragment(document_id=doc_id, position=position, text=f"t{position}", embedding=tuple(vector))


class TestVectorIndex:

    @pytest_asyncio.fixture
    async def stored(self, repository):
        document = Document(id="d1", owner_id="u1", kind=DocumentKind.RESUME, text="t0 t1")
        await repository.save_document(document)
        return document

    @pytest.mark.asyncio
    async def test_add_and_read_back_in_order(self, repository, stored):
        index = VectorIndex(repository)
        await index.add("d1", [fragment("d1", 1, [0.0, 1.0]), fragment("d1", 0, [1.0, 0.0])])

        fragments = await index.fragments_of("d1")

        assert [f.position for f in fragments] == [0, 1]
        assert fragments[0].embedding == (1.0, 0.0)

    @pytest.mark.asyncio
    async def test_rejects_foreign_fragments(self, repository, stored):
        with pytest.raises(ValueError):
            await VectorIndex(repository).add("d1", [fragment("other", 0, [1.0])])

    @pytest.mark.asyncio
    async def test_rejects_mixed_dimensions(self, repository, stored):
        with pytest.raises(ValueError):
            await VectorIndex(repository).add("d1", [fragment("d1", 0, [1.0]), fragment("d1", 1, [1.0, 0.0])])

    @pytest.mark.asyncio
    async def test_replacement_requires_remove(self, repository, stored):
        index = VectorIndex(repository)
        await index.add("d1", [fragment("d1", 0, [1.0, 0.0])])

        with pytest.raises(ValueError):
            await index.add("d1", [fragment("d1", 0, [0.0, 1.0])])

        assert await index.remove("d1") == 1
        await index.add("d1", [fragment("d1", 0, [0.0, 1.0])])
        assert (await index.fragments_of("d1"))[0].embedding == (0.0, 1.0)

    @pytest.mark.asyncio
    async def test_add_to_unknown_document(self, repository):
        with pytest.raises(DocumentNotFoundError):
            await VectorIndex(repository).add("missing", [fragment("missing", 0, [1.0])])


class TestInMemoryRepository:

    @pytest.mark.asyncio
    async def test_delete_checks_owner(self, repository):
        await repository.save_document(Document(id="d1", owner_id="u1", kind=DocumentKind.RESUME, text="x"))

        with pytest.raises(DocumentAccessError):
            await repository.delete_document("u2", "d1")
        with pytest.raises(DocumentNotFoundError):
            await repository.delete_document("u1", "nope")

    @pytest.mark.asyncio
    async def test_latest_document_per_kind(self, repository):
        await repository.save_document(Document(id="old", owner_id="u1", kind=DocumentKind.RESUME, text="a"))
        await repository.save_document(Document(id="jd", owner_id="u1", kind=DocumentKind.JOB_DESCRIPTION, text="b"))
        await repository.save_document(Document(id="new", owner_id="u1", kind=DocumentKind.RESUME, text="c"))

        latest = await repository.latest_document("u1", DocumentKind.RESUME)

        assert latest.id == "new"
        assert await repository.latest_document("u2", DocumentKind.RESUME) is None

    @pytest.mark.asyncio
    async def test_commit_session_compare_and_swap(self, repository):
        session = await repository.create_session(Session(id="s1", owner_id="u1"))
        updated = session.model_copy(update={"turns": (Turn(role=TurnRole.INTERVIEWER, content="Q1"),)})

        committed = await repository.commit_session(updated, expected_version=0)
        assert committed.version == 1

        with pytest.raises(SessionConflictError):
            await repository.commit_session(updated, expected_version=0)

    @pytest.mark.asyncio
    async def test_commit_session_is_append_only(self, repository):
        session = Session(id="s1", owner_id="u1", turns=(Turn(role=TurnRole.INTERVIEWER, content="Q1"),))
        await repository.create_session(session)
        rewritten = session.model_copy(update={"turns": (Turn(role=TurnRole.INTERVIEWER, content="Q2"),)})

        with pytest.raises(ValueError):
            await repository.commit_session(rewritten, expected_version=0)
