"""
Unit tests for Repository against a mocked driver collection.

Tests cover:
- Constructor configuration
- Validation before any storage call
- Update normalization and call shapes passed to the driver
- find_many option order

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

from datetime import datetime
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from bson import ObjectId
from pymongo import ReturnDocument

from docrepo.core.exceptions import DocumentNotFoundError, ValidationError
from docrepo.models.base import DocumentModel
from docrepo.models.timestamps import CREATED_AT, UPDATED_AT
from docrepo.repositories.base import Repository


class User(DocumentModel):
    name: str
    age: int
    email: Optional[str] = None


class UserRepository(Repository[User]):
    COLLECTION_NAME = "users"
    SCHEMA = User


@pytest.fixture
def collection():
    """Mocked driver collection with an async API."""
    collection = MagicMock()
    for name in (
        "insert_one",
        "insert_many",
        "find_one",
        "find_one_and_update",
        "update_one",
        "update_many",
        "delete_one",
        "delete_many",
        "count_documents",
        "distinct",
    ):
        setattr(collection, name, AsyncMock())

    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[])
    collection.find.return_value = cursor
    return collection


@pytest.fixture
def mock_manager(collection):
    db = MagicMock()
    db.__getitem__.return_value = collection
    manager = MagicMock()
    manager.ensure_ready = AsyncMock(return_value=db)
    return manager


@pytest.fixture
def repo(mock_manager, frozen_clock):
    return UserRepository(mock_manager, clock=frozen_clock)


class TestConstruction:
    """Test suite for Repository configuration."""

    def test_class_attributes(self, repo):
        assert repo.collection_name == "users"
        assert repo.timestamps is True
        assert repo.schema.model is User

    def test_constructor_overrides(self, mock_manager):
        repo = UserRepository(mock_manager, collection_name="people", timestamps=False)

        assert repo.collection_name == "people"
        assert repo.timestamps is False

    def test_missing_collection_name(self, mock_manager):
        with pytest.raises(ValueError, match="collection_name"):
            Repository(mock_manager, schema=User)

    def test_missing_schema(self, mock_manager):
        with pytest.raises(ValueError, match="schema"):
            Repository(mock_manager, collection_name="users")

    async def test_collection_resolves_through_manager(self, repo, mock_manager, collection):
        result = await repo.collection()

        assert result is collection
        mock_manager.ensure_ready.assert_awaited_once()


class TestInsert:
    """Test suite for insert validation and stamping."""

    async def test_invalid_input_never_reaches_storage(self, repo, mock_manager, collection):
        """
        Test that validation runs before the connection is even awaited.

        Arrange: Input missing a required field
        Act: insert_one()
        Assert: ValidationError, no driver call, no ensure_ready call
        """
        with pytest.raises(ValidationError):
            await repo.insert_one({"name": "John"})

        collection.insert_one.assert_not_awaited()
        mock_manager.ensure_ready.assert_not_awaited()

    async def test_insert_many_rejects_whole_batch(self, repo, collection):
        with pytest.raises(ValidationError):
            await repo.insert_many([{"name": "A", "age": 1}, {"name": "B"}])

        collection.insert_many.assert_not_awaited()

    async def test_insert_assigns_id_and_stamps(self, repo, collection):
        inserted = await repo.insert_one({"name": "John", "age": 30})

        doc = inserted.doc
        assert isinstance(doc["_id"], ObjectId)
        assert isinstance(doc[CREATED_AT], datetime)
        assert doc[CREATED_AT] == doc[UPDATED_AT]
        collection.insert_one.assert_awaited_once_with(doc)
        assert inserted.result is collection.insert_one.return_value

    async def test_insert_keeps_caller_id(self, repo):
        oid = ObjectId()

        inserted = await repo.insert_one({"_id": oid, "name": "John", "age": 30})

        assert inserted.doc["_id"] == oid

    async def test_insert_accepts_model_instance(self, repo):
        oid = ObjectId()

        inserted = await repo.insert_one(User(id=oid, name="John", age=30))

        assert inserted.doc["_id"] == oid
        assert inserted.doc["name"] == "John"

    async def test_insert_many_gives_each_document_its_own_instant(self, repo):
        inserted = await repo.insert_many(
            [{"name": "A", "age": 1}, {"name": "B", "age": 2}]
        )

        first, second = inserted.docs
        assert first[CREATED_AT] < second[CREATED_AT]
        assert first[CREATED_AT] == first[UPDATED_AT]

    async def test_insert_many_empty_batch_writes_nothing(self, repo, mock_manager, collection):
        """
        Test that an empty batch resolves without a storage call.

        Arrange: No documents
        Act: insert_many([])
        Assert: Empty, acknowledged result; driver never called
        """
        # Act
        inserted = await repo.insert_many([])

        # Assert
        assert inserted.docs == []
        assert inserted.result.inserted_ids == []
        assert inserted.result.acknowledged is True
        collection.insert_many.assert_not_awaited()
        mock_manager.ensure_ready.assert_not_awaited()

    async def test_timestamps_disabled(self, mock_manager):
        repo = UserRepository(mock_manager, timestamps=False)

        inserted = await repo.insert_one({"name": "John", "age": 30})

        assert CREATED_AT not in inserted.doc
        assert UPDATED_AT not in inserted.doc


class TestUpdate:
    """Test suite for update normalization."""

    async def test_update_one_normalizes_without_mutating(self, repo, collection):
        update = {"$set": {"age": 31}}

        await repo.update_one({"name": "John"}, update)

        sent = collection.update_one.await_args.args[1]
        assert sent["$set"]["age"] == 31
        assert isinstance(sent["$set"][UPDATED_AT], datetime)
        assert update == {"$set": {"age": 31}}

    async def test_upsert_sets_created_at_on_insert(self, repo, collection):
        await repo.update_one({"name": "John"}, {"$set": {"age": 31}}, upsert=True)

        args, kwargs = collection.update_one.await_args
        assert CREATED_AT in args[1]["$setOnInsert"]
        assert kwargs == {"upsert": True}

    async def test_update_many_shares_one_instant(self, repo, collection):
        await repo.update_many({}, {"$inc": {"age": 1}})

        sent = collection.update_many.await_args.args[1]
        assert sent["$inc"] == {"age": 1}
        assert UPDATED_AT in sent["$set"]

    async def test_timestamps_disabled_passes_update_through(self, mock_manager, collection):
        repo = UserRepository(mock_manager, timestamps=False)
        update = {"$set": {"age": 31}}

        await repo.update_one({"name": "John"}, update)

        assert collection.update_one.await_args.args[1] is update

    async def test_pipeline_update_cannot_rewrite_created_at(self, repo, collection):
        pipeline = [{"$set": {CREATED_AT: "forged", "age": 31}}]

        await repo.update_one({"name": "John"}, pipeline)

        sent = collection.update_one.await_args.args[1]
        assert sent[0] == {"$set": {"age": 31}}
        assert set(sent[-1]["$set"]) == {UPDATED_AT}
        assert all(CREATED_AT not in stage.get("$set", {}) for stage in sent)

    async def test_pipeline_upsert_sets_created_at(self, repo, collection):
        await repo.update_one({"name": "Eve"}, [{"$set": {"age": 40}}], upsert=True)

        final = collection.update_one.await_args.args[1][-1]["$set"]
        assert final[CREATED_AT] == {"$ifNull": ["$" + CREATED_AT, final[UPDATED_AT]]}

    async def test_find_one_and_update_forces_after(self, repo, collection):
        collection.find_one_and_update.return_value = {"name": "John"}

        doc = await repo.find_one_and_update(
            {"name": "John"}, {"$set": {"age": 31}}, return_document=ReturnDocument.BEFORE
        )

        assert doc == {"name": "John"}
        kwargs = collection.find_one_and_update.await_args.kwargs
        assert kwargs["return_document"] is ReturnDocument.AFTER

    async def test_find_one_and_update_not_found(self, repo, collection):
        collection.find_one_and_update.return_value = None

        with pytest.raises(DocumentNotFoundError) as exc_info:
            await repo.find_one_and_update({"name": "Nobody"}, {"$set": {"age": 1}})

        assert exc_info.value.filter == {"name": "Nobody"}
        assert exc_info.value.collection_name == "users"


class TestReads:
    """Test suite for read call shapes."""

    async def test_find_many_applies_options_in_order(self, repo, collection):
        cursor = collection.find.return_value

        await repo.find_many(
            {"age": {"$gt": 20}}, fields=["name"], sort={"age": -1}, skip=5, limit=10
        )

        collection.find.assert_called_once_with({"age": {"$gt": 20}}, projection={"name": 1})
        assert cursor.method_calls == [
            call.sort([("age", -1)]),
            call.skip(5),
            call.limit(10),
            call.to_list(length=None),
        ]

    async def test_find_many_without_options(self, repo, collection):
        cursor = collection.find.return_value

        await repo.find_many()

        collection.find.assert_called_once_with({})
        cursor.sort.assert_not_called()
        cursor.skip.assert_not_called()
        cursor.limit.assert_not_called()

    async def test_find_many_accepts_sort_list(self, repo, collection):
        await repo.find_many(sort=[("name", 1), ("age", -1)])

        collection.find.return_value.sort.assert_called_once_with([("name", 1), ("age", -1)])

    async def test_find_one_strict_not_found(self, repo, collection):
        collection.find_one.return_value = None

        with pytest.raises(DocumentNotFoundError) as exc_info:
            await repo.find_one_strict({"email": "x@example.com"})

        assert exc_info.value.filter == {"email": "x@example.com"}

    async def test_exists_uses_count(self, repo, collection):
        collection.count_documents.return_value = 0

        assert await repo.exists({"name": "John"}) is False
        collection.count_documents.assert_awaited_once_with({"name": "John"})
