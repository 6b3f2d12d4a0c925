"""
Repository base class for typed collection access.

Each collection gets one Repository, configured with a schema. Writes are
validated and stamped before they reach storage; reads pass through.
Subclasses add domain methods on top of the generic operations:

    class UserRepository(Repository[User]):
        COLLECTION_NAME = "users"
        SCHEMA = User

        async def get_by_email(self, email: str) -> Document:
            return await self.find_one_strict({"email": email})

    users = UserRepository(manager)
"""

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.results import (
    DeleteResult,
    InsertManyResult,
    InsertOneResult,
    UpdateResult,
)

from docrepo.core.connection import ConnectionManager
from docrepo.core.exceptions import DocumentNotFoundError
from docrepo.models.base import ID_FIELD, Document, new_id
from docrepo.models.schema import SchemaValidator, as_schema, to_mapping
from docrepo.models.timestamps import MonotonicClock, default_clock, normalize_update, stamp

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

Filter = Mapping[str, Any]
Input = Union[Mapping[str, Any], BaseModel]
SortSpec = Union[Mapping[str, int], Sequence[Tuple[str, int]]]


@dataclass(frozen=True)
class InsertedDocument:
    """
    Outcome of insert_one.

    Attributes:
        doc: The normalized document exactly as written (not re-read)
        result: Driver acknowledgment
    """
    doc: Document
    result: InsertOneResult


@dataclass(frozen=True)
class InsertedDocuments:
    """
    Outcome of insert_many.

    Attributes:
        docs: The normalized documents exactly as written, in input order
        result: Driver acknowledgment
    """
    docs: List[Document]
    result: InsertManyResult


class Repository(Generic[ModelT]):
    """
    Typed access to one MongoDB collection.

    Every operation first waits for the connection through
    ConnectionManager.ensure_ready(), so repositories may be used before
    setup() has finished.

    Attributes:
        collection_name: Collection this repository owns
        schema: Validator applied to every insert
        timestamps: Whether createdAt/updatedAt are managed
    """

    COLLECTION_NAME: str = ""
    SCHEMA: Optional[Union[SchemaValidator, Type[BaseModel]]] = None
    TIMESTAMPS: bool = True

    def __init__(
        self,
        manager: ConnectionManager,
        collection_name: Optional[str] = None,
        schema: Optional[Union[SchemaValidator, Type[BaseModel]]] = None,
        timestamps: Optional[bool] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        """
        Args:
            manager: Connection manager shared by all repositories
            collection_name: Overrides COLLECTION_NAME
            schema: Pydantic model class or SchemaValidator; overrides SCHEMA
            timestamps: Overrides TIMESTAMPS (default True)
            clock: Instant source (default: the process-wide clock)

        Raises:
            ValueError: If no collection name or schema is configured
        """
        self._manager = manager

        self.collection_name = collection_name or self.COLLECTION_NAME
        if not self.collection_name:
            raise ValueError(f"{type(self).__name__} requires a collection_name")

        schema = schema if schema is not None else self.SCHEMA
        if schema is None:
            raise ValueError(f"{type(self).__name__} requires a schema")
        self.schema: SchemaValidator = as_schema(schema)

        self.timestamps = self.TIMESTAMPS if timestamps is None else timestamps
        self._clock = clock or default_clock

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(collection_name={self.collection_name!r}, "
            f"timestamps={self.timestamps})"
        )

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    async def collection(self):
        """
        Raw driver collection handle.

        Bypasses validation and timestamp management entirely.
        """
        db = await self._manager.ensure_ready()
        return db[self.collection_name]

    # -- Inserts --

    async def insert_one(self, data: Input, **kwargs: Any) -> InsertedDocument:
        """
        Validate, stamp and insert one document.

        A fresh _id is assigned when the input has none.

        Args:
            data: Mapping or pydantic model instance
            **kwargs: Passed to the driver's insert_one

        Returns:
            InsertedDocument with the written document and acknowledgment

        Raises:
            ValidationError: If the schema rejects the input (nothing written)
        """
        doc = self._prepare(data)

        collection = await self.collection()
        if self.timestamps:
            doc = stamp(doc, self._clock.now())

        self._log("insert_one")
        result = await collection.insert_one(doc, **kwargs)
        return InsertedDocument(doc=doc, result=result)

    async def insert_many(self, data: Iterable[Input], **kwargs: Any) -> InsertedDocuments:
        """
        Validate, stamp and insert a batch.

        Every item is validated before anything is written; one invalid item
        aborts the whole batch. Each document gets its own instant. Atomicity
        of the write itself is whatever the driver's bulk insert provides
        (ordered by default: stops at the first failing document). An empty
        batch writes nothing and returns an empty result.

        Raises:
            ValidationError: If any item is rejected (nothing written)
        """
        docs = [self._prepare(item) for item in data]
        if not docs:
            # The driver rejects empty batches outright
            return InsertedDocuments(docs=[], result=InsertManyResult([], acknowledged=True))

        collection = await self.collection()
        if self.timestamps:
            docs = [stamp(doc, self._clock.now()) for doc in docs]

        self._log("insert_many", count=len(docs))
        result = await collection.insert_many(docs, **kwargs)
        return InsertedDocuments(docs=docs, result=result)

    # -- Reads --

    async def find_one(self, filter: Optional[Filter] = None, *args: Any, **kwargs: Any) -> Optional[Document]:
        """Return the first matching document, or None."""
        collection = await self.collection()
        self._log("find_one")
        return await collection.find_one(filter, *args, **kwargs)

    async def find_one_strict(self, filter: Filter, *args: Any, **kwargs: Any) -> Document:
        """
        Like find_one, but a missing document is an error.

        Raises:
            DocumentNotFoundError: Carrying the filter that matched nothing
        """
        doc = await self.find_one(filter, *args, **kwargs)
        if doc is None:
            raise self._not_found(filter)
        return doc

    async def find(self, filter: Optional[Filter] = None, *args: Any, **kwargs: Any):
        """Driver cursor over matching documents."""
        collection = await self.collection()
        self._log("find")
        return collection.find(filter, *args, **kwargs)

    async def find_many(
        self,
        filter: Optional[Filter] = None,
        fields: Optional[Sequence[str]] = None,
        sort: Optional[SortSpec] = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
        **kwargs: Any,
    ) -> List[Document]:
        """
        Fetch matching documents as a list.

        Applied in this order: projection, sort, skip, limit.

        Args:
            filter: Query filter (default: all documents)
            fields: Inclusion projection; _id is included unless excluded
                through an explicit ``projection`` kwarg
            sort: {"field": 1} mapping or [("field", 1)] list
            skip: Number of documents to skip
            limit: Maximum number of documents

        Example:
            >>> await repo.find_many({"age": {"$gt": 20}}, sort={"age": 1}, limit=10)
        """
        if fields:
            kwargs["projection"] = self._build_projection(fields)

        collection = await self.collection()
        self._log("find_many")

        cursor = collection.find(filter or {}, **kwargs)
        if sort:
            cursor = cursor.sort(self._build_sort(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)

        return await cursor.to_list(length=None)

    async def count_documents(self, filter: Optional[Filter] = None, **kwargs: Any) -> int:
        """Number of documents matching filter (all documents by default)."""
        collection = await self.collection()
        self._log("count_documents")
        return await collection.count_documents(filter or {}, **kwargs)

    async def exists(self, filter: Optional[Filter] = None, **kwargs: Any) -> bool:
        """True if at least one document matches filter."""
        return await self.count_documents(filter, **kwargs) > 0

    async def distinct(self, key: str, filter: Optional[Filter] = None, **kwargs: Any) -> List[Any]:
        """
        Distinct values of key across matching documents.

        Args:
            key: Field name (dotted paths allowed)
            filter: Restricts which documents are considered

        Returns:
            List of distinct values
        """
        collection = await self.collection()
        self._log("distinct")
        return await collection.distinct(key, filter, **kwargs)

    # -- Updates --

    async def update_one(self, filter: Filter, update: Any, **kwargs: Any) -> UpdateResult:
        """
        Update one document; updatedAt is forced to a fresh instant.

        Returns:
            Driver UpdateResult
        """
        collection = await self.collection()
        update = self._normalize_update(update, kwargs.get("upsert", False))
        self._log("update_one")
        return await collection.update_one(filter, update, **kwargs)

    async def update_many(self, filter: Filter, update: Any, **kwargs: Any) -> UpdateResult:
        """Update all matches; every touched document gets the same fresh updatedAt."""
        collection = await self.collection()
        update = self._normalize_update(update, kwargs.get("upsert", False))
        self._log("update_many")
        return await collection.update_many(filter, update, **kwargs)

    async def find_one_and_update(self, filter: Filter, update: Any, **kwargs: Any) -> Document:
        """
        Atomically update one document and return it after the update.

        Raises:
            DocumentNotFoundError: If nothing matched (and no upsert happened)
        """
        kwargs["return_document"] = ReturnDocument.AFTER

        collection = await self.collection()
        update = self._normalize_update(update, kwargs.get("upsert", False))
        self._log("find_one_and_update")
        doc = await collection.find_one_and_update(filter, update, **kwargs)
        if doc is None:
            raise self._not_found(filter)
        return doc

    # -- Deletes --

    async def delete_one(self, filter: Filter, **kwargs: Any) -> DeleteResult:
        """Delete the first matching document; returns the driver DeleteResult."""
        collection = await self.collection()
        self._log("delete_one")
        return await collection.delete_one(filter, **kwargs)

    async def delete_many(self, filter: Filter, **kwargs: Any) -> DeleteResult:
        """Delete every matching document; returns the driver DeleteResult."""
        collection = await self.collection()
        self._log("delete_many")
        return await collection.delete_many(filter, **kwargs)

    # -- Helpers --

    def _prepare(self, data: Input) -> Document:
        raw = to_mapping(data)
        if raw.get(ID_FIELD) is None:
            raw[ID_FIELD] = new_id()

        doc = dict(self.schema.parse(raw))
        # Schemas that do not declare _id must not lose it
        doc.setdefault(ID_FIELD, raw[ID_FIELD])
        return doc

    def _normalize_update(self, update: Any, upsert: bool) -> Any:
        if not self.timestamps:
            return update
        return normalize_update(update, self._clock.now(), upsert=upsert)

    def _not_found(self, filter: Filter) -> DocumentNotFoundError:
        return DocumentNotFoundError(
            f"Document not found in collection {self.collection_name}",
            filter=filter,
            collection_name=self.collection_name,
        )

    @staticmethod
    def _build_projection(fields: Sequence[str]) -> Dict[str, int]:
        return {field: 1 for field in fields}

    @staticmethod
    def _build_sort(sort: SortSpec) -> List[Tuple[str, int]]:
        if isinstance(sort, Mapping):
            return list(sort.items())
        return list(sort)

    def _log(self, operation: str, **extra: Any) -> None:
        logger.debug(
            f"{operation} on {self.collection_name}",
            extra={"collection": self.collection_name, "operation": operation, **extra},
        )
