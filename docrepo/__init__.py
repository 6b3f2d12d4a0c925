"""
docrepo - typed, validated access to MongoDB collections.

- ConnectionManager: one shared, retried connection per application
- Repository: validated writes with managed timestamps, one per collection
- DocumentModel: pydantic base schema with an ObjectId `_id`

Usage:
    manager = ConnectionManager()
    await manager.setup(ConnectionConfig(connection_handle=uri, database_name="app"))

    users = Repository(manager, collection_name="users", schema=User)
    inserted = await users.insert_one({"name": "John", "age": 30})
"""

from docrepo.core.config import Settings, get_settings
from docrepo.core.connection import (
    ConnectionConfig,
    ConnectionManager,
    ConnectionState,
    LifecycleEvent,
    TransportMonitor,
)
from docrepo.core.exceptions import (
    ConfigurationError,
    DatabaseNotConnectedError,
    DocRepoError,
    DocumentNotFoundError,
    StorageEngineError,
    ValidationError,
)
from docrepo.models import (
    Document,
    DocumentModel,
    MonotonicClock,
    PydanticSchema,
    PyObjectId,
    SchemaValidator,
    normalize_update,
)
from docrepo.repositories import InsertedDocument, InsertedDocuments, Repository

__version__ = "0.1.0"

__all__ = [
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionState",
    "LifecycleEvent",
    "TransportMonitor",
    "Settings",
    "get_settings",
    "ConfigurationError",
    "DatabaseNotConnectedError",
    "DocRepoError",
    "DocumentNotFoundError",
    "StorageEngineError",
    "ValidationError",
    "Document",
    "DocumentModel",
    "MonotonicClock",
    "PydanticSchema",
    "PyObjectId",
    "SchemaValidator",
    "normalize_update",
    "Repository",
    "InsertedDocument",
    "InsertedDocuments",
]
