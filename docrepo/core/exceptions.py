"""
Error taxonomy for docrepo.

Every public repository method either returns a value or raises exactly one
of these (or a storage engine error, re-exported as StorageEngineError and
never wrapped).
"""

from typing import Any, Dict, List, Mapping, Optional

from pymongo.errors import PyMongoError

# Opaque pass-through from the driver. Not reinterpreted.
StorageEngineError = PyMongoError


class DocRepoError(Exception):
    """Base exception for docrepo"""
    pass


class ConfigurationError(DocRepoError):
    """Raised when connection or settings configuration is invalid"""
    pass


class ValidationError(DocRepoError):
    """
    Raised when a schema rejects input.

    Always raised before any storage call, so it never leaves partial state.

    Attributes:
        errors: Structured detail from the validator (pydantic's errors() list
            when the schema is a pydantic model)
    """

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class DocumentNotFoundError(DocRepoError):
    """
    Raised when a strict lookup or find-and-update matches no document.

    Attributes:
        filter: The filter that produced no result
        collection_name: Collection the lookup ran against
    """

    def __init__(
        self,
        message: str,
        filter: Mapping[str, Any],
        collection_name: Optional[str] = None,
    ):
        super().__init__(message)
        self.filter = filter
        self.collection_name = collection_name


class DatabaseNotConnectedError(DocRepoError):
    """Raised when the database is not (or not yet) connected"""

    def __init__(self, message: str = "Database not connected. Call setup() first."):
        super().__init__(message)
