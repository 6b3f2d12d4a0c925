"""Document schema, identifier and timestamp handling."""

from docrepo.models.base import Document, DocumentModel, PyObjectId, new_id
from docrepo.models.schema import PydanticSchema, SchemaValidator, as_schema
from docrepo.models.timestamps import MonotonicClock, default_clock, normalize_update

__all__ = [
    "Document",
    "DocumentModel",
    "PyObjectId",
    "new_id",
    "PydanticSchema",
    "SchemaValidator",
    "as_schema",
    "MonotonicClock",
    "default_clock",
    "normalize_update",
]
